"""
认证与授权模块
身份由外部认证服务签发 JWT，本服务只做解码与角色校验
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import List, Optional
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from jose import JWTError, jwt
from app.config import settings
from app.models.ontology import UserRole

logger = logging.getLogger(__name__)

security = HTTPBearer()


@dataclass(frozen=True)
class CurrentUser:
    """请求方身份"""
    id: str
    role: UserRole

    @property
    def is_staff(self) -> bool:
        return self.role in (UserRole.SUPPORT, UserRole.ADMIN)


def create_access_token(user_id: str, role: UserRole = UserRole.CUSTOMER,
                        expires_minutes: Optional[int] = None) -> str:
    """创建 JWT token（测试与联调使用）"""
    minutes = expires_minutes if expires_minutes is not None else settings.ACCESS_TOKEN_EXPIRE_MINUTES
    expire = datetime.now(timezone.utc) + timedelta(minutes=minutes)
    to_encode = {
        "sub": str(user_id),
        "role": role.value if isinstance(role, UserRole) else str(role),
        "exp": expire,
    }
    return jwt.encode(to_encode, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


def decode_token(token: str) -> dict:
    """解码 JWT token"""
    try:
        return jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
    except JWTError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="无效的认证凭证"
        )


async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security),
) -> CurrentUser:
    """获取当前请求方"""
    payload = decode_token(credentials.credentials)

    user_id = payload.get("sub")
    if not user_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="无效的认证凭证"
        )

    try:
        role = UserRole(payload.get("role", UserRole.CUSTOMER.value))
    except ValueError:
        logger.warning(f"Token for {user_id} carries unknown role {payload.get('role')}")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="无效的用户角色"
        )

    return CurrentUser(id=str(user_id), role=role)


def require_role(allowed_roles: List[UserRole]):
    """角色权限验证"""
    async def role_checker(current_user: CurrentUser = Depends(get_current_user)):
        if current_user.role not in allowed_roles:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail={"code": "FORBIDDEN", "message": "权限不足"}
            )
        return current_user
    return role_checker


# 便捷的角色检查器
require_admin = require_role([UserRole.ADMIN])
require_staff = require_role([UserRole.SUPPORT, UserRole.ADMIN])
