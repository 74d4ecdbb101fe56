"""
路由公共依赖
业务错误到 HTTP 状态码的映射、通知分发器注入
"""
from typing import Optional
from fastapi import HTTPException, Request, status
from app.services.errors import BookingError
from core.notification import NotificationDispatcher

_STATUS_BY_CODE = {
    "VALIDATION_FAILED": status.HTTP_422_UNPROCESSABLE_ENTITY,
    "NOT_FOUND": status.HTTP_404_NOT_FOUND,
    "SOLD_OUT": status.HTTP_409_CONFLICT,
    "INVALID_PROMO": status.HTTP_400_BAD_REQUEST,
    "INVALID_TRANSITION": status.HTTP_409_CONFLICT,
    "FORBIDDEN": status.HTTP_403_FORBIDDEN,
    "STORE_UNAVAILABLE": status.HTTP_503_SERVICE_UNAVAILABLE,
}


def to_http_exception(error: ValueError) -> HTTPException:
    """将业务错误转换为 HTTPException"""
    if isinstance(error, BookingError):
        return HTTPException(
            status_code=_STATUS_BY_CODE.get(error.code, status.HTTP_400_BAD_REQUEST),
            detail=error.to_dict(),
        )
    return HTTPException(
        status_code=status.HTTP_400_BAD_REQUEST,
        detail={"code": "BAD_REQUEST", "message": str(error)},
    )


def get_notifier(request: Request) -> Optional[NotificationDispatcher]:
    """获取进程级通知分发器（lifespan 中创建）"""
    return getattr(request.app.state, "notifier", None)
