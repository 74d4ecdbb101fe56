"""
应用配置
从环境变量读取配置，支持 .env 文件
"""
from datetime import date
from decimal import Decimal
from typing import Dict, List
from pydantic import ConfigDict
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """应用设置"""

    # 应用基础配置
    APP_NAME: str = "ParkSpot"
    DEBUG: bool = False

    # 数据库配置
    DATABASE_URL: str = "sqlite:///./parking.db"
    # 提交预订时等待存储锁的最长时间（秒），超时返回可重试错误
    DB_LOCK_TIMEOUT_SECONDS: float = 5.0

    # JWT 配置（身份由外部认证服务签发）
    SECRET_KEY: str = "parking-secret-key-change-in-production"
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 480

    # 计价配置
    CURRENCY: str = "USD"
    DEFAULT_TAX_RATE: Decimal = Decimal("0.12")
    DEFAULT_SERVICE_FEE: Decimal = Decimal("5.99")
    JURISDICTION_TAX_RATES: Dict[str, Decimal] = {}
    HOLIDAYS: List[date] = []
    # 客户端展示价与服务端重算价的容差，超出视为过期报价
    PRICE_TOLERANCE: Decimal = Decimal("0.01")

    # 预订提交后的初始状态: confirmed 或 pending
    RESERVATION_INITIAL_STATUS: str = "confirmed"

    model_config = ConfigDict(env_file=".env", case_sensitive=True)


# 全局设置实例
settings = Settings()
