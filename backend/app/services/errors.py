"""
业务错误类型
全部继承 ValueError，路由层按 code 映射为 HTTP 状态码
"""
from typing import Any, Dict, Optional


class BookingError(ValueError):
    """
    预订引擎业务错误基类

    Attributes:
        code: 机器可读的错误码
        message: 面向用户的错误信息
        retryable: 调用方是否可以原样重试
    """

    code = "BOOKING_ERROR"
    retryable = False

    def __init__(self, message: str, **context: Any):
        self.message = message
        self.context = context
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"code": self.code, "message": self.message}
        if self.retryable:
            data["retryable"] = True
        return data


class ValidationFailedError(BookingError):
    """输入不合法（区间、车位数等），在开启事务前拒绝"""
    code = "VALIDATION_FAILED"


class NotFoundError(BookingError):
    code = "NOT_FOUND"


class SoldOutError(BookingError):
    """所选区间已无空余车位"""
    code = "SOLD_OUT"


class PromotionRejection:
    """优惠券拒绝原因"""
    INVALID_CODE = "INVALID_CODE"
    EXPIRED = "EXPIRED"
    USAGE_EXHAUSTED = "USAGE_EXHAUSTED"
    BELOW_MINIMUM = "BELOW_MINIMUM"


class PromotionError(BookingError):
    """优惠券不可用，reason 为 PromotionRejection 之一"""
    code = "INVALID_PROMO"

    def __init__(self, reason: str, message: str, **context: Any):
        self.reason = reason
        super().__init__(message, **context)

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["reason"] = self.reason
        return data


class InvalidTransitionError(BookingError):
    """状态机不允许的转换"""
    code = "INVALID_TRANSITION"


class PermissionDeniedError(BookingError):
    code = "FORBIDDEN"


class StoreUnavailableError(BookingError):
    """存储/事务失败，调用方可重试整个操作"""
    code = "STORE_UNAVAILABLE"
    retryable = True

    def __init__(self, message: str = "服务暂时不可用，请稍后重试", original_error: Optional[Exception] = None):
        self.original_error = original_error
        super().__init__(message)
