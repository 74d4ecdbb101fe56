"""
通知渠道抽象层，仅定义接口与分发器，app 层实现具体渠道
"""
from core.notification.channel import (
    Notification,
    INotificationChannel,
    LoggingChannel,
    NotificationDispatcher,
)

__all__ = ["Notification", "INotificationChannel", "LoggingChannel", "NotificationDispatcher"]
