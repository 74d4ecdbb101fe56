"""
通知渠道接口：域无关的通知抽象

app 层实现 INotificationChannel 对接具体投递方式（站内信、邮件、Webhook 等）。
投递是"发出即忘"：任何渠道失败都只记录日志，不影响业务结果。
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional
import logging

logger = logging.getLogger(__name__)


@dataclass
class Notification:
    """
    待投递的通知

    Attributes:
        recipient: 接收方标识（用户ID）
        subject: 标题
        content: 正文
        kind: 通知类型，如 reservation.confirmed
        extra: 扩展参数
    """

    recipient: str
    subject: str
    content: str
    kind: str
    extra: Dict[str, Any] = field(default_factory=dict)


class INotificationChannel(ABC):
    """通知渠道接口"""

    @abstractmethod
    def send(self, notification: Notification) -> bool:
        """发送通知，返回是否发送成功"""

    @abstractmethod
    def get_channel_type(self) -> str:
        """返回渠道类型标识，如 'log', 'email', 'webhook'"""


class LoggingChannel(INotificationChannel):
    """仅写日志的渠道，作为默认实现"""

    def send(self, notification: Notification) -> bool:
        logger.info(
            f"Notify {notification.recipient} [{notification.kind}]: {notification.subject}"
        )
        return True

    def get_channel_type(self) -> str:
        return "log"


class NotificationDispatcher:
    """通知分发器

    由进程入口创建并注入到服务中：
        dispatcher = NotificationDispatcher([LoggingChannel()])
        ReservationService(db, notifier=dispatcher)
    """

    def __init__(self, channels: Optional[List[INotificationChannel]] = None):
        self._channels: Dict[str, INotificationChannel] = {}
        for channel in channels or []:
            self.register(channel)

    def register(self, channel: INotificationChannel) -> None:
        """注册通知渠道"""
        self._channels[channel.get_channel_type()] = channel

    def get_channel(self, channel_type: str) -> Optional[INotificationChannel]:
        return self._channels.get(channel_type)

    def get_all_channels(self) -> List[INotificationChannel]:
        return list(self._channels.values())

    def dispatch(self, notification: Notification) -> int:
        """投递到所有渠道，返回成功的渠道数"""
        delivered = 0
        for channel_type, channel in self._channels.items():
            try:
                if channel.send(notification):
                    delivered += 1
            except Exception:
                logger.exception(
                    f"Notification via {channel_type} failed for {notification.recipient} ({notification.kind})"
                )
        return delivered

    def clear(self) -> None:
        """清除所有渠道（用于测试）"""
        self._channels.clear()
