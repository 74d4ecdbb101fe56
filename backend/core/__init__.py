"""
core - 领域无关的框架层

- engine: 状态机引擎（状态转换校验）
- notification: 通知渠道抽象（站内信、邮件、Webhook 等由 app 层实现）

使用方式:
    >>> from core.engine import StateMachine, StateMachineConfig, StateTransition
    >>> from core.notification import NotificationDispatcher
"""
