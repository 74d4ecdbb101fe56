"""
core/engine - 核心引擎模块

- state_machine: 状态机引擎（状态转换）

使用方式:
    >>> from core.engine import StateMachine, StateMachineConfig, StateTransition
"""

# 状态机引擎
from core.engine.state_machine import (
    StateTransition,
    StateMachineConfig,
    StateMachine,
)

__all__ = [
    "StateTransition",
    "StateMachineConfig",
    "StateMachine",
]
