"""
core/engine/state_machine.py

状态机引擎 - 校验实体状态转换
实体状态保存在数据库中，状态机本身不持有当前状态
"""
from typing import Dict, List, Optional
from dataclasses import dataclass
import logging

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StateTransition:
    """
    状态转换定义

    Attributes:
        from_state: 源状态
        to_state: 目标状态
        trigger: 触发动作
    """

    from_state: str
    to_state: str
    trigger: str


@dataclass
class StateMachineConfig:
    """
    状态机配置

    Attributes:
        name: 状态机名称（通常为实体类型）
        states: 所有状态的列表
        transitions: 转换列表
        initial_state: 初始状态
        terminal_states: 终态列表
    """

    name: str
    states: List[str]
    transitions: List[StateTransition]
    initial_state: str
    terminal_states: Optional[List[str]] = None


class StateMachine:
    """
    状态机

    Example:
        >>> machine = StateMachine(StateMachineConfig(
        ...     name="Dispute",
        ...     states=["open", "in_progress", "resolved"],
        ...     transitions=[StateTransition("open", "in_progress", "start_review")],
        ...     initial_state="open",
        ... ))
        >>> machine.next_state("open", "start_review")
        'in_progress'
    """

    def __init__(self, config: StateMachineConfig):
        self._config = config
        self._transition_map: Dict[str, Dict[str, StateTransition]] = {}

        # 构建转换映射: (from_state, trigger) -> transition
        for t in config.transitions:
            if t.from_state not in config.states or t.to_state not in config.states:
                raise ValueError(f"Unknown state in transition {t.from_state} -> {t.to_state}")
            self._transition_map.setdefault(t.from_state, {})[t.trigger] = t

    @property
    def name(self) -> str:
        return self._config.name

    @property
    def config(self) -> StateMachineConfig:
        """获取状态机配置"""
        return self._config

    def next_state(self, current_state: str, trigger: str) -> Optional[str]:
        """返回触发后的目标状态，不允许时返回 None"""
        transition = self._transition_map.get(current_state, {}).get(trigger)
        return transition.to_state if transition else None

    def can_trigger(self, current_state: str, trigger: str) -> bool:
        return self.next_state(current_state, trigger) is not None

    def allowed_triggers(self, current_state: str) -> List[str]:
        """获取当前状态下可用的触发动作"""
        return sorted(self._transition_map.get(current_state, {}).keys())

    def is_terminal(self, state: str) -> bool:
        return state in (self._config.terminal_states or [])


# 导出
__all__ = [
    "StateTransition",
    "StateMachineConfig",
    "StateMachine",
]
