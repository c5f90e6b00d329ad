"""
Cluster Autoscaler Options
==========================
Cấu hình NodeGroupScalingPlanner, parse từ flags kiểu cluster-autoscaler.

Usage:
    >>> options = ClusterAutoscalerOptions.from_flags({
    ...     'expander': 'least-waste,priority',
    ...     'scale-down-unneeded-time': '10m',
    ...     'scale-down-utilization-threshold': 0.5,
    ... })
"""

from typing import Any, Dict
from dataclasses import dataclass, fields

from ..units import ConfigurationError, parse_duration

KNOWN_EXPANDERS = ('least-waste', 'most-pods', 'priority', 'random')

DURATION_FLAGS = (
    'scale_down_delay_after_add',
    'scale_down_unneeded_time',
    'max_node_provision_time',
    'initial_node_group_backoff_duration',
    'max_node_group_backoff_duration',
)


def _parse_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in ('true', '1', 'yes'):
        return True
    if text in ('false', '0', 'no'):
        return False
    raise ConfigurationError(f"Invalid boolean flag value: {value!r}")


@dataclass
class ClusterAutoscalerOptions:
    """
    Options của node-group planner. Durations tính bằng seconds.

    Attributes:
        expander: Danh sách expanders, phân tách bằng dấu phẩy
        scale_down_enabled: Cho phép scale-down
        scale_down_delay_after_add: Cooldown của group sau scale-up
        scale_down_unneeded_time: Thời gian node phải unneeded trước khi xóa
        scale_down_utilization_threshold: Ngưỡng utilization của node unneeded
        max_node_provision_time: Thời gian tối đa chờ node mới ready
        balance_similar_node_groups: Chia đều nodes mới cho các groups tương tự
        max_empty_bulk_delete: Số empty nodes tối đa xóa trong một tick
        initial_node_group_backoff_duration: Backoff đầu tiên khi provision lỗi
        max_node_group_backoff_duration: Backoff tối đa (nhân đôi mỗi lần lỗi)
        random_seed: Seed cho expander 'random'
    """
    expander: str = 'least-waste'
    scale_down_enabled: bool = True
    scale_down_delay_after_add: float = 600.0
    scale_down_unneeded_time: float = 600.0
    scale_down_utilization_threshold: float = 0.5
    max_node_provision_time: float = 900.0
    balance_similar_node_groups: bool = False
    max_empty_bulk_delete: int = 10
    initial_node_group_backoff_duration: float = 300.0
    max_node_group_backoff_duration: float = 1800.0
    random_seed: int = None

    def __post_init__(self):
        for name in self.expanders:
            if name not in KNOWN_EXPANDERS:
                raise ConfigurationError(
                    f"Unknown expander '{name}', expected one of {', '.join(KNOWN_EXPANDERS)}"
                )
        if not 0 < self.scale_down_utilization_threshold <= 1:
            raise ConfigurationError("scale-down-utilization-threshold must be in (0, 1]")
        if self.max_empty_bulk_delete < 0:
            raise ConfigurationError("max-empty-bulk-delete must not be negative")
        if self.initial_node_group_backoff_duration > self.max_node_group_backoff_duration:
            raise ConfigurationError("initial backoff must not exceed max backoff")

    @property
    def expanders(self):
        return [name.strip() for name in self.expander.split(',') if name.strip()]

    @classmethod
    def from_flags(cls, flags: Dict[str, Any]) -> 'ClusterAutoscalerOptions':
        """
        Parse flags ('--scale-down-unneeded-time=10m' style keys, không cần '--').

        Raises:
            ConfigurationError: Flag không tồn tại hoặc giá trị không hợp lệ
        """
        known = {f.name for f in fields(cls)}
        kwargs = {}
        for raw_name, value in flags.items():
            name = raw_name.lstrip('-').replace('-', '_')
            if name not in known:
                raise ConfigurationError(f"Unknown flag: {raw_name}")

            if name in DURATION_FLAGS:
                kwargs[name] = parse_duration(value)
            elif name in ('scale_down_enabled', 'balance_similar_node_groups'):
                kwargs[name] = _parse_bool(value)
            elif name in ('max_empty_bulk_delete', 'random_seed'):
                kwargs[name] = int(value)
            elif name == 'scale_down_utilization_threshold':
                kwargs[name] = float(value)
            else:
                kwargs[name] = str(value)

        return cls(**kwargs)
