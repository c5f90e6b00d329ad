"""
Expanders
=========
Chọn node group để scale-up khi có nhiều lựa chọn.

Strategies:
    - least-waste: ít capacity thừa nhất (trung bình theo các dimensions)
    - most-pods: schedule được nhiều pods nhất
    - priority: node group priority cao nhất
    - random: chọn ngẫu nhiên (seed được để tái lập)

Nhiều strategies có thể nối bằng dấu phẩy ("least-waste,priority"): mỗi
strategy lọc tập options, strategy sau chỉ chọn trong kết quả của strategy
trước. Nếu vẫn còn hòa: priority cao hơn thắng, rồi tới group ID nhỏ hơn.
"""

import random
import logging
from typing import List, Optional
from dataclasses import dataclass, field

from ..units import ConfigurationError
from .resources import NodeGroup, PendingPodSpec, ResourceVector
from .options import KNOWN_EXPANDERS

logger = logging.getLogger(__name__)

SCORE_EPSILON = 1e-9


@dataclass
class ExpansionOption:
    """
    Một cách scale-up: thêm node_count nodes vào node_group cho các pods.

    Attributes:
        node_group: Node group
        node_count: Số nodes mới
        pods: Pods schedule được trên các nodes mới
    """
    node_group: NodeGroup
    node_count: int
    pods: List[PendingPodSpec] = field(default_factory=list)

    @property
    def requested(self) -> ResourceVector:
        total = ResourceVector()
        for pod in self.pods:
            total = total + pod.requests
        return total

    def waste(self) -> float:
        """Tỷ lệ capacity không dùng, trung bình trên các dimensions có capacity > 0."""
        capacity = self.node_group.template.capacity.scale(self.node_count)
        requested = self.requested
        fractions = [
            (getattr(capacity, d) - getattr(requested, d)) / getattr(capacity, d)
            for d in ResourceVector.DIMENSIONS
            if getattr(capacity, d) > 0
        ]
        return sum(fractions) / len(fractions) if fractions else 1.0


def least_waste(options: List[ExpansionOption], rng: random.Random) -> List[ExpansionOption]:
    best = min(o.waste() for o in options)
    return [o for o in options if o.waste() <= best + SCORE_EPSILON]


def most_pods(options: List[ExpansionOption], rng: random.Random) -> List[ExpansionOption]:
    best = max(len(o.pods) for o in options)
    return [o for o in options if len(o.pods) == best]


def highest_priority(options: List[ExpansionOption], rng: random.Random) -> List[ExpansionOption]:
    best = max(o.node_group.priority for o in options)
    return [o for o in options if o.node_group.priority == best]


def pick_random(options: List[ExpansionOption], rng: random.Random) -> List[ExpansionOption]:
    return [rng.choice(sorted(options, key=lambda o: o.node_group.group_id))]


STRATEGIES = {
    'least-waste': least_waste,
    'most-pods': most_pods,
    'priority': highest_priority,
    'random': pick_random,
}


class Expander:
    """
    Chuỗi expander strategies.

    Example:
        >>> expander = Expander('least-waste,priority')
        >>> best = expander.choose(options)
    """

    def __init__(self, names: str = 'least-waste', seed: Optional[int] = None):
        self.names = [n.strip() for n in names.split(',') if n.strip()]
        if not self.names:
            raise ConfigurationError("At least one expander is required")
        for name in self.names:
            if name not in KNOWN_EXPANDERS:
                raise ConfigurationError(f"Unknown expander '{name}'")
        self._rng = random.Random(seed)

    def choose(self, options: List[ExpansionOption]) -> Optional[ExpansionOption]:
        """Chọn option tốt nhất; None nếu không có option nào."""
        if not options:
            return None

        remaining = list(options)
        for name in self.names:
            if len(remaining) == 1:
                break
            remaining = STRATEGIES[name](remaining, self._rng)

        best = min(remaining, key=lambda o: (-o.node_group.priority, o.node_group.group_id))
        logger.debug(
            "Expander %s chose %s (+%d nodes, %d pods) from %d options",
            ','.join(self.names), best.node_group.group_id, best.node_count, len(best.pods), len(options)
        )
        return best
