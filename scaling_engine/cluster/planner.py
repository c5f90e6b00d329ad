"""
Node Group Scaling Planner
==========================
Lập kế hoạch thay đổi size của node groups (CAS-style).

Scale-up:
    1. Kiểm tra các requests đang chờ: quá max_node_provision_time mà chưa
       ready -> node group vào backoff, pods được plan lại sang groups khác
    2. Pods vừa free capacity của nodes hiện có / nodes đang lên (kể cả nodes
       đã plan mà orchestrator chưa áp dụng) thì bỏ qua
    3. Bin-pack (first-fit decreasing) pods còn lại lên template nodes của
       mỗi group còn headroom, tôn trọng taints / tolerations / node affinity
    4. Expander chọn group; balance-similar-node-groups chia đều nodes mới

Scale-down:
    - Node unneeded: utilization < threshold liên tục trong unneeded_time
    - Mọi pod (trừ DaemonSet) phải có controller, không có local storage,
      không vượt disruption budget và đặt lại được lên các nodes còn lại
    - Group không xuống dưới min_size, không scale-down trong cooldown
      scale_down_delay_after_add sau lần scale-up cuối
    - Mỗi tick: tối đa 1 node còn pods + max_empty_bulk_delete empty nodes

Usage:
    >>> planner = NodeGroupScalingPlanner(ClusterAutoscalerOptions())
    >>> ups = planner.plan_scale_up(node_groups, pending_pods, now=1000.0)
    >>> downs = planner.plan_scale_down(node_groups, now=1000.0)
"""

import logging
import threading
from typing import Dict, Iterable, List, Optional, Sequence, Set, Tuple
from dataclasses import dataclass, field

from .options import ClusterAutoscalerOptions
from .expander import Expander, ExpansionOption
from .resources import (
    DisruptionBudget,
    Node,
    NodeGroup,
    PendingPodSpec,
    ResourceVector,
    ScheduledPod,
    can_schedule,
    pod_sort_key,
)

logger = logging.getLogger(__name__)


@dataclass
class ScaleUpPlan:
    """
    Thêm delta_nodes nodes vào node group.

    Attributes:
        node_group_id: Node group ID
        delta_nodes: Số nodes cần thêm
        pods: Pending pods dẫn tới expansion này
    """
    node_group_id: str
    delta_nodes: int
    pods: List[str] = field(default_factory=list)


@dataclass
class ScaleDownPlan:
    """Xóa node_id khỏi node group."""
    node_id: str
    node_group_id: str
    reason: str = ""


class NodeGroupScalingPlanner:
    """
    Planner cho scale-up / scale-down của node groups.

    State giữa các ticks: thời điểm node bắt đầu unneeded, lần scale-up cuối
    của group, requests đang provision và backoff. Mỗi node group có một lock
    riêng, mọi thay đổi state của group đều đi qua lock đó. Mỗi lượt scale-up
    (đọc size, plan, ghi request) chạy dưới một lock chung, size dùng để plan
    là effective_size() nên ticks liên tiếp không plan lại cùng headroom.

    Attributes:
        options: ClusterAutoscalerOptions
        expander: Expander chain
    """

    def __init__(self, options: Optional[ClusterAutoscalerOptions] = None):
        self.options = options or ClusterAutoscalerOptions()
        self.expander = Expander(self.options.expander, self.options.random_seed)

        self._unneeded_since: Dict[str, float] = {}
        self._last_scale_up: Dict[str, float] = {}
        self._requests: Dict[str, Tuple[float, int]] = {}
        self._backoff_until: Dict[str, float] = {}
        self._backoff_failures: Dict[str, int] = {}

        self._locks: Dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()
        self._plan_lock = threading.Lock()

    def group_lock(self, group_id: str) -> threading.Lock:
        with self._locks_guard:
            lock = self._locks.get(group_id)
            if lock is None:
                lock = self._locks[group_id] = threading.Lock()
            return lock

    def in_backoff(self, group_id: str, now: float) -> bool:
        until = self._backoff_until.get(group_id)
        return until is not None and now < until

    def backoff_groups(self, now: float) -> Dict[str, float]:
        """{group_id: backoff_until} của các groups đang backoff."""
        return {g: until for g, until in self._backoff_until.items() if now < until}

    def unneeded_nodes(self) -> Dict[str, float]:
        """{node_id: unneeded_since}."""
        return dict(self._unneeded_since)

    def effective_size(self, group: NodeGroup) -> int:
        """Size đã yêu cầu: target_size hoặc size đã plan mà orchestrator chưa áp dụng."""
        with self.group_lock(group.group_id):
            request = self._requests.get(group.group_id)
        if request is None:
            return group.target_size
        return min(group.max_size, max(group.target_size, request[1]))

    # ------------------------------------------------------------------
    # Scale-up
    # ------------------------------------------------------------------

    def _check_provisioning(self, groups: Sequence[NodeGroup], now: float):
        for group in groups:
            with self.group_lock(group.group_id):
                request = self._requests.get(group.group_id)
                if request is None:
                    continue
                requested_at, expected = request

                if group.ready_size >= expected:
                    del self._requests[group.group_id]
                    self._backoff_failures.pop(group.group_id, None)
                elif now - requested_at > self.options.max_node_provision_time:
                    failures = self._backoff_failures.get(group.group_id, 0) + 1
                    duration = min(
                        self.options.initial_node_group_backoff_duration * 2 ** (failures - 1),
                        self.options.max_node_group_backoff_duration
                    )
                    self._backoff_failures[group.group_id] = failures
                    self._backoff_until[group.group_id] = now + duration
                    del self._requests[group.group_id]
                    logger.warning(
                        "Node group %s: %d/%d nodes ready after %.0fs, backing off for %.0fs",
                        group.group_id, group.ready_size, expected, now - requested_at, duration
                    )

    def _filter_schedulable(
        self,
        pods: List[PendingPodSpec],
        groups: Sequence[NodeGroup],
        sizes: Dict[str, int],
        now: float
    ) -> List[PendingPodSpec]:
        """Bỏ các pods vừa free capacity của nodes hiện có hoặc nodes đang lên."""
        bins = []
        for group in groups:
            for node in group.nodes:
                if node.ready:
                    bins.append([node.labels, node.taints, node.free()])
            if not self.in_backoff(group.group_id, now):
                template = group.template
                for _ in range(max(0, sizes[group.group_id] - group.ready_size)):
                    bins.append([template.labels, template.taints, template.capacity])

        remaining = []
        for pod in pods:
            for slot in bins:
                labels, taints, free = slot
                if pod.requests.fits_in(free) and can_schedule(pod, labels, taints):
                    slot[2] = free - pod.requests
                    break
            else:
                remaining.append(pod)

        if len(remaining) < len(pods):
            logger.debug("%d pending pods fit existing or upcoming capacity", len(pods) - len(remaining))
        return remaining

    @staticmethod
    def _simulate_group(
        group: NodeGroup,
        pods: List[PendingPodSpec],
        headroom: int
    ) -> Optional[ExpansionOption]:
        """First-fit decreasing của pods lên nodes mới từ template của group."""
        if headroom <= 0:
            return None

        template = group.template
        bins: List[ResourceVector] = []
        placed = []

        for pod in pods:
            if not pod.requests.fits_in(template.capacity):
                continue
            if not can_schedule(pod, template.labels, template.taints):
                continue

            for i, free in enumerate(bins):
                if pod.requests.fits_in(free):
                    bins[i] = free - pod.requests
                    placed.append(pod)
                    break
            else:
                if len(bins) < headroom:
                    bins.append(template.capacity - pod.requests)
                    placed.append(pod)

        if not bins:
            return None
        return ExpansionOption(group, len(bins), placed)

    @staticmethod
    def _accepts_all(group: NodeGroup, pods: List[PendingPodSpec]) -> bool:
        template = group.template
        return all(
            pod.requests.fits_in(template.capacity) and can_schedule(pod, template.labels, template.taints)
            for pod in pods
        )

    def _balance(
        self,
        best: ExpansionOption,
        available: Sequence[NodeGroup],
        sizes: Dict[str, int]
    ) -> List[Tuple[NodeGroup, int]]:
        """Chia nodes mới đều giữa các groups tương tự mà mọi pod đều chạy được."""
        similar = [
            g for g in available
            if g.group_id != best.node_group.group_id
            and g.template.similar_to(best.node_group.template)
            and self._accepts_all(g, best.pods)
        ]
        if not similar:
            return [(best.node_group, best.node_count)]

        groups = [best.node_group] + similar
        assigned = {g.group_id: 0 for g in groups}
        for _ in range(best.node_count):
            candidates = [g for g in groups if assigned[g.group_id] < g.max_size - sizes[g.group_id]]
            if not candidates:
                break
            target = min(candidates, key=lambda g: (sizes[g.group_id] + assigned[g.group_id], g.group_id))
            assigned[target.group_id] += 1

        return [(g, assigned[g.group_id]) for g in groups if assigned[g.group_id] > 0]

    def _record_scale_up(self, group: NodeGroup, size: int, delta: int, now: float):
        with self.group_lock(group.group_id):
            self._last_scale_up[group.group_id] = now
            previous = self._requests.get(group.group_id)
            requested_at = previous[0] if previous else now
            self._requests[group.group_id] = (requested_at, size + delta)

    def plan_scale_up(
        self,
        node_groups: Sequence[NodeGroup],
        pending_pods: Iterable[PendingPodSpec],
        now: float
    ) -> List[ScaleUpPlan]:
        """
        Lập kế hoạch scale-up cho pending pods.

        Args:
            node_groups: Node groups hiện tại
            pending_pods: Pods chưa schedule được
            now: Thời điểm tick

        Returns:
            List ScaleUpPlan (rỗng nếu không cần / không thể scale-up)
        """
        with self._plan_lock:
            self._check_provisioning(node_groups, now)

            pods = sorted(pending_pods, key=pod_sort_key)
            if not pods:
                return []

            sizes = {g.group_id: self.effective_size(g) for g in node_groups}
            remaining = self._filter_schedulable(pods, node_groups, sizes, now)
            available = [
                g for g in node_groups
                if g.max_size > sizes[g.group_id] and not self.in_backoff(g.group_id, now)
            ]

            plans = []
            while remaining and available:
                options = []
                for group in available:
                    option = self._simulate_group(group, remaining, group.max_size - sizes[group.group_id])
                    if option is not None:
                        options.append(option)

                best = self.expander.choose(options)
                if best is None:
                    break

                if self.options.balance_similar_node_groups:
                    allocations = self._balance(best, available, sizes)
                else:
                    allocations = [(best.node_group, best.node_count)]

                placed = sorted(p.pod_id for p in best.pods)
                for group, delta in allocations:
                    size = sizes[group.group_id]
                    self._record_scale_up(group, size, delta, now)
                    sizes[group.group_id] = size + delta
                    plans.append(ScaleUpPlan(group.group_id, delta, placed))
                    logger.info(
                        "Node group %s: scale-up +%d nodes (%d -> %d) for %d pods",
                        group.group_id, delta, size, size + delta, len(placed)
                    )

                used = {g.group_id for g, _ in allocations}
                placed_ids = set(placed)
                remaining = [p for p in remaining if p.pod_id not in placed_ids]
                available = [g for g in available if g.group_id not in used]

            if remaining:
                logger.warning(
                    "%d pending pods fit no available node group: %s",
                    len(remaining), ', '.join(p.pod_id for p in remaining[:5])
                )
            return plans

    # ------------------------------------------------------------------
    # Scale-down
    # ------------------------------------------------------------------

    @staticmethod
    def _eviction_blocker(
        pods: List[ScheduledPod],
        budgets: Sequence[DisruptionBudget],
        budgets_left: Dict[str, int]
    ) -> Optional[str]:
        needed: Dict[str, int] = {}
        for pod in pods:
            if not pod.controlled:
                return f"pod {pod.pod_id} is not backed by a controller"
            if pod.has_local_storage:
                return f"pod {pod.pod_id} uses local storage"
            for budget in budgets:
                if budget.matches(pod):
                    needed[budget.name] = needed.get(budget.name, 0) + 1

        for name, count in needed.items():
            if count > budgets_left.get(name, 0):
                return f"disruption budget {name} allows {budgets_left.get(name, 0)}, needs {count}"
        return None

    @staticmethod
    def _reschedule(
        pods: List[ScheduledPod],
        node: Node,
        nodes: List[Node],
        deleted: Set[str],
        free: Dict[str, ResourceVector]
    ) -> Optional[Dict[str, ResourceVector]]:
        """Thử đặt lại pods lên các nodes còn lại; trả về free capacity mới hoặc None."""
        destinations = sorted(
            (n for n in nodes if n.ready and n.node_id != node.node_id and n.node_id not in deleted),
            key=lambda n: n.node_id
        )
        updated = dict(free)

        for pod in sorted(pods, key=pod_sort_key):
            for dest in destinations:
                capacity = updated[dest.node_id]
                if pod.requests.fits_in(capacity) and can_schedule(pod, dest.labels, dest.taints):
                    updated[dest.node_id] = capacity - pod.requests
                    break
            else:
                return None
        return updated

    def plan_scale_down(
        self,
        node_groups: Sequence[NodeGroup],
        now: float,
        budgets: Sequence[DisruptionBudget] = ()
    ) -> List[ScaleDownPlan]:
        """
        Lập kế hoạch xóa các nodes unneeded.

        Args:
            node_groups: Node groups (kèm nodes và pods trên nodes)
            now: Thời điểm tick
            budgets: Disruption budgets hiện tại

        Returns:
            List ScaleDownPlan
        """
        if not self.options.scale_down_enabled:
            self._unneeded_since.clear()
            return []

        nodes = [n for g in node_groups for n in g.nodes]
        groups = {g.group_id: g for g in node_groups}
        live = {n.node_id for n in nodes}
        for node_id in [n for n in self._unneeded_since if n not in live]:
            del self._unneeded_since[node_id]

        threshold = self.options.scale_down_utilization_threshold
        candidates = []

        for group in node_groups:
            last_up = self._last_scale_up.get(group.group_id)
            cooling_down = last_up is not None and now - last_up < self.options.scale_down_delay_after_add

            with self.group_lock(group.group_id):
                for node in group.nodes:
                    utilization = node.utilization()
                    if not node.ready or utilization >= threshold:
                        self._unneeded_since.pop(node.node_id, None)
                        continue

                    since = self._unneeded_since.setdefault(node.node_id, now)
                    if cooling_down or now - since < self.options.scale_down_unneeded_time:
                        continue
                    candidates.append((node, utilization))

        # Empty nodes trước, sau đó utilization thấp nhất
        candidates.sort(key=lambda item: (bool(item[0].workload_pods), item[1], item[0].node_id))

        sizes = {g.group_id: g.target_size for g in node_groups}
        budgets_left = {b.name: b.disruptions_allowed for b in budgets}
        free = {n.node_id: n.free() for n in nodes if n.ready}
        deleted: Set[str] = set()
        plans = []
        empty_count = 0
        drained_one = False

        for node, utilization in candidates:
            group = groups[node.node_group_id]
            pods = node.workload_pods

            with self.group_lock(group.group_id):
                if sizes[group.group_id] - 1 < group.min_size:
                    logger.debug("Node %s: group %s at min size", node.node_id, group.group_id)
                    continue

                if not pods:
                    if empty_count >= self.options.max_empty_bulk_delete:
                        continue
                    empty_count += 1
                    reason = "empty node"
                else:
                    if drained_one:
                        continue
                    blocker = self._eviction_blocker(pods, budgets, budgets_left)
                    if blocker:
                        logger.warning("Node %s: scale-down blocked, %s", node.node_id, blocker)
                        continue
                    placement = self._reschedule(pods, node, nodes, deleted, free)
                    if placement is None:
                        logger.info("Node %s: pods cannot be rescheduled, keeping node", node.node_id)
                        continue

                    free = placement
                    for budget in budgets:
                        matched = sum(1 for p in pods if budget.matches(p))
                        budgets_left[budget.name] -= matched
                    drained_one = True
                    reason = (
                        f"utilization {utilization:.2f} below {threshold:.2f} "
                        f"for {now - self._unneeded_since[node.node_id]:.0f}s"
                    )

                sizes[group.group_id] -= 1
                deleted.add(node.node_id)
                self._unneeded_since.pop(node.node_id, None)

            free.pop(node.node_id, None)
            plans.append(ScaleDownPlan(node.node_id, group.group_id, reason))
            logger.info("Node group %s: scale-down node %s (%s)", group.group_id, node.node_id, reason)

        return plans
