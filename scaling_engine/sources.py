"""
External Sources
================
Interfaces của các collaborators bên ngoài engine, cùng implementation
in-memory dùng cho API demo, simulation và tests.

Interfaces:
    - MetricsSource.get_samples(target_id, metric_spec) -> List[MetricSample]
    - ObjectModelSource.get_target / get_pending_pods / get_node_groups
      (+ get_disruption_budgets, get_workload_pods nếu có)

Engine không bao giờ tự áp dụng decision; orchestrator (ở đây là
InMemoryObjectModel) nhận ScalingDecision / plans và cập nhật state.
"""

import logging
import threading
from collections import defaultdict
from typing import Dict, List, Protocol

from .metrics.store import MetricSample
from .horizontal.spec import MetricSpec
from .horizontal.autoscaler import ScalingDecision, ScalingTarget
from .cluster.resources import DisruptionBudget, NodeGroup, PendingPodSpec
from .cluster.planner import ScaleDownPlan, ScaleUpPlan
from .vertical.updater import PodResources

logger = logging.getLogger(__name__)


class MetricsSource(Protocol):
    def get_samples(self, target_id: str, metric_spec: MetricSpec) -> List[MetricSample]:
        ...


class ObjectModelSource(Protocol):
    def get_target(self, target_id: str) -> ScalingTarget:
        ...

    def get_pending_pods(self) -> List[PendingPodSpec]:
        ...

    def get_node_groups(self) -> List[NodeGroup]:
        ...


class InMemoryMetricsSource:
    """
    MetricsSource giữ samples trong queue; get_samples trả về và xóa các
    samples mới kể từ lần đọc trước (engine tự lưu history trong store).
    """

    def __init__(self):
        self._pending: Dict[tuple, List[MetricSample]] = defaultdict(list)
        self._lock = threading.Lock()

    def push(self, sample: MetricSample):
        with self._lock:
            self._pending[(sample.target_id, sample.metric_id)].append(sample)

    def get_samples(self, target_id: str, metric_spec: MetricSpec) -> List[MetricSample]:
        with self._lock:
            return self._pending.pop((target_id, metric_spec.metric_id), [])


class InMemoryObjectModel:
    """
    Object model in-memory: targets, node groups, pending pods, budgets.

    Đóng vai trò orchestrator: apply_decision / apply_scale_up /
    apply_scale_down cập nhật state theo decisions của engine.
    """

    def __init__(self):
        self._targets: Dict[str, ScalingTarget] = {}
        self._node_groups: Dict[str, NodeGroup] = {}
        self._pending: Dict[str, PendingPodSpec] = {}
        self._budgets: Dict[str, DisruptionBudget] = {}
        self._workload_pods: Dict[str, Dict[str, PodResources]] = defaultdict(dict)
        self._lock = threading.RLock()

    # Targets
    def register_target(self, target: ScalingTarget):
        with self._lock:
            self._targets[target.target_id] = target

    def remove_target(self, target_id: str):
        with self._lock:
            self._targets.pop(target_id, None)

    def get_target(self, target_id: str) -> ScalingTarget:
        with self._lock:
            return self._targets[target_id]

    def apply_decision(self, decision: ScalingDecision):
        with self._lock:
            target = self._targets.get(decision.target_id)
            if target is None:
                logger.warning("Decision for unknown target %s ignored", decision.target_id)
                return
            target.current_scale = decision.applied_scale

    # Node groups
    def add_node_group(self, group: NodeGroup):
        with self._lock:
            self._node_groups[group.group_id] = group

    def get_node_groups(self) -> List[NodeGroup]:
        with self._lock:
            return list(self._node_groups.values())

    def apply_scale_up(self, plan: ScaleUpPlan):
        with self._lock:
            group = self._node_groups[plan.node_group_id]
            group.target_size = min(group.max_size, group.target_size + plan.delta_nodes)

    def apply_scale_down(self, plan: ScaleDownPlan):
        with self._lock:
            group = self._node_groups[plan.node_group_id]
            group.nodes = [n for n in group.nodes if n.node_id != plan.node_id]
            group.target_size = max(group.min_size, group.target_size - 1)
            group.ready_size = min(group.ready_size, group.target_size)

    # Pods
    def add_pending_pod(self, pod: PendingPodSpec):
        with self._lock:
            self._pending[pod.pod_id] = pod

    def remove_pending_pod(self, pod_id: str):
        with self._lock:
            self._pending.pop(pod_id, None)

    def get_pending_pods(self) -> List[PendingPodSpec]:
        with self._lock:
            return list(self._pending.values())

    def set_disruption_budget(self, budget: DisruptionBudget):
        with self._lock:
            self._budgets[budget.name] = budget

    def get_disruption_budgets(self) -> List[DisruptionBudget]:
        with self._lock:
            return list(self._budgets.values())

    def set_workload_pod(self, workload_id: str, pod: PodResources):
        with self._lock:
            self._workload_pods[workload_id][pod.pod_id] = pod

    def get_workload_pods(self, workload_id: str) -> List[PodResources]:
        with self._lock:
            return list(self._workload_pods.get(workload_id, {}).values())
