"""
Cluster Resources
=================
Object model cho node-group scaling: resource vectors, node groups, nodes,
pending / scheduled pods, taints, tolerations và disruption budgets.

Fit predicates:
    - Requests của pod nằm trong free capacity của node
    - Pod tolerate mọi taint NoSchedule / NoExecute của node
    - Labels của node thỏa required node affinity của pod

Usage:
    >>> template = NodeTemplate(capacity=ResourceVector(cpu=8, memory=32 * 2**30))
    >>> group = NodeGroup('pool-a', min_size=0, max_size=5, target_size=1, template=template)
    >>> pod = PendingPodSpec('p1', requests=ResourceVector(cpu=2))
    >>> can_schedule(pod, template.labels, template.taints)
    True
"""

from typing import Any, Dict, List, Optional
from dataclasses import dataclass, field

from ..units import ConfigurationError, parse_quantity

# Sai số so sánh float khi kiểm tra fit
FIT_EPSILON = 1e-9

SCHEDULING_EFFECTS = ('NoSchedule', 'NoExecute')

ZONE_LABEL = 'topology.kubernetes.io/zone'


@dataclass(frozen=True)
class ResourceVector:
    """
    Vector resources (CPU cores, memory bytes, GPUs).

    Attributes:
        cpu: CPU cores
        memory: Memory bytes
        gpu: Số GPUs
    """
    cpu: float = 0.0
    memory: float = 0.0
    gpu: float = 0.0

    DIMENSIONS = ('cpu', 'memory', 'gpu')

    def __add__(self, other: 'ResourceVector') -> 'ResourceVector':
        return ResourceVector(self.cpu + other.cpu, self.memory + other.memory, self.gpu + other.gpu)

    def __sub__(self, other: 'ResourceVector') -> 'ResourceVector':
        return ResourceVector(self.cpu - other.cpu, self.memory - other.memory, self.gpu - other.gpu)

    def scale(self, factor: float) -> 'ResourceVector':
        return ResourceVector(self.cpu * factor, self.memory * factor, self.gpu * factor)

    def fits_in(self, capacity: 'ResourceVector') -> bool:
        return all(
            getattr(self, d) <= getattr(capacity, d) + FIT_EPSILON
            for d in self.DIMENSIONS
        )

    def is_zero(self) -> bool:
        return all(getattr(self, d) == 0 for d in self.DIMENSIONS)

    def as_dict(self) -> Dict[str, float]:
        return {d: getattr(self, d) for d in self.DIMENSIONS}

    @classmethod
    def from_manifest(cls, data: Optional[Dict[str, Any]]) -> 'ResourceVector':
        """Parse {'cpu': '500m', 'memory': '1Gi', 'nvidia.com/gpu': 1}."""
        data = data or {}
        gpu = data.get('nvidia.com/gpu', data.get('gpu', 0))
        return cls(
            cpu=parse_quantity(data.get('cpu', 0)),
            memory=parse_quantity(data.get('memory', 0)),
            gpu=parse_quantity(gpu)
        )


@dataclass(frozen=True)
class Taint:
    key: str
    value: Optional[str] = None
    effect: str = 'NoSchedule'


@dataclass(frozen=True)
class Toleration:
    """
    Toleration của pod.

    key=None với operator Exists tolerate mọi taint; effect=None khớp mọi effect.
    """
    key: Optional[str] = None
    operator: str = 'Equal'
    value: Optional[str] = None
    effect: Optional[str] = None

    def tolerates(self, taint: Taint) -> bool:
        if self.effect is not None and self.effect != taint.effect:
            return False
        if self.key is None:
            return self.operator == 'Exists'
        if self.key != taint.key:
            return False
        if self.operator == 'Exists':
            return True
        return self.value == taint.value


@dataclass
class PendingPodSpec:
    """
    Pod chưa schedule được. Engine không bao giờ thay đổi object này.

    Attributes:
        pod_id: Pod ID
        requests: Tổng requests của pod
        tolerations: Tolerations
        node_affinity: Required node affinity {label: [allowed values]}
        labels: Labels của pod (dùng cho disruption budgets)
    """
    pod_id: str
    requests: ResourceVector = field(default_factory=ResourceVector)
    tolerations: List[Toleration] = field(default_factory=list)
    node_affinity: Dict[str, List[str]] = field(default_factory=dict)
    labels: Dict[str, str] = field(default_factory=dict)


@dataclass
class ScheduledPod(PendingPodSpec):
    """
    Pod đang chạy trên một node.

    Attributes:
        has_local_storage: Dùng emptyDir / hostPath (không thể di chuyển)
        controlled: Có controller (ReplicaSet, StatefulSet, ...) tạo lại
        is_daemonset: Pod của DaemonSet (bỏ qua khi tính utilization)
    """
    has_local_storage: bool = False
    controlled: bool = True
    is_daemonset: bool = False


@dataclass
class DisruptionBudget:
    """
    PodDisruptionBudget rút gọn.

    Attributes:
        name: Tên budget
        selector: Labels phải khớp (match-all nếu rỗng)
        disruptions_allowed: Số voluntary disruptions còn được phép
    """
    name: str
    selector: Dict[str, str] = field(default_factory=dict)
    disruptions_allowed: int = 0

    def matches(self, pod: PendingPodSpec) -> bool:
        return all(pod.labels.get(k) == v for k, v in self.selector.items())


@dataclass
class NodeTemplate:
    """Template của các nodes mới trong một node group."""
    capacity: ResourceVector
    labels: Dict[str, str] = field(default_factory=dict)
    taints: List[Taint] = field(default_factory=list)

    def similar_to(self, other: 'NodeTemplate') -> bool:
        """Cùng capacity, taints và labels (bỏ qua zone label)."""
        def strip(labels):
            return {k: v for k, v in labels.items() if k != ZONE_LABEL}

        return (
            self.capacity == other.capacity
            and set(self.taints) == set(other.taints)
            and strip(self.labels) == strip(other.labels)
        )


@dataclass
class Node:
    """
    Node đang tồn tại trong cluster.

    Attributes:
        node_id: Node ID
        node_group_id: Node group chứa node
        allocatable: Capacity có thể schedule
        labels: Labels
        taints: Taints
        pods: Pods đang chạy
        ready: Node ready
    """
    node_id: str
    node_group_id: str
    allocatable: ResourceVector
    labels: Dict[str, str] = field(default_factory=dict)
    taints: List[Taint] = field(default_factory=list)
    pods: List[ScheduledPod] = field(default_factory=list)
    ready: bool = True

    @property
    def workload_pods(self) -> List[ScheduledPod]:
        return [p for p in self.pods if not p.is_daemonset]

    def requested(self) -> ResourceVector:
        total = ResourceVector()
        for pod in self.pods:
            total = total + pod.requests
        return total

    def free(self) -> ResourceVector:
        return self.allocatable - self.requested()

    def utilization(self) -> float:
        """
        Requested utilization: GPU nếu node có GPU, ngược lại max(CPU, memory).
        DaemonSet pods không được tính.
        """
        total = ResourceVector()
        for pod in self.workload_pods:
            total = total + pod.requests

        if self.allocatable.gpu > 0:
            return total.gpu / self.allocatable.gpu

        ratios = []
        if self.allocatable.cpu > 0:
            ratios.append(total.cpu / self.allocatable.cpu)
        if self.allocatable.memory > 0:
            ratios.append(total.memory / self.allocatable.memory)
        return max(ratios) if ratios else 0.0


@dataclass
class NodeGroup:
    """
    Node group (ASG / MIG / node pool).

    Attributes:
        group_id: Node group ID
        min_size: Size tối thiểu
        max_size: Size tối đa
        target_size: Size đã yêu cầu với cloud provider
        template: Template cho nodes mới
        zones: Zones của group
        priority: Priority cho expander 'priority' và tie-break
        ready_size: Số nodes đã ready (mặc định = target_size)
        nodes: Nodes hiện tại của group
    """
    group_id: str
    min_size: int
    max_size: int
    target_size: int
    template: NodeTemplate
    zones: List[str] = field(default_factory=list)
    priority: int = 0
    ready_size: Optional[int] = None
    nodes: List[Node] = field(default_factory=list)

    def __post_init__(self):
        if self.min_size < 0:
            raise ConfigurationError(f"Node group {self.group_id}: min_size must not be negative")
        if self.min_size > self.max_size:
            raise ConfigurationError(
                f"Node group {self.group_id}: min_size ({self.min_size}) > max_size ({self.max_size})"
            )
        if not self.min_size <= self.target_size <= self.max_size:
            raise ConfigurationError(
                f"Node group {self.group_id}: target_size {self.target_size} "
                f"outside [{self.min_size}, {self.max_size}]"
            )
        if self.ready_size is None:
            self.ready_size = self.target_size

    @property
    def headroom(self) -> int:
        return self.max_size - self.target_size

    @property
    def upcoming(self) -> int:
        """Nodes đã yêu cầu nhưng chưa ready."""
        return max(0, self.target_size - self.ready_size)


def tolerates_all(pod: PendingPodSpec, taints: List[Taint]) -> bool:
    return all(
        any(t.tolerates(taint) for t in pod.tolerations)
        for taint in taints
        if taint.effect in SCHEDULING_EFFECTS
    )


def matches_affinity(pod: PendingPodSpec, labels: Dict[str, str]) -> bool:
    return all(labels.get(key) in values for key, values in pod.node_affinity.items())


def can_schedule(pod: PendingPodSpec, labels: Dict[str, str], taints: List[Taint]) -> bool:
    """Pod có thể chạy trên node với labels / taints này (bỏ qua capacity)."""
    return tolerates_all(pod, taints) and matches_affinity(pod, labels)


def pod_sort_key(pod: PendingPodSpec):
    """Key cho first-fit decreasing: pod lớn trước, ID để ổn định."""
    return (-pod.requests.gpu, -pod.requests.cpu, -pod.requests.memory, pod.pod_id)
