"""
Resource Recommender
====================
Đề xuất resource requests cho từng container (VPA-style).

Mỗi (container, resource) có một DecayingHistogram:
    - target      = P90 của usage
    - lower_bound = P50
    - upper_bound = P95 * (1 + safety_margin)

Sau đó áp dụng pod minimums (25m CPU, 250Mi memory, chia đều cho các
containers của pod) rồi clamp vào [minAllowed, maxAllowed] của container
policy. Luôn đảm bảo lower_bound <= target <= upper_bound.

Usage:
    >>> recommender = ResourceRecommender()
    >>> recommender.add_sample('web/app', 'cpu', 0.8, timestamp=1000.0)
    >>> rec = recommender.recommend('web/app', policy)
    >>> rec.target['cpu']
"""

import logging
from typing import Any, Dict, List, Optional, Tuple
from dataclasses import dataclass, field
from enum import Enum
from threading import RLock

from ..units import ConfigurationError, parse_quantity, format_cpu, format_memory
from .histogram import DecayingHistogram, HistogramOptions

logger = logging.getLogger(__name__)

CPU = 'cpu'
MEMORY = 'memory'
SUPPORTED_RESOURCES = (CPU, MEMORY)


class UpdateMode(str, Enum):
    """Cách áp dụng recommendation lên pods."""
    OFF = "Off"
    INITIAL = "Initial"
    AUTO = "Auto"


class ContainerScalingMode(str, Enum):
    AUTO = "Auto"
    OFF = "Off"


def _parse_resources(data: Optional[Dict[str, Any]], field_name: str) -> Dict[str, float]:
    resources = {}
    for name, value in (data or {}).items():
        if name not in SUPPORTED_RESOURCES:
            raise ConfigurationError(f"{field_name}: unsupported resource '{name}'")
        resources[name] = parse_quantity(value)
        if resources[name] < 0:
            raise ConfigurationError(f"{field_name}.{name} must not be negative")
    return resources


@dataclass
class ContainerResourcePolicy:
    """
    Resource policy cho một container (hoặc '*' cho mọi container).

    Attributes:
        container_name: Tên container, '*' là default
        min_allowed: Request tối thiểu theo resource
        max_allowed: Request tối đa theo resource
        mode: Auto hoặc Off (Off = bỏ qua container)
        controlled_resources: Resources được điều chỉnh
    """
    container_name: str = '*'
    min_allowed: Dict[str, float] = field(default_factory=dict)
    max_allowed: Dict[str, float] = field(default_factory=dict)
    mode: ContainerScalingMode = ContainerScalingMode.AUTO
    controlled_resources: Tuple[str, ...] = SUPPORTED_RESOURCES

    def __post_init__(self):
        for resource in self.controlled_resources:
            if resource not in SUPPORTED_RESOURCES:
                raise ConfigurationError(f"Unsupported controlled resource '{resource}'")
        for resource, lower in self.min_allowed.items():
            upper = self.max_allowed.get(resource)
            if upper is not None and lower > upper:
                raise ConfigurationError(
                    f"Container {self.container_name}: minAllowed.{resource} > maxAllowed.{resource}"
                )

    @classmethod
    def from_manifest(cls, data: Dict[str, Any]) -> 'ContainerResourcePolicy':
        try:
            mode = ContainerScalingMode(data.get('mode', 'Auto'))
        except ValueError:
            raise ConfigurationError(f"Invalid container mode: {data.get('mode')!r}")

        return cls(
            container_name=data.get('containerName', '*'),
            min_allowed=_parse_resources(data.get('minAllowed'), 'minAllowed'),
            max_allowed=_parse_resources(data.get('maxAllowed'), 'maxAllowed'),
            mode=mode,
            controlled_resources=tuple(data.get('controlledResources', SUPPORTED_RESOURCES))
        )

    def clamp(self, resource: str, value: float) -> float:
        lower = self.min_allowed.get(resource)
        upper = self.max_allowed.get(resource)
        if lower is not None and value < lower:
            value = lower
        if upper is not None and value > upper:
            value = upper
        return value


@dataclass
class VerticalScalerSpec:
    """
    Spec cho một workload được vertical scaling.

    Attributes:
        update_mode: Off / Initial / Auto
        min_replicas: Số ready replicas tối thiểu khi evict
        container_policies: Policies theo container
    """
    update_mode: UpdateMode = UpdateMode.AUTO
    min_replicas: int = 2
    container_policies: List[ContainerResourcePolicy] = field(default_factory=list)

    def __post_init__(self):
        if self.min_replicas < 1:
            raise ConfigurationError("updatePolicy.minReplicas must be >= 1")
        names = [p.container_name for p in self.container_policies]
        if len(names) != len(set(names)):
            raise ConfigurationError("Duplicate containerName in resourcePolicy")

    def policy_for(self, container_name: str) -> ContainerResourcePolicy:
        default = None
        for policy in self.container_policies:
            if policy.container_name == container_name:
                return policy
            if policy.container_name == '*':
                default = policy
        return default or ContainerResourcePolicy(container_name=container_name)

    @classmethod
    def from_manifest(cls, manifest: Dict[str, Any]) -> 'VerticalScalerSpec':
        """Parse từ VPA object hoặc chỉ phần spec của nó."""
        spec = manifest.get('spec', manifest)
        update_policy = spec.get('updatePolicy') or {}
        resource_policy = spec.get('resourcePolicy') or {}

        try:
            mode = UpdateMode(update_policy.get('updateMode', 'Auto'))
        except ValueError:
            raise ConfigurationError(f"Invalid updateMode: {update_policy.get('updateMode')!r}")

        return cls(
            update_mode=mode,
            min_replicas=int(update_policy.get('minReplicas', 2)),
            container_policies=[
                ContainerResourcePolicy.from_manifest(p)
                for p in resource_policy.get('containerPolicies', [])
            ]
        )


@dataclass
class RecommendedResources:
    """
    Recommendation cho một container.

    Attributes:
        container_id: '<workload>/<container>'
        target: Request đề xuất
        lower_bound: Dưới mức này pod được coi là thiếu resource
        upper_bound: Trên mức này pod được coi là thừa resource
        uncapped_target: Target trước khi áp dụng policy
    """
    container_id: str
    target: Dict[str, float] = field(default_factory=dict)
    lower_bound: Dict[str, float] = field(default_factory=dict)
    upper_bound: Dict[str, float] = field(default_factory=dict)
    uncapped_target: Dict[str, float] = field(default_factory=dict)

    @property
    def empty(self) -> bool:
        return not self.target

    def to_dict(self) -> Dict:
        def fmt(values: Dict[str, float]) -> Dict[str, str]:
            return {
                r: format_cpu(v) if r == CPU else format_memory(v)
                for r, v in values.items()
            }

        return {
            'containerName': self.container_id.split('/', 1)[-1],
            'target': fmt(self.target),
            'lowerBound': fmt(self.lower_bound),
            'upperBound': fmt(self.upper_bound),
            'uncappedTarget': fmt(self.uncapped_target)
        }


@dataclass
class RecommenderConfig:
    """
    Cấu hình recommender.

    Attributes:
        cpu_first_bucket: Bucket đầu tiên cho CPU (cores)
        memory_first_bucket: Bucket đầu tiên cho memory (bytes)
        bucket_ratio: Tỷ lệ tăng kích thước buckets
        half_life_seconds: Half-life của sample weight
        target_percentile: Percentile cho target
        lower_bound_percentile: Percentile cho lower bound
        upper_bound_percentile: Percentile cho upper bound
        safety_margin: Margin nhân vào upper bound
        pod_min_cpu: CPU tối thiểu cho cả pod (cores)
        pod_min_memory: Memory tối thiểu cho cả pod (bytes)
    """
    cpu_first_bucket: float = 0.01
    memory_first_bucket: float = 1e7
    bucket_ratio: float = 1.05
    max_cpu: float = 1000.0
    max_memory: float = 1e14
    half_life_seconds: float = 24 * 3600
    target_percentile: float = 0.9
    lower_bound_percentile: float = 0.5
    upper_bound_percentile: float = 0.95
    safety_margin: float = 0.15
    pod_min_cpu: float = 0.025
    pod_min_memory: float = 250 * 2 ** 20

    def __post_init__(self):
        if not (0 < self.lower_bound_percentile <= self.target_percentile <= self.upper_bound_percentile <= 1):
            raise ConfigurationError("Percentiles must satisfy 0 < lower <= target <= upper <= 1")
        if self.safety_margin < 0:
            raise ConfigurationError("safety_margin must not be negative")

    def histogram_options(self, resource: str) -> HistogramOptions:
        if resource == CPU:
            return HistogramOptions(self.max_cpu, self.cpu_first_bucket, self.bucket_ratio)
        return HistogramOptions(self.max_memory, self.memory_first_bucket, self.bucket_ratio)

    def pod_minimum(self, resource: str) -> float:
        return self.pod_min_cpu if resource == CPU else self.pod_min_memory


class ResourceRecommender:
    """
    Recommender giữ một DecayingHistogram cho mỗi (container, resource).

    Thread-safe: add_sample và recommend có thể gọi từ các threads khác nhau.
    """

    def __init__(self, config: Optional[RecommenderConfig] = None):
        self.config = config or RecommenderConfig()
        self._histograms: Dict[Tuple[str, str], DecayingHistogram] = {}
        self._lock = RLock()

    def add_sample(self, container_id: str, resource: str, value: float, timestamp: float, weight: float = 1.0):
        """
        Thêm một usage sample.

        Args:
            container_id: '<workload>/<container>'
            resource: 'cpu' (cores) hoặc 'memory' (bytes)
            value: Usage quan sát
            timestamp: Thời điểm sample
            weight: Trọng số (vd: CPU request tại thời điểm đo)
        """
        if resource not in SUPPORTED_RESOURCES:
            raise ValueError(f"Unsupported resource: {resource}")

        key = (container_id, resource)
        with self._lock:
            histogram = self._histograms.get(key)
            if histogram is None:
                histogram = DecayingHistogram(
                    self.config.histogram_options(resource),
                    self.config.half_life_seconds
                )
                self._histograms[key] = histogram
                logger.debug("New histogram for %s/%s", container_id, resource)
            histogram.add_sample(value, weight, timestamp)

    def containers(self) -> List[str]:
        with self._lock:
            return sorted({c for c, _ in self._histograms})

    def reset_container(self, container_id: str):
        with self._lock:
            for key in [k for k in self._histograms if k[0] == container_id]:
                del self._histograms[key]

    def recommend(
        self,
        container_id: str,
        policy: Optional[ContainerResourcePolicy] = None,
        containers_in_pod: int = 1
    ) -> RecommendedResources:
        """
        Tính recommendation cho container.

        Args:
            container_id: '<workload>/<container>'
            policy: Container policy (mặc định không giới hạn)
            containers_in_pod: Số containers chia nhau pod minimums

        Returns:
            RecommendedResources (rỗng nếu container policy mode Off)

        Raises:
            KeyError: Container chưa có sample nào
        """
        policy = policy or ContainerResourcePolicy()
        with self._lock:
            histograms = {
                r: h for (c, r), h in self._histograms.items()
                if c == container_id
            }
            if not histograms:
                raise KeyError(container_id)

            rec = RecommendedResources(container_id)
            if policy.mode == ContainerScalingMode.OFF:
                return rec

            cfg = self.config
            for resource in policy.controlled_resources:
                histogram = histograms.get(resource)
                if histogram is None or histogram.is_empty():
                    continue

                target = histogram.percentile(cfg.target_percentile)
                lower = histogram.percentile(cfg.lower_bound_percentile)
                upper = histogram.percentile(cfg.upper_bound_percentile) * (1 + cfg.safety_margin)

                minimum = cfg.pod_minimum(resource) / max(1, containers_in_pod)
                rec.uncapped_target[resource] = max(target, minimum)
                rec.target[resource] = policy.clamp(resource, max(target, minimum))
                rec.lower_bound[resource] = policy.clamp(resource, max(lower, minimum))
                rec.upper_bound[resource] = policy.clamp(resource, max(upper, minimum))

        return rec
