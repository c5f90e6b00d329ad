"""
Horizontal Scaler Spec
======================
Định nghĩa declarative config cho horizontal scaling (autoscaling/v2 shape).

Cấu trúc:
    - MetricSpec: tagged variant - ResourceMetricSource | PodsMetricSource
      | ObjectMetricSource | ExternalMetricSource, mỗi loại có MetricTarget
    - ScalingRule / ScalingRules / ScalingBehavior: stabilization windows
      và step policies cho từng direction
    - HorizontalScalerSpec: minReplicas, maxReplicas, metrics, behavior

Validation chạy trong __post_init__: config sai sẽ raise ConfigurationError
ngay lúc tạo spec, không bao giờ tới control loop.

Usage:
    >>> spec = HorizontalScalerSpec.from_manifest({
    ...     'minReplicas': 2, 'maxReplicas': 10,
    ...     'metrics': [{'type': 'Resource', 'resource': {
    ...         'name': 'cpu',
    ...         'target': {'type': 'Utilization', 'averageUtilization': 80}}}]
    ... })
"""

from typing import Any, ClassVar, Dict, FrozenSet, List, Optional, Union
from dataclasses import dataclass, field
from enum import Enum

from ..units import ConfigurationError, parse_quantity


class MetricKind(str, Enum):
    """Các loại metric source."""
    RESOURCE = "Resource"
    PODS = "Pods"
    OBJECT = "Object"
    EXTERNAL = "External"


class TargetType(str, Enum):
    """Kiểu target value của metric."""
    UTILIZATION = "Utilization"
    AVERAGE_VALUE = "AverageValue"
    VALUE = "Value"


class PolicyType(str, Enum):
    """Kiểu step policy."""
    PERCENT = "Percent"
    PODS = "Pods"


class SelectPolicy(str, Enum):
    """Chiến lược kết hợp nhiều step policies cùng direction."""
    MIN = "Min"
    MAX = "Max"
    DISABLED = "Disabled"


# Giới hạn giống autoscaling/v2 validation
MAX_PERIOD_SECONDS = 1800
MAX_STABILIZATION_WINDOW_SECONDS = 3600


def _enum_value(enum_cls, raw, field_name: str):
    try:
        return enum_cls(raw)
    except ValueError:
        allowed = ', '.join(e.value for e in enum_cls)
        raise ConfigurationError(f"{field_name} must be one of [{allowed}], got {raw!r}")


@dataclass(frozen=True)
class MetricTarget:
    """
    Target value của một metric.

    Attributes:
        type: Utilization | AverageValue | Value
        value: averageUtilization (%), averageValue hoặc value - luôn > 0
    """
    type: TargetType
    value: float

    def __post_init__(self):
        if not isinstance(self.type, TargetType):
            object.__setattr__(self, 'type', _enum_value(TargetType, self.type, 'target.type'))
        if self.value is None:
            raise ConfigurationError("Metric target value is missing")
        if self.value <= 0:
            raise ConfigurationError(f"Metric target value must be positive, got {self.value}")

    @classmethod
    def from_manifest(cls, data: Dict[str, Any]) -> 'MetricTarget':
        """Parse block `target:` của manifest."""
        if not data:
            raise ConfigurationError("Metric target is missing")

        target_type = _enum_value(TargetType, data.get('type'), 'target.type')
        if target_type == TargetType.UTILIZATION:
            raw = data.get('averageUtilization')
        elif target_type == TargetType.AVERAGE_VALUE:
            raw = data.get('averageValue')
        else:
            raw = data.get('value')

        if raw is None:
            raise ConfigurationError(f"Metric target of type {target_type.value} has no value")
        return cls(type=target_type, value=parse_quantity(raw))

    def to_manifest(self) -> Dict[str, Any]:
        key = {
            TargetType.UTILIZATION: 'averageUtilization',
            TargetType.AVERAGE_VALUE: 'averageValue',
            TargetType.VALUE: 'value',
        }[self.type]
        return {'type': self.type.value, key: self.value}


def _check_target(kind: MetricKind, target: MetricTarget, allowed: FrozenSet[TargetType]):
    if target.type not in allowed:
        names = ', '.join(sorted(t.value for t in allowed))
        raise ConfigurationError(
            f"{kind.value} metric does not support target type {target.type.value} (allowed: {names})"
        )


@dataclass(frozen=True)
class ResourceMetricSource:
    """Resource metric (cpu, memory) - giá trị per-instance."""
    name: str
    target: MetricTarget

    kind: ClassVar[MetricKind] = MetricKind.RESOURCE
    allowed_targets: ClassVar[FrozenSet[TargetType]] = frozenset(
        {TargetType.UTILIZATION, TargetType.AVERAGE_VALUE}
    )

    def __post_init__(self):
        if not self.name:
            raise ConfigurationError("Resource metric requires a resource name")
        _check_target(self.kind, self.target, self.allowed_targets)

    @property
    def metric_id(self) -> str:
        return f"resource/{self.name}"


@dataclass(frozen=True)
class PodsMetricSource:
    """Custom metric trung bình trên các pods - giá trị per-instance."""
    metric_name: str
    target: MetricTarget
    selector: Optional[Dict[str, str]] = field(default=None, compare=True, hash=False)

    kind: ClassVar[MetricKind] = MetricKind.PODS
    allowed_targets: ClassVar[FrozenSet[TargetType]] = frozenset({TargetType.AVERAGE_VALUE})

    def __post_init__(self):
        if not self.metric_name:
            raise ConfigurationError("Pods metric requires a metric name")
        _check_target(self.kind, self.target, self.allowed_targets)

    @property
    def metric_id(self) -> str:
        return f"pods/{self.metric_name}"


@dataclass(frozen=True)
class ObjectMetricSource:
    """Metric mô tả một object khác (vd: Ingress requests-per-second)."""
    metric_name: str
    target: MetricTarget
    described_object: Optional[Dict[str, str]] = field(default=None, compare=True, hash=False)

    kind: ClassVar[MetricKind] = MetricKind.OBJECT
    allowed_targets: ClassVar[FrozenSet[TargetType]] = frozenset(
        {TargetType.VALUE, TargetType.AVERAGE_VALUE}
    )

    def __post_init__(self):
        if not self.metric_name:
            raise ConfigurationError("Object metric requires a metric name")
        _check_target(self.kind, self.target, self.allowed_targets)

    @property
    def metric_id(self) -> str:
        obj = self.described_object or {}
        if obj.get('name'):
            return f"object/{obj.get('kind', 'object').lower()}/{obj['name']}/{self.metric_name}"
        return f"object/{self.metric_name}"


@dataclass(frozen=True)
class ExternalMetricSource:
    """Metric từ hệ thống bên ngoài cluster (vd: queue depth)."""
    metric_name: str
    target: MetricTarget
    selector: Optional[Dict[str, str]] = field(default=None, compare=True, hash=False)

    kind: ClassVar[MetricKind] = MetricKind.EXTERNAL
    allowed_targets: ClassVar[FrozenSet[TargetType]] = frozenset(
        {TargetType.VALUE, TargetType.AVERAGE_VALUE}
    )

    def __post_init__(self):
        if not self.metric_name:
            raise ConfigurationError("External metric requires a metric name")
        _check_target(self.kind, self.target, self.allowed_targets)

    @property
    def metric_id(self) -> str:
        return f"external/{self.metric_name}"


MetricSpec = Union[ResourceMetricSource, PodsMetricSource, ObjectMetricSource, ExternalMetricSource]


def metric_spec_from_manifest(data: Dict[str, Any]) -> MetricSpec:
    """
    Parse một phần tử của `metrics:` thành MetricSpec.

    Args:
        data: Dict dạng {'type': 'Resource', 'resource': {...}}

    Returns:
        MetricSpec tương ứng

    Raises:
        ConfigurationError: Nếu type không hỗ trợ hoặc thiếu fields
    """
    kind = _enum_value(MetricKind, data.get('type'), 'metrics[].type')

    if kind == MetricKind.RESOURCE:
        body = data.get('resource') or {}
        return ResourceMetricSource(
            name=body.get('name', ''),
            target=MetricTarget.from_manifest(body.get('target'))
        )

    if kind == MetricKind.PODS:
        body = data.get('pods') or {}
        metric = body.get('metric') or {}
        return PodsMetricSource(
            metric_name=metric.get('name', ''),
            target=MetricTarget.from_manifest(body.get('target')),
            selector=(metric.get('selector') or {}).get('matchLabels')
        )

    if kind == MetricKind.OBJECT:
        body = data.get('object') or {}
        metric = body.get('metric') or {}
        return ObjectMetricSource(
            metric_name=metric.get('name', ''),
            target=MetricTarget.from_manifest(body.get('target')),
            described_object=body.get('describedObject')
        )

    body = data.get('external') or {}
    metric = body.get('metric') or {}
    return ExternalMetricSource(
        metric_name=metric.get('name', ''),
        target=MetricTarget.from_manifest(body.get('target')),
        selector=(metric.get('selector') or {}).get('matchLabels')
    )


@dataclass(frozen=True)
class ScalingRule:
    """
    Một step policy.

    Attributes:
        type: Percent | Pods
        value: % hoặc số replicas tối đa được thay đổi
        period_seconds: Khoảng thời gian rule áp dụng
    """
    type: PolicyType
    value: int
    period_seconds: int

    def __post_init__(self):
        if not isinstance(self.type, PolicyType):
            object.__setattr__(self, 'type', _enum_value(PolicyType, self.type, 'policies[].type'))
        if self.value <= 0:
            raise ConfigurationError(f"Scaling policy value must be positive, got {self.value}")
        if not 0 < self.period_seconds <= MAX_PERIOD_SECONDS:
            raise ConfigurationError(
                f"periodSeconds must be in (0, {MAX_PERIOD_SECONDS}], got {self.period_seconds}"
            )

    @classmethod
    def from_manifest(cls, data: Dict[str, Any]) -> 'ScalingRule':
        return cls(
            type=_enum_value(PolicyType, data.get('type'), 'policies[].type'),
            value=int(data.get('value', 0)),
            period_seconds=int(data.get('periodSeconds', 0))
        )


@dataclass
class ScalingRules:
    """
    Behavior cho một direction.

    Attributes:
        stabilization_window_seconds: Window nhìn lại các candidates
        policies: Danh sách step policies (có thể rỗng = không giới hạn)
        select_policy: Min | Max | Disabled
    """
    stabilization_window_seconds: int = 0
    policies: List[ScalingRule] = field(default_factory=list)
    select_policy: SelectPolicy = SelectPolicy.MAX

    def __post_init__(self):
        if not isinstance(self.select_policy, SelectPolicy):
            self.select_policy = _enum_value(SelectPolicy, self.select_policy, 'selectPolicy')
        if not 0 <= self.stabilization_window_seconds <= MAX_STABILIZATION_WINDOW_SECONDS:
            raise ConfigurationError(
                f"stabilizationWindowSeconds must be in [0, {MAX_STABILIZATION_WINDOW_SECONDS}], "
                f"got {self.stabilization_window_seconds}"
            )

    @classmethod
    def from_manifest(cls, data: Optional[Dict[str, Any]], defaults: 'ScalingRules') -> 'ScalingRules':
        """Parse block scaleUp/scaleDown; field nào thiếu lấy từ defaults."""
        if data is None:
            return defaults

        window = data.get('stabilizationWindowSeconds', defaults.stabilization_window_seconds)
        if 'policies' in data:
            policies = [ScalingRule.from_manifest(p) for p in data.get('policies') or []]
        else:
            policies = list(defaults.policies)
        select = data.get('selectPolicy', defaults.select_policy)

        return cls(
            stabilization_window_seconds=int(window),
            policies=policies,
            select_policy=_enum_value(SelectPolicy, select, 'selectPolicy')
        )


def default_scale_up_rules() -> ScalingRules:
    """Default scale-up: không stabilization, max(100%, +4 pods) mỗi 15s."""
    return ScalingRules(
        stabilization_window_seconds=0,
        policies=[
            ScalingRule(PolicyType.PERCENT, 100, 15),
            ScalingRule(PolicyType.PODS, 4, 15),
        ],
        select_policy=SelectPolicy.MAX
    )


def default_scale_down_rules() -> ScalingRules:
    """Default scale-down: window 300s, tối đa 100% mỗi 15s."""
    return ScalingRules(
        stabilization_window_seconds=300,
        policies=[ScalingRule(PolicyType.PERCENT, 100, 15)],
        select_policy=SelectPolicy.MAX
    )


@dataclass
class ScalingBehavior:
    """Behavior cho cả hai directions."""
    scale_up: ScalingRules = field(default_factory=default_scale_up_rules)
    scale_down: ScalingRules = field(default_factory=default_scale_down_rules)

    @classmethod
    def from_manifest(cls, data: Optional[Dict[str, Any]]) -> 'ScalingBehavior':
        data = data or {}
        return cls(
            scale_up=ScalingRules.from_manifest(data.get('scaleUp'), default_scale_up_rules()),
            scale_down=ScalingRules.from_manifest(data.get('scaleDown'), default_scale_down_rules())
        )

    @property
    def longest_window_seconds(self) -> int:
        return max(
            self.scale_up.stabilization_window_seconds,
            self.scale_down.stabilization_window_seconds
        )


def default_metrics() -> List[MetricSpec]:
    """Khi không khai báo metrics: cpu Utilization 80%."""
    return [ResourceMetricSource('cpu', MetricTarget(TargetType.UTILIZATION, 80))]


@dataclass
class HorizontalScalerSpec:
    """
    Cấu hình đầy đủ cho một horizontal scaling target.

    Attributes:
        min_replicas: Số replicas tối thiểu (minReplicas)
        max_replicas: Số replicas tối đa (maxReplicas)
        metrics: Danh sách MetricSpec
        behavior: ScalingBehavior cho scale-up và scale-down
    """
    min_replicas: int = 1
    max_replicas: int = 10
    metrics: List[MetricSpec] = field(default_factory=default_metrics)
    behavior: ScalingBehavior = field(default_factory=ScalingBehavior)

    def __post_init__(self):
        if self.min_replicas < 0:
            raise ConfigurationError(f"minReplicas must not be negative, got {self.min_replicas}")
        if self.max_replicas < 1:
            raise ConfigurationError(f"maxReplicas must be at least 1, got {self.max_replicas}")
        if self.min_replicas > self.max_replicas:
            raise ConfigurationError(
                f"minReplicas ({self.min_replicas}) must not exceed maxReplicas ({self.max_replicas})"
            )
        if not self.metrics:
            self.metrics = default_metrics()

        ids = [m.metric_id for m in self.metrics]
        duplicates = sorted({i for i in ids if ids.count(i) > 1})
        if duplicates:
            raise ConfigurationError(f"Duplicate metrics: {', '.join(duplicates)}")

    @classmethod
    def from_manifest(cls, manifest: Dict[str, Any]) -> 'HorizontalScalerSpec':
        """
        Tạo spec từ manifest (full object có 'spec' hoặc chỉ phần spec).

        Args:
            manifest: Dict theo shape autoscaling/v2 HorizontalPodAutoscaler

        Returns:
            HorizontalScalerSpec đã validate
        """
        spec = manifest.get('spec', manifest)
        if 'maxReplicas' not in spec:
            raise ConfigurationError("maxReplicas is required")

        return cls(
            min_replicas=int(spec.get('minReplicas', 1)),
            max_replicas=int(spec['maxReplicas']),
            metrics=[metric_spec_from_manifest(m) for m in spec.get('metrics') or []],
            behavior=ScalingBehavior.from_manifest(spec.get('behavior'))
        )

    def metric(self, metric_id: str) -> Optional[MetricSpec]:
        for metric in self.metrics:
            if metric.metric_id == metric_id:
                return metric
        return None
