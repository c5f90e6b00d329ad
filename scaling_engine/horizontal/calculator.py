"""
Per-Metric Desired Calculator
=============================
Chuyển giá trị hiện tại của một metric + target thành raw desired scale.

Công thức theo từng loại metric:
    - Resource/Utilization:  desired = current * mean(util) / targetUtilization
    - Resource|Pods/AverageValue: desired = current * mean(value) / targetAverageValue
    - Object|External/Value: desired = current * observed / targetValue
    - Object|External/AverageValue: desired = observed / targetAverageValue

Kết quả là số thực (chưa làm tròn) kèm status VALID hoặc UNKNOWN.
Metric UNKNOWN bị loại khỏi bước reconcile - không bao giờ được coi là 0.

Usage:
    >>> calc = PerMetricDesiredCalculator(tolerance=0.1)
    >>> result = calc.calculate(spec, samples, current_scale=3, now=1000.0)
    >>> result.desired
    3.857...
"""

import math
import logging
from typing import Dict, List, Optional, Sequence
from dataclasses import dataclass
from enum import Enum

from ..metrics.store import MetricSample
from .spec import (
    MetricSpec,
    MetricKind,
    TargetType,
    ResourceMetricSource,
    PodsMetricSource,
    ObjectMetricSource,
    ExternalMetricSource,
)

logger = logging.getLogger(__name__)


class MetricStatus(Enum):
    """Trạng thái của một metric trong tick hiện tại."""
    VALID = "valid"
    UNKNOWN = "unknown"


@dataclass
class MetricEvaluation:
    """
    Kết quả tính toán cho một metric.

    Attributes:
        metric_id: ID của metric
        kind: Loại metric
        status: VALID hoặc UNKNOWN
        desired: Raw desired scale (None nếu UNKNOWN)
        observed: Giá trị quan sát đã aggregate (mean hoặc single value)
        reported_fraction: Tỷ lệ instances có sample hợp lệ
        reason: Giải thích (chủ yếu cho UNKNOWN)
    """
    metric_id: str
    kind: MetricKind
    status: MetricStatus
    desired: Optional[float] = None
    observed: Optional[float] = None
    reported_fraction: float = 0.0
    reason: str = ""

    @property
    def valid(self) -> bool:
        return self.status == MetricStatus.VALID

    @classmethod
    def unknown(cls, spec: MetricSpec, reason: str, reported_fraction: float = 0.0) -> 'MetricEvaluation':
        return cls(
            metric_id=spec.metric_id,
            kind=spec.kind,
            status=MetricStatus.UNKNOWN,
            reported_fraction=reported_fraction,
            reason=reason
        )


class PerMetricDesiredCalculator:
    """
    Calculator cho raw desired scale của từng metric.

    Attributes:
        tolerance: Nếu |ratio - 1| <= tolerance thì giữ nguyên current scale
        min_reported_fraction: Tỷ lệ instances tối thiểu phải có sample
        sample_max_age: Tuổi tối đa (seconds) của sample còn được dùng
    """

    def __init__(
        self,
        tolerance: float = 0.1,
        min_reported_fraction: float = 0.5,
        sample_max_age: float = 60.0
    ):
        """
        Khởi tạo calculator.

        Args:
            tolerance: Tolerance quanh ratio = 1.0
            min_reported_fraction: Tỷ lệ instances tối thiểu (0-1)
            sample_max_age: Sample cũ hơn giá trị này bị bỏ qua
        """
        if tolerance < 0:
            raise ValueError("tolerance must not be negative")
        if not 0 < min_reported_fraction <= 1:
            raise ValueError("min_reported_fraction must be in (0, 1]")

        self.tolerance = tolerance
        self.min_reported_fraction = min_reported_fraction
        self.sample_max_age = sample_max_age

    def calculate(
        self,
        spec: MetricSpec,
        samples: Sequence[MetricSample],
        current_scale: int,
        now: float
    ) -> MetricEvaluation:
        """
        Tính raw desired scale cho một metric.

        Args:
            spec: MetricSpec của metric
            samples: Samples gần đây của metric cho target
            current_scale: Scale hiện tại
            now: Thời điểm tick

        Returns:
            MetricEvaluation
        """
        if current_scale <= 0:
            return MetricEvaluation.unknown(spec, "current scale is zero")

        fresh = [
            s for s in samples
            if now - s.timestamp <= self.sample_max_age and s.value is not None and math.isfinite(s.value)
        ]

        if isinstance(spec, (ResourceMetricSource, PodsMetricSource)):
            return self._per_instance(spec, fresh, current_scale)
        if isinstance(spec, (ObjectMetricSource, ExternalMetricSource)):
            return self._aggregate(spec, fresh, current_scale)

        raise TypeError(f"Unsupported metric spec: {type(spec).__name__}")

    def _per_instance(self, spec, fresh: List[MetricSample], current_scale: int) -> MetricEvaluation:
        # Chỉ lấy sample mới nhất của mỗi instance
        latest: Dict[Optional[str], MetricSample] = {}
        for sample in fresh:
            prev = latest.get(sample.instance)
            if prev is None or sample.timestamp >= prev.timestamp:
                latest[sample.instance] = sample

        reported = len(latest)
        fraction = min(1.0, reported / current_scale)

        if reported == 0:
            return MetricEvaluation.unknown(spec, "no fresh samples")
        if fraction < self.min_reported_fraction:
            return MetricEvaluation.unknown(
                spec,
                f"only {reported}/{current_scale} instances reported "
                f"(< {self.min_reported_fraction:.0%})",
                reported_fraction=fraction
            )

        mean = sum(s.value for s in latest.values()) / reported
        ratio = mean / spec.target.value
        desired = self._apply_tolerance(ratio, current_scale * ratio, current_scale)

        logger.debug(
            "%s: mean=%.3f target=%.3f ratio=%.3f desired=%.2f (%d/%d reported)",
            spec.metric_id, mean, spec.target.value, ratio, desired, reported, current_scale
        )

        return MetricEvaluation(
            metric_id=spec.metric_id,
            kind=spec.kind,
            status=MetricStatus.VALID,
            desired=desired,
            observed=mean,
            reported_fraction=fraction
        )

    def _aggregate(self, spec, fresh: List[MetricSample], current_scale: int) -> MetricEvaluation:
        if not fresh:
            return MetricEvaluation.unknown(spec, "no fresh samples")

        observed = max(fresh, key=lambda s: s.timestamp).value

        if spec.target.type == TargetType.AVERAGE_VALUE:
            ratio = observed / (spec.target.value * current_scale)
            raw = observed / spec.target.value
        else:
            ratio = observed / spec.target.value
            raw = current_scale * ratio

        desired = self._apply_tolerance(ratio, raw, current_scale)

        logger.debug(
            "%s: observed=%.3f target=%.3f ratio=%.3f desired=%.2f",
            spec.metric_id, observed, spec.target.value, ratio, desired
        )

        return MetricEvaluation(
            metric_id=spec.metric_id,
            kind=spec.kind,
            status=MetricStatus.VALID,
            desired=desired,
            observed=observed,
            reported_fraction=1.0
        )

    def _apply_tolerance(self, ratio: float, raw: float, current_scale: int) -> float:
        if abs(ratio - 1.0) <= self.tolerance:
            return float(current_scale)
        return raw
