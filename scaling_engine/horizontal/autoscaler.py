"""
Horizontal Scaler
=================
Pipeline quyết định scale cho một target trong mỗi tick.

Pipeline:
    MetricSampleStore -> PerMetricDesiredCalculator (mỗi metric)
        -> MultiMetricReconciler -> StabilizationRateLimiter -> ScalingDecision

Mỗi ScalingTarget có một HorizontalScaler riêng; các bước chạy tuần tự và
đồng bộ, decision của tick n+1 chỉ được tính sau khi tick n hoàn tất.

Usage:
    >>> scaler = HorizontalScaler('web', spec, store)
    >>> target = ScalingTarget('web', min_scale=2, max_scale=10, current_scale=3)
    >>> decision = scaler.step(target, now=1000.0)
    >>> print(decision.applied_scale, decision.reason)
"""

import logging
import pandas as pd
from typing import Dict, Iterable, List, Optional
from dataclasses import dataclass, field, asdict
from enum import Enum

from ..metrics.store import MetricSampleStore
from ..units import ConfigurationError
from .spec import HorizontalScalerSpec
from .calculator import MetricEvaluation, PerMetricDesiredCalculator
from .reconciler import MultiMetricReconciler
from .stabilization import Direction, StabilizationRateLimiter

logger = logging.getLogger(__name__)


class ScaleAction(Enum):
    """Các actions scaling có thể xảy ra."""
    NONE = "none"
    SCALE_UP = "scale_up"
    SCALE_DOWN = "scale_down"


@dataclass
class ScalingTarget:
    """
    Một scaling target (Deployment, node count, ...).

    Attributes:
        target_id: ID của target
        min_scale: Bound dưới
        max_scale: Bound trên
        current_scale: Scale quan sát hiện tại
        desired_scale: Scale mong muốn do engine ghi lại sau mỗi tick
        last_scale_up_time: Thời điểm scale-up cuối cùng
        last_scale_down_time: Thời điểm scale-down cuối cùng
    """
    target_id: str
    min_scale: int
    max_scale: int
    current_scale: int
    desired_scale: Optional[int] = None
    last_scale_up_time: Optional[float] = None
    last_scale_down_time: Optional[float] = None

    def __post_init__(self):
        if self.min_scale > self.max_scale:
            raise ConfigurationError(
                f"Target {self.target_id}: min_scale ({self.min_scale}) > max_scale ({self.max_scale})"
            )
        if self.current_scale < 0:
            raise ConfigurationError(f"Target {self.target_id}: current_scale must not be negative")


@dataclass
class ScalingDecision:
    """
    Decision của một tick.

    Attributes:
        target_id: Target ID
        timestamp: Thời điểm tick
        current_scale: Scale trước decision
        proposed_scale: Candidate sau reconcile (trước stabilization)
        applied_scale: Scale cuối cùng sau rate limiting
        action: ScaleAction
        reason: Lý do
        degraded: True nếu mọi metric đều UNKNOWN
        metrics: Raw desired của từng metric (None = UNKNOWN)
    """
    target_id: str
    timestamp: float
    current_scale: int
    proposed_scale: int
    applied_scale: int
    action: ScaleAction
    reason: str
    degraded: bool = False
    metrics: Dict[str, Optional[float]] = field(default_factory=dict)

    @property
    def changed(self) -> bool:
        return self.applied_scale != self.current_scale

    def to_dict(self) -> Dict:
        data = asdict(self)
        data['action'] = self.action.value
        return data


class HorizontalScaler:
    """
    Decision pipeline cho một horizontal scaling target.

    Attributes:
        target_id: Target ID
        spec: HorizontalScalerSpec đang attach
        store: MetricSampleStore dùng chung
        calculator: PerMetricDesiredCalculator
        reconciler: MultiMetricReconciler
        limiter: StabilizationRateLimiter (state riêng của target)
        scaling_history: Các decisions đã tạo

    Example:
        >>> scaler = HorizontalScaler('web', spec, store)
        >>> for now in range(0, 300, 15):
        ...     decision = scaler.step(target, now=float(now))
        ...     target.current_scale = decision.applied_scale
    """

    def __init__(
        self,
        target_id: str,
        spec: HorizontalScalerSpec,
        store: MetricSampleStore,
        calculator: Optional[PerMetricDesiredCalculator] = None,
        reconciler: Optional[MultiMetricReconciler] = None,
        history_size: int = 1000
    ):
        """
        Khởi tạo scaler.

        Args:
            target_id: Target ID
            spec: Spec đã validate
            store: Store chứa samples
            calculator: Calculator (mặc định tolerance 0.1)
            reconciler: Reconciler (mặc định hold scale-down khi có UNKNOWN)
            history_size: Số decisions giữ lại trong scaling_history
        """
        self.target_id = target_id
        self.spec = spec
        self.store = store
        self.calculator = calculator or PerMetricDesiredCalculator()
        self.reconciler = reconciler or MultiMetricReconciler()
        self.limiter = StabilizationRateLimiter(spec.behavior)
        self.history_size = history_size
        self.scaling_history: List[ScalingDecision] = []
        self._last_bounds = None

        self.store.ensure_retention(spec.behavior.longest_window_seconds + self.calculator.sample_max_age)

    def update_spec(self, spec: HorizontalScalerSpec):
        """
        Thay spec: reset history của metrics thay đổi, reset stabilization
        history nếu bounds hoặc behavior thay đổi.
        """
        old = self.spec
        old_metrics = {m.metric_id: m for m in old.metrics}
        new_metrics = {m.metric_id: m for m in spec.metrics}

        for metric_id, metric in old_metrics.items():
            if new_metrics.get(metric_id) != metric:
                logger.info("Target %s: metric %s changed, resetting its history", self.target_id, metric_id)
                self.store.reset_metric(self.target_id, metric_id)

        material = (
            old.min_replicas != spec.min_replicas
            or old.max_replicas != spec.max_replicas
            or old.behavior != spec.behavior
            or set(new_metrics) - set(old_metrics)
        )
        self.spec = spec
        if material:
            logger.info("Target %s: spec changed materially, resetting stabilization window", self.target_id)
            self.limiter.reset(spec.behavior)

        self.store.ensure_retention(spec.behavior.longest_window_seconds + self.calculator.sample_max_age)

    def evaluate_metrics(
        self,
        current_scale: int,
        now: float,
        unavailable: Iterable[str] = ()
    ) -> List[MetricEvaluation]:
        """
        Tính raw desired cho từng metric.

        Args:
            current_scale: Scale hiện tại
            now: Thời điểm tick
            unavailable: Metric IDs không lấy được samples trong tick (UNKNOWN)

        Returns:
            List MetricEvaluation theo thứ tự metrics trong spec
        """
        unavailable = set(unavailable)
        evaluations = []
        for metric in self.spec.metrics:
            if metric.metric_id in unavailable:
                evaluations.append(MetricEvaluation.unknown(metric, "samples unavailable this tick"))
                continue
            samples = self.store.window(
                self.target_id,
                metric.metric_id,
                since=now - self.calculator.sample_max_age,
                until=now
            )
            evaluations.append(self.calculator.calculate(metric, samples, current_scale, now))
        return evaluations

    def step(
        self,
        target: ScalingTarget,
        now: float,
        unavailable: Iterable[str] = ()
    ) -> ScalingDecision:
        """
        Xử lý một tick cho target.

        Args:
            target: ScalingTarget với bounds và current scale mới nhất
            now: Thời điểm tick
            unavailable: Metric IDs không lấy được samples

        Returns:
            ScalingDecision
        """
        bounds = (target.min_scale, target.max_scale)
        if self._last_bounds is not None and bounds != self._last_bounds:
            logger.info("Target %s: bounds redefined %s -> %s", self.target_id, self._last_bounds, bounds)
            self.limiter.reset()
        self._last_bounds = bounds

        # Khôi phục last-change timestamps từ target (nếu orchestrator giữ chúng)
        if target.last_scale_up_time is not None:
            self.limiter.last_change[Direction.UP] = target.last_scale_up_time
        if target.last_scale_down_time is not None:
            self.limiter.last_change[Direction.DOWN] = target.last_scale_down_time

        evaluations = self.evaluate_metrics(target.current_scale, now, unavailable)
        candidate = self.reconciler.reconcile(
            evaluations, target.current_scale, target.min_scale, target.max_scale
        )
        limited = self.limiter.limit(
            candidate.scale, target.current_scale, target.min_scale, target.max_scale, now
        )

        if limited.applied > target.current_scale:
            action = ScaleAction.SCALE_UP
            target.last_scale_up_time = now
        elif limited.applied < target.current_scale:
            action = ScaleAction.SCALE_DOWN
            target.last_scale_down_time = now
        else:
            action = ScaleAction.NONE
        target.desired_scale = limited.applied

        reason = candidate.reason
        if limited.reason:
            reason = f"{reason}; {limited.reason}"

        decision = ScalingDecision(
            target_id=self.target_id,
            timestamp=now,
            current_scale=target.current_scale,
            proposed_scale=candidate.scale,
            applied_scale=limited.applied,
            action=action,
            reason=reason,
            degraded=candidate.degraded,
            metrics={e.metric_id: e.desired for e in evaluations}
        )

        if decision.changed:
            logger.info(
                "Target %s: %s %d -> %d (%s)",
                self.target_id, action.value, decision.current_scale, decision.applied_scale, reason
            )
        else:
            logger.debug("Target %s: hold at %d (%s)", self.target_id, decision.applied_scale, reason)

        self.scaling_history.append(decision)
        if len(self.scaling_history) > self.history_size:
            self.scaling_history.pop(0)

        return decision

    def reset(self):
        """Reset toàn bộ state (history, stabilization, samples)."""
        self.limiter = StabilizationRateLimiter(self.spec.behavior)
        self.scaling_history = []
        self._last_bounds = None
        self.store.reset_target(self.target_id)

    def get_scaling_history(self) -> pd.DataFrame:
        """Lấy scaling history dưới dạng DataFrame."""
        if not self.scaling_history:
            return pd.DataFrame()

        return pd.DataFrame([
            {
                'timestamp': pd.to_datetime(d.timestamp, unit='s'),
                'current_scale': d.current_scale,
                'proposed_scale': d.proposed_scale,
                'applied_scale': d.applied_scale,
                'action': d.action.value,
                'degraded': d.degraded,
                'reason': d.reason
            }
            for d in self.scaling_history
        ])

    def get_stats(self) -> Dict:
        """Lấy thống kê về scaling."""
        history_df = self.get_scaling_history()

        if len(history_df) == 0:
            return {
                'total_ticks': 0,
                'scale_up_count': 0,
                'scale_down_count': 0,
                'degraded_count': 0
            }

        return {
            'total_ticks': len(history_df),
            'scale_up_count': int((history_df['action'] == 'scale_up').sum()),
            'scale_down_count': int((history_df['action'] == 'scale_down').sum()),
            'degraded_count': int(history_df['degraded'].sum())
        }
