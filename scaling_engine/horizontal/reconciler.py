"""
Multi-Metric Reconciler
=======================
Kết hợp raw desired scales của tất cả metrics thành một candidate.

Rule:
    - Có ít nhất một metric đề xuất scale-up -> lấy MAX (một signal quá tải
      đủ để scale-up)
    - Ngược lại -> lấy MIN (chỉ scale-down khi mọi metric hợp lệ đồng ý)
    - Metrics UNKNOWN bị loại khỏi aggregation; tất cả UNKNOWN -> candidate =
      current scale, tick bị đánh dấu degraded
    - hold_scale_down_on_unknown (opt-in): có metric UNKNOWN thì không scale-down
    - Candidate được làm tròn lên rồi clamp vào [min_scale, max_scale]
"""

import math
import logging
from typing import List, Optional, Sequence
from dataclasses import dataclass, field

from .calculator import MetricEvaluation

logger = logging.getLogger(__name__)

# Sai số float khi làm tròn lên (3 * 70/70 không được thành 4)
ROUNDING_EPSILON = 1e-9


@dataclass
class Candidate:
    """
    Candidate scale cho một tick.

    Attributes:
        scale: Candidate đã làm tròn và clamp
        raw: Giá trị thực trước khi làm tròn (None nếu không có metric hợp lệ)
        driving_metric: Metric quyết định candidate
        degraded: True nếu tất cả metrics đều UNKNOWN
        unknown_metrics: Các metrics UNKNOWN trong tick
        reason: Mô tả ngắn
    """
    scale: int
    raw: Optional[float]
    driving_metric: Optional[str] = None
    degraded: bool = False
    unknown_metrics: List[str] = field(default_factory=list)
    reason: str = ""


def clamp(value: int, lower: int, upper: int) -> int:
    return max(lower, min(upper, value))


class MultiMetricReconciler:
    """
    Reconciler theo rule max-wins-up / min-wins-down.

    Attributes:
        hold_scale_down_on_unknown: Không scale-down khi có metric UNKNOWN
    """

    def __init__(self, hold_scale_down_on_unknown: bool = False):
        self.hold_scale_down_on_unknown = hold_scale_down_on_unknown

    def reconcile(
        self,
        evaluations: Sequence[MetricEvaluation],
        current_scale: int,
        min_scale: int,
        max_scale: int
    ) -> Candidate:
        """
        Kết hợp các evaluations thành một candidate.

        Args:
            evaluations: MetricEvaluation cho mỗi metric đã cấu hình
            current_scale: Scale hiện tại
            min_scale: Bound dưới
            max_scale: Bound trên

        Returns:
            Candidate
        """
        valid = [e for e in evaluations if e.valid]
        unknown = [e.metric_id for e in evaluations if not e.valid]

        if not valid:
            logger.warning(
                "All %d metrics unknown, holding at current scale %d",
                len(evaluations), current_scale
            )
            return Candidate(
                scale=clamp(current_scale, min_scale, max_scale),
                raw=None,
                degraded=True,
                unknown_metrics=unknown,
                reason="all metrics unknown"
            )

        if any(e.desired > current_scale for e in valid):
            chosen = max(valid, key=lambda e: e.desired)
            reason = f"{chosen.metric_id} proposes scale-up to {chosen.desired:.2f}"
        else:
            chosen = min(valid, key=lambda e: e.desired)
            reason = f"{chosen.metric_id} proposes {chosen.desired:.2f}"

        scale = int(math.ceil(chosen.desired - ROUNDING_EPSILON))

        if scale < current_scale and unknown and self.hold_scale_down_on_unknown:
            reason = f"scale-down held, metrics unknown: {', '.join(unknown)}"
            scale = current_scale

        bounded = clamp(scale, min_scale, max_scale)
        if bounded != scale:
            reason += f"; clamped to [{min_scale}, {max_scale}]"

        return Candidate(
            scale=bounded,
            raw=chosen.desired,
            driving_metric=chosen.metric_id,
            unknown_metrics=unknown,
            reason=reason
        )
