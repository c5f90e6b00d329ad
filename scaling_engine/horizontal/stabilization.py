"""
Stabilization Rate Limiter
==========================
Áp dụng stabilization windows và step policies lên candidate của mỗi tick.

Anti-flapping mechanisms:
    - Stabilization window: scale-up dùng MIN candidate trong window,
      scale-down dùng MAX candidate trong window (luôn chọn ít aggressive nhất)
    - Step policy: Percent (làm tròn lên) / Pods trên mỗi periodSeconds,
      kết hợp theo selectPolicy (Min = chặt nhất, Max = lỏng nhất,
      Disabled = đóng băng)
    - Bounds: kết quả cuối luôn nằm trong [min_scale, max_scale]

Mỗi target có một limiter riêng; state (history candidates, thời điểm thay
đổi cuối theo direction) không chia sẻ giữa các targets.

Usage:
    >>> limiter = StabilizationRateLimiter(ScalingBehavior())
    >>> result = limiter.limit(candidate=6, current_scale=3, min_scale=1,
    ...                        max_scale=10, now=1000.0)
    >>> result.applied
"""

import math
import logging
from collections import deque
from typing import Deque, Dict, Optional, Tuple
from dataclasses import dataclass
from enum import Enum

from .spec import PolicyType, ScalingBehavior, ScalingRules, SelectPolicy
from .reconciler import clamp

logger = logging.getLogger(__name__)


class Direction(Enum):
    """Hướng scale của một tick."""
    UP = "up"
    DOWN = "down"
    NONE = "none"


class Phase(Enum):
    """Bookkeeping nội bộ - không expose ra ngoài decision."""
    IDLE = "idle"
    PENDING_UP = "pending_up"
    PENDING_DOWN = "pending_down"


@dataclass
class LimitedDecision:
    """
    Kết quả sau stabilization + step policy.

    Attributes:
        applied: Scale cuối cùng
        stabilized: Candidate sau stabilization window
        direction: Hướng của stabilized so với current
        step_bound: Bound từ step policies (None = không giới hạn)
        reason: Mô tả
    """
    applied: int
    stabilized: int
    direction: Direction
    step_bound: Optional[int]
    reason: str


class StabilizationRateLimiter:
    """
    State machine per target cho stabilization và rate limiting.

    Attributes:
        behavior: ScalingBehavior của target
        phase: Phase hiện tại (IDLE / PENDING_UP / PENDING_DOWN)
        last_change: Thời điểm applied change cuối cùng theo direction
    """

    def __init__(self, behavior: ScalingBehavior):
        self.behavior = behavior
        self._candidates: Deque[Tuple[float, int]] = deque()
        self.last_change: Dict[Direction, Optional[float]] = {Direction.UP: None, Direction.DOWN: None}
        self.phase = Phase.IDLE

    def reset(self, behavior: Optional[ScalingBehavior] = None):
        """Reset history (khi spec thay đổi). Giữ last_change timestamps."""
        if behavior is not None:
            self.behavior = behavior
        self._candidates.clear()
        self.phase = Phase.IDLE

    @property
    def history(self):
        return list(self._candidates)

    def limit(
        self,
        candidate: int,
        current_scale: int,
        min_scale: int,
        max_scale: int,
        now: float
    ) -> LimitedDecision:
        """
        Áp dụng stabilization + step policy cho candidate.

        Args:
            candidate: Candidate đã reconcile của tick
            current_scale: Scale hiện tại
            min_scale: Bound dưới
            max_scale: Bound trên
            now: Thời điểm tick

        Returns:
            LimitedDecision
        """
        self._record(candidate, now)
        stabilized = self._stabilize(current_scale, now)

        if stabilized > current_scale:
            direction = Direction.UP
        elif stabilized < current_scale:
            direction = Direction.DOWN
        else:
            direction = Direction.NONE

        step_bound = None
        reason = ""
        if direction == Direction.UP:
            step_bound, reason = self._step_bound(Direction.UP, self.behavior.scale_up, current_scale, now)
            limited = stabilized if step_bound is None else min(stabilized, step_bound)
        elif direction == Direction.DOWN:
            step_bound, reason = self._step_bound(Direction.DOWN, self.behavior.scale_down, current_scale, now)
            limited = stabilized if step_bound is None else max(stabilized, step_bound)
        else:
            limited = current_scale

        applied = clamp(limited, min_scale, max_scale)

        if stabilized != candidate:
            note = f"stabilized {candidate} -> {stabilized}"
            reason = f"{note}; {reason}" if reason else note
        if applied != limited:
            reason = (reason + "; " if reason else "") + f"clamped to [{min_scale}, {max_scale}]"

        self._update_phase(candidate, applied, current_scale)
        if applied > current_scale:
            self.last_change[Direction.UP] = now
        elif applied < current_scale:
            self.last_change[Direction.DOWN] = now

        return LimitedDecision(
            applied=applied,
            stabilized=stabilized,
            direction=direction,
            step_bound=step_bound,
            reason=reason
        )

    def _record(self, candidate: int, now: float):
        self._candidates.append((now, candidate))
        horizon = now - self.behavior.longest_window_seconds
        while self._candidates and self._candidates[0][0] < horizon:
            self._candidates.popleft()

    def _stabilize(self, current_scale: int, now: float) -> int:
        up_since = now - self.behavior.scale_up.stabilization_window_seconds
        down_since = now - self.behavior.scale_down.stabilization_window_seconds

        up_recommendation = min(c for ts, c in self._candidates if ts >= up_since)
        down_recommendation = max(c for ts, c in self._candidates if ts >= down_since)

        stabilized = current_scale
        if stabilized < up_recommendation:
            stabilized = up_recommendation
        if stabilized > down_recommendation:
            stabilized = down_recommendation
        return stabilized

    def _step_bound(
        self,
        direction: Direction,
        rules: ScalingRules,
        current_scale: int,
        now: float
    ) -> Tuple[Optional[int], str]:
        if rules.select_policy == SelectPolicy.DISABLED:
            return current_scale, f"scale {direction.value} disabled"
        if not rules.policies:
            return None, ""

        last = self.last_change[direction]
        eligible = [
            r for r in rules.policies
            if last is None or now - last >= r.period_seconds
        ]
        if not eligible:
            wait = min(r.period_seconds for r in rules.policies) - (now - last)
            return current_scale, f"scale {direction.value} rate-limited for {wait:.0f}s"

        bounds = [self._rule_bound(direction, r, current_scale) for r in eligible]

        # Min = chặt nhất, Max = lỏng nhất; ngược chiều nhau cho scale-down
        if direction == Direction.UP:
            bound = min(bounds) if rules.select_policy == SelectPolicy.MIN else max(bounds)
        else:
            bound = max(bounds) if rules.select_policy == SelectPolicy.MIN else min(bounds)

        return bound, f"step bound {bound} ({rules.select_policy.value} of {len(eligible)} policies)"

    @staticmethod
    def _rule_bound(direction: Direction, rule, current_scale: int) -> int:
        """
        Bound của một policy.

        Percent được làm tròn lên như HPA: 3 replicas với Percent 50 cho bound
        ceil(4.5) = 5, tức bước thực tế có thể vượt current * value% tới gần 1
        replica. Scale-down dùng ceil(current * (1 - value%)) nên không bao giờ
        giảm quá value%.
        """
        if rule.type == PolicyType.PERCENT:
            factor = rule.value / 100.0
            if direction == Direction.UP:
                return int(math.ceil(current_scale * (1 + factor)))
            return max(0, int(math.ceil(current_scale * (1 - factor))))

        if direction == Direction.UP:
            return current_scale + rule.value
        return max(0, current_scale - rule.value)

    def _update_phase(self, candidate: int, applied: int, current_scale: int):
        if candidate > applied:
            self.phase = Phase.PENDING_UP
        elif candidate < applied:
            self.phase = Phase.PENDING_DOWN
        else:
            self.phase = Phase.IDLE

        if self.phase != Phase.IDLE:
            logger.debug(
                "Candidate %d held at %d (current %d), phase=%s",
                candidate, applied, current_scale, self.phase.value
            )
