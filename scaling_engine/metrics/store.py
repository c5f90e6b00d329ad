"""
Metric Sample Store
===================
Lưu latest và historical samples cho mỗi cặp (target, metric).

Đặc điểm:
    - Samples được sắp xếp theo timestamp cho mỗi (target, metric)
    - Retention window có giới hạn (>= stabilization window dài nhất)
    - Reset được cho từng metric hoặc toàn bộ target
    - Thread-safe: driver, recommender và API có thể ghi đồng thời

Usage:
    >>> store = MetricSampleStore(retention_seconds=600)
    >>> store.add(MetricSample('resource/cpu', 'web', 85.0, 1000.0, instance='web-1'))
    >>> store.window('web', 'resource/cpu', since=950.0)
"""

import bisect
import threading
import logging
import pandas as pd
from typing import Dict, Iterable, List, Optional, Tuple
from dataclasses import dataclass

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MetricSample:
    """
    Một sample của metric.

    Attributes:
        metric_id: ID của metric (vd: 'resource/cpu', 'pods/qps')
        target_id: ID của scaling target hoặc workload
        value: Giá trị quan sát
        timestamp: Thời điểm (epoch seconds)
        instance: Instance đã report (pod/container), None cho aggregate metrics
    """
    metric_id: str
    target_id: str
    value: float
    timestamp: float
    instance: Optional[str] = None


class MetricSampleStore:
    """
    Store cho metric samples, keyed theo (target_id, metric_id).

    Không chứa logic tính toán - chỉ lưu trữ, truy vấn và pruning.

    Attributes:
        retention_seconds: Thời gian giữ samples (tính từ sample mới nhất)
    """

    def __init__(self, retention_seconds: float = 600.0):
        """
        Khởi tạo store.

        Args:
            retention_seconds: Retention window (seconds)
        """
        self.retention_seconds = retention_seconds
        self._series: Dict[Tuple[str, str], List[Tuple[float, int, MetricSample]]] = {}
        self._seq = 0
        self._lock = threading.RLock()

    def ensure_retention(self, seconds: float):
        """Tăng retention nếu cần giữ samples lâu hơn (không bao giờ giảm)."""
        with self._lock:
            if seconds > self.retention_seconds:
                logger.debug("Sample retention raised %.0fs -> %.0fs", self.retention_seconds, seconds)
                self.retention_seconds = seconds

    def add(self, sample: MetricSample):
        """Thêm một sample, giữ thứ tự timestamp."""
        key = (sample.target_id, sample.metric_id)
        with self._lock:
            series = self._series.setdefault(key, [])
            self._seq += 1
            entry = (sample.timestamp, self._seq, sample)
            if not series or series[-1][0] <= sample.timestamp:
                series.append(entry)
            else:
                bisect.insort(series, entry)
            self._prune_series(key, series[-1][0] - self.retention_seconds)

    def extend(self, samples: Iterable[MetricSample]):
        """Thêm nhiều samples."""
        for sample in samples:
            self.add(sample)

    def window(
        self,
        target_id: str,
        metric_id: str,
        since: Optional[float] = None,
        until: Optional[float] = None
    ) -> List[MetricSample]:
        """
        Lấy samples trong khoảng [since, until].

        Args:
            target_id: Target ID
            metric_id: Metric ID
            since: Timestamp bắt đầu (None = từ đầu)
            until: Timestamp kết thúc (None = tới cuối)

        Returns:
            List samples theo thứ tự timestamp
        """
        with self._lock:
            series = self._series.get((target_id, metric_id), [])
            return [
                s for ts, _, s in series
                if (since is None or ts >= since) and (until is None or ts <= until)
            ]

    def latest(self, target_id: str, metric_id: str) -> Optional[MetricSample]:
        """Sample mới nhất, None nếu chưa có."""
        with self._lock:
            series = self._series.get((target_id, metric_id))
            return series[-1][2] if series else None

    def metric_ids(self, target_id: str) -> List[str]:
        """Các metric IDs đang có samples cho target."""
        with self._lock:
            return sorted(m for t, m in self._series if t == target_id)

    def prune(self, now: float) -> int:
        """
        Xóa samples cũ hơn retention window.

        Args:
            now: Thời điểm hiện tại

        Returns:
            Số samples đã xóa
        """
        removed = 0
        with self._lock:
            for key in list(self._series):
                removed += self._prune_series(key, now - self.retention_seconds)
        return removed

    def reset_metric(self, target_id: str, metric_id: str):
        """Xóa history của một metric (khi metric spec thay đổi)."""
        with self._lock:
            self._series.pop((target_id, metric_id), None)

    def reset_target(self, target_id: str):
        """Xóa toàn bộ history của target."""
        with self._lock:
            for key in [k for k in self._series if k[0] == target_id]:
                del self._series[key]

    def to_frame(self, target_id: str, metric_id: str) -> pd.DataFrame:
        """Samples dưới dạng DataFrame (index = timestamp)."""
        samples = self.window(target_id, metric_id)
        if not samples:
            return pd.DataFrame(columns=['value', 'instance'])

        df = pd.DataFrame([
            {
                'timestamp': pd.to_datetime(s.timestamp, unit='s'),
                'value': s.value,
                'instance': s.instance
            }
            for s in samples
        ])
        return df.set_index('timestamp')

    def __len__(self) -> int:
        with self._lock:
            return sum(len(series) for series in self._series.values())

    def _prune_series(self, key: Tuple[str, str], cutoff: float) -> int:
        series = self._series.get(key)
        if not series:
            return 0
        idx = 0
        while idx < len(series) and series[idx][0] < cutoff:
            idx += 1
        if idx:
            del series[:idx]
        if not series:
            del self._series[key]
        return idx
