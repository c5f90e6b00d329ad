"""
Decaying Histogram
==================
Histogram với buckets tăng theo cấp số nhân và trọng số giảm dần theo thời gian.

Bucket layout:
    bucket i bắt đầu tại first_bucket_size * (ratio^i - 1) / (ratio - 1)
    -> độ chính xác tương đối gần như không đổi trên toàn dải giá trị

Decay:
    Sample tại thời điểm t có trọng số w * 2^((t - reference) / half_life).
    Khi exponent quá lớn, reference được dời lên và toàn bộ weights được
    scale lại, tránh overflow mà không thay đổi tỷ lệ giữa các buckets.

Usage:
    >>> options = HistogramOptions(max_value=1000.0, first_bucket_size=0.01)
    >>> hist = DecayingHistogram(options, half_life_seconds=86400)
    >>> hist.add_sample(0.5, weight=1.0, timestamp=1000.0)
    >>> hist.percentile(0.9)
"""

import math
import numpy as np
from dataclasses import dataclass

# Dời reference khi exponent vượt ngưỡng này (2^100 vẫn an toàn cho float64)
MAX_DECAY_EXPONENT = 100


@dataclass(frozen=True)
class HistogramOptions:
    """
    Cấu hình bucket layout.

    Attributes:
        max_value: Giá trị lớn nhất cần phân biệt
        first_bucket_size: Kích thước bucket đầu tiên
        ratio: Tỷ lệ tăng kích thước giữa hai buckets liên tiếp
        epsilon: Tổng weight nhỏ hơn giá trị này được coi là rỗng
    """
    max_value: float
    first_bucket_size: float
    ratio: float = 1.05
    epsilon: float = 1e-4

    def __post_init__(self):
        if self.max_value <= 0 or self.first_bucket_size <= 0:
            raise ValueError("max_value and first_bucket_size must be positive")
        if self.ratio <= 1.0:
            raise ValueError("ratio must be greater than 1")

    @property
    def num_buckets(self) -> int:
        n = math.log(self.max_value * (self.ratio - 1) / self.first_bucket_size + 1, self.ratio)
        return int(math.ceil(n)) + 1

    def bucket_start(self, bucket: int) -> float:
        if bucket == 0:
            return 0.0
        return self.first_bucket_size * (self.ratio ** bucket - 1) / (self.ratio - 1)

    def find_bucket(self, value: float) -> int:
        if value < self.first_bucket_size:
            return 0
        bucket = int(math.log(value * (self.ratio - 1) / self.first_bucket_size + 1, self.ratio))
        # log có sai số float ở ranh giới bucket
        if bucket + 1 < self.num_buckets and value >= self.bucket_start(bucket + 1):
            bucket += 1
        elif bucket > 0 and value < self.bucket_start(bucket):
            bucket -= 1
        return min(bucket, self.num_buckets - 1)


class DecayingHistogram:
    """
    Histogram exponential-bucket với exponential decay.

    Attributes:
        options: HistogramOptions
        half_life_seconds: Thời gian để trọng số một sample giảm một nửa
        reference_timestamp: Mốc thời gian mà weights đang được quy về
    """

    def __init__(self, options: HistogramOptions, half_life_seconds: float):
        if half_life_seconds <= 0:
            raise ValueError("half_life_seconds must be positive")
        self.options = options
        self.half_life_seconds = half_life_seconds
        self.weights = np.zeros(options.num_buckets)
        self.reference_timestamp = None

    def add_sample(self, value: float, weight: float, timestamp: float):
        """Thêm sample (value, weight) tại timestamp."""
        if weight <= 0 or value < 0:
            return
        if self.reference_timestamp is None:
            self.reference_timestamp = timestamp

        exponent = (timestamp - self.reference_timestamp) / self.half_life_seconds
        if exponent > MAX_DECAY_EXPONENT:
            self._shift_reference(timestamp)
            exponent = 0.0

        self.weights[self.options.find_bucket(value)] += weight * 2.0 ** exponent

    def _shift_reference(self, new_reference: float):
        factor = 2.0 ** (-(new_reference - self.reference_timestamp) / self.half_life_seconds)
        self.weights *= factor
        self.reference_timestamp = new_reference

    @property
    def total_weight(self) -> float:
        return float(self.weights.sum())

    def is_empty(self) -> bool:
        return self.total_weight < self.options.epsilon

    def percentile(self, p: float) -> float:
        """
        Giá trị tại percentile p (0-1).

        Trả về điểm kết thúc của bucket chứa percentile (ước lượng bảo thủ);
        histogram rỗng trả về 0.0.
        """
        if self.is_empty():
            return 0.0
        p = min(max(p, 0.0), 1.0)

        cumulative = np.cumsum(self.weights)
        threshold = p * cumulative[-1]
        bucket = int(np.searchsorted(cumulative, threshold, side='left'))
        bucket = min(bucket, len(self.weights) - 1)

        if bucket < len(self.weights) - 1:
            return self.options.bucket_start(bucket + 1)
        return self.options.bucket_start(bucket)

    def clear(self):
        self.weights = np.zeros(self.options.num_buckets)
        self.reference_timestamp = None
