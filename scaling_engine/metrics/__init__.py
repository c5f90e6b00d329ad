"""
Metrics Module
==============
Lưu trữ metric samples cho các scaling targets.

Classes:
- MetricSample: Một sample (metric, target, value, timestamp, instance)
- MetricSampleStore: Store theo (target, metric) với retention window
"""

from .store import MetricSample, MetricSampleStore

__all__ = ['MetricSample', 'MetricSampleStore']
