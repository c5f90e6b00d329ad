"""
Vertical Scaling Module
=======================
Đề xuất và áp dụng resource requests cho containers (VPA-style).

Classes:
- DecayingHistogram: Histogram exponential buckets + decay
- ResourceRecommender: target / lower_bound / upper_bound per container
- VerticalScalerSpec: updatePolicy + resourcePolicy
- VerticalScaler: admit pods mới, plan evictions cho pods bị lệch

Enums:
- UpdateMode: OFF, INITIAL, AUTO
"""

from .histogram import HistogramOptions, DecayingHistogram
from .recommender import (
    UpdateMode,
    ContainerScalingMode,
    ContainerResourcePolicy,
    VerticalScalerSpec,
    RecommendedResources,
    RecommenderConfig,
    ResourceRecommender,
)
from .updater import PodResources, EvictionPlan, VerticalScaler, container_id

__all__ = [
    'HistogramOptions',
    'DecayingHistogram',
    'UpdateMode',
    'ContainerScalingMode',
    'ContainerResourcePolicy',
    'VerticalScalerSpec',
    'RecommendedResources',
    'RecommenderConfig',
    'ResourceRecommender',
    'PodResources',
    'EvictionPlan',
    'VerticalScaler',
    'container_id'
]
