"""
Horizontal Scaling Module
=========================
Quyết định replica count cho các targets (HPA-style).

Classes:
- HorizontalScalerSpec: minReplicas / maxReplicas / metrics / behavior
- PerMetricDesiredCalculator: Raw desired scale cho từng metric
- MultiMetricReconciler: Max-wins-up / min-wins-down
- StabilizationRateLimiter: Stabilization windows + step policies
- HorizontalScaler: Pipeline đầy đủ cho một target
- HorizontalScalingSimulator: Replay load data qua pipeline

Enums:
- ScaleAction: NONE, SCALE_UP, SCALE_DOWN
"""

from .spec import (
    MetricKind,
    TargetType,
    PolicyType,
    SelectPolicy,
    MetricTarget,
    ResourceMetricSource,
    PodsMetricSource,
    ObjectMetricSource,
    ExternalMetricSource,
    ScalingRule,
    ScalingRules,
    ScalingBehavior,
    HorizontalScalerSpec,
    metric_spec_from_manifest,
)
from .calculator import MetricStatus, MetricEvaluation, PerMetricDesiredCalculator
from .reconciler import Candidate, MultiMetricReconciler
from .stabilization import Direction, LimitedDecision, StabilizationRateLimiter
from .autoscaler import ScaleAction, ScalingTarget, ScalingDecision, HorizontalScaler
from .simulator import HorizontalScalingSimulator

__all__ = [
    'MetricKind',
    'TargetType',
    'PolicyType',
    'SelectPolicy',
    'MetricTarget',
    'ResourceMetricSource',
    'PodsMetricSource',
    'ObjectMetricSource',
    'ExternalMetricSource',
    'ScalingRule',
    'ScalingRules',
    'ScalingBehavior',
    'HorizontalScalerSpec',
    'metric_spec_from_manifest',
    'MetricStatus',
    'MetricEvaluation',
    'PerMetricDesiredCalculator',
    'Candidate',
    'MultiMetricReconciler',
    'Direction',
    'LimitedDecision',
    'StabilizationRateLimiter',
    'ScaleAction',
    'ScalingTarget',
    'ScalingDecision',
    'HorizontalScaler',
    'HorizontalScalingSimulator'
]
