"""
AUTOSCALING DECISION ENGINE
===========================
Tính toán scale mục tiêu (replicas, resource requests, node-group size)
từ metric samples và policy khai báo, độc lập với Kubernetes và cloud provider.

Modules:
- metrics: Metric sample store
- horizontal: Per-metric calculator, reconciler, stabilization, simulator
- vertical: Decaying histograms, resource recommender, pod updater
- cluster: Node groups, expanders, scale-up / scale-down planner
- control: Asyncio control loop driver
- engine: AutoscalingEngine facade
"""

from .units import ConfigurationError
from .engine import AutoscalingEngine, EngineConfig

__version__ = "1.0.0"
__author__ = "Autoscaling Analysis Team"

__all__ = ['AutoscalingEngine', 'EngineConfig', 'ConfigurationError']
