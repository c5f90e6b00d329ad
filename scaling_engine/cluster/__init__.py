"""
Cluster Scaling Module
======================
Scale-up / scale-down node groups theo pending pods và utilization (CAS-style).

Classes:
- NodeGroup, Node, NodeTemplate: Object model của cluster
- PendingPodSpec, ScheduledPod, DisruptionBudget: Pods và budgets
- ClusterAutoscalerOptions: Flags của planner
- Expander: least-waste, most-pods, priority, random
- NodeGroupScalingPlanner: plan_scale_up / plan_scale_down
"""

from .resources import (
    ResourceVector,
    Taint,
    Toleration,
    NodeTemplate,
    Node,
    NodeGroup,
    PendingPodSpec,
    ScheduledPod,
    DisruptionBudget,
    can_schedule,
)
from .options import ClusterAutoscalerOptions
from .expander import Expander, ExpansionOption
from .planner import NodeGroupScalingPlanner, ScaleUpPlan, ScaleDownPlan

__all__ = [
    'ResourceVector',
    'Taint',
    'Toleration',
    'NodeTemplate',
    'Node',
    'NodeGroup',
    'PendingPodSpec',
    'ScheduledPod',
    'DisruptionBudget',
    'can_schedule',
    'ClusterAutoscalerOptions',
    'Expander',
    'ExpansionOption',
    'NodeGroupScalingPlanner',
    'ScaleUpPlan',
    'ScaleDownPlan'
]
