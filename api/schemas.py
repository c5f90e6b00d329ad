"""
API Schemas
===========
Pydantic schemas cho FastAPI endpoints.
"""

from pydantic import BaseModel, Field
from typing import List, Optional, Dict, Any, Union
from datetime import datetime
from enum import Enum


Quantity = Union[float, str]


class ScalingAction(str, Enum):
    """Scaling actions."""
    NONE = "none"
    SCALE_UP = "scale_up"
    SCALE_DOWN = "scale_down"


# =============================================================================
# Health Schemas
# =============================================================================

class HealthResponse(BaseModel):
    """Health check response."""
    status: str
    timestamp: datetime
    targets: int
    workloads: int
    node_groups: int
    version: str


# =============================================================================
# Horizontal Target Schemas
# =============================================================================

class TargetRequest(BaseModel):
    """Attach / update một horizontal target."""
    manifest: Dict[str, Any] = Field(
        description="HorizontalPodAutoscaler object hoặc phần spec của nó"
    )
    current_replicas: Optional[int] = Field(
        default=None,
        ge=0,
        description="Replicas hiện tại (mặc định minReplicas)"
    )

    class Config:
        json_schema_extra = {
            "example": {
                "manifest": {
                    "minReplicas": 2,
                    "maxReplicas": 10,
                    "metrics": [{
                        "type": "Resource",
                        "resource": {
                            "name": "cpu",
                            "target": {"type": "Utilization", "averageUtilization": 80}
                        }
                    }]
                },
                "current_replicas": 3
            }
        }


class TargetResponse(BaseModel):
    """Thông tin target sau khi attach."""
    target_id: str
    min_replicas: int
    max_replicas: int
    current_replicas: int
    metrics: List[str]


class SampleIn(BaseModel):
    """Một metric sample."""
    metric_id: str = Field(description="vd: resource/cpu, pods/qps, external/queue_depth")
    value: float
    timestamp: Optional[float] = Field(default=None, description="Epoch seconds (mặc định: bây giờ)")
    instance: Optional[str] = None


class SamplesRequest(BaseModel):
    samples: List[SampleIn]


class SamplesResponse(BaseModel):
    accepted: int


class DecisionResponse(BaseModel):
    """Scaling decision của một tick."""
    target_id: str
    timestamp: float
    current_scale: int
    proposed_scale: int
    applied_scale: int
    action: ScalingAction
    reason: str
    degraded: bool
    metrics: Dict[str, Optional[float]]


class ScalingStatsResponse(BaseModel):
    target_id: str
    total_ticks: int
    scale_up_count: int
    scale_down_count: int
    degraded_count: int
    decisions: List[DecisionResponse]


# =============================================================================
# Vertical Workload Schemas
# =============================================================================

class WorkloadRequest(BaseModel):
    """Attach một workload cho vertical scaling."""
    manifest: Dict[str, Any] = Field(
        default_factory=dict,
        description="VerticalPodAutoscaler object hoặc phần spec của nó"
    )

    class Config:
        json_schema_extra = {
            "example": {
                "manifest": {
                    "updatePolicy": {"updateMode": "Auto", "minReplicas": 2},
                    "resourcePolicy": {
                        "containerPolicies": [{
                            "containerName": "*",
                            "minAllowed": {"cpu": "100m", "memory": "128Mi"},
                            "maxAllowed": {"cpu": "1", "memory": "1Gi"}
                        }]
                    }
                }
            }
        }


class WorkloadResponse(BaseModel):
    workload_id: str
    update_mode: str
    min_replicas: int
    containers: List[str]


class UsageSampleIn(BaseModel):
    """Usage của một container."""
    container: str
    resource: str = Field(description="cpu hoặc memory")
    value: Quantity = Field(description="Cores / bytes hoặc quantity string ('250m', '512Mi')")
    timestamp: Optional[float] = None
    weight: float = Field(default=1.0, gt=0)


class UsageRequest(BaseModel):
    samples: List[UsageSampleIn]


class RecommendationResponse(BaseModel):
    """Recommendation cho một container (quantity strings)."""
    container_id: str
    target: Dict[str, str]
    lower_bound: Dict[str, str]
    upper_bound: Dict[str, str]
    uncapped_target: Dict[str, str]


# =============================================================================
# Cluster Schemas
# =============================================================================

class TaintIn(BaseModel):
    key: str
    value: Optional[str] = None
    effect: str = "NoSchedule"


class TolerationIn(BaseModel):
    key: Optional[str] = None
    operator: str = "Equal"
    value: Optional[str] = None
    effect: Optional[str] = None


class PodIn(BaseModel):
    """Pending pod hoặc pod đang chạy trên node."""
    pod_id: str
    requests: Dict[str, Quantity] = Field(default_factory=dict)
    labels: Dict[str, str] = Field(default_factory=dict)
    tolerations: List[TolerationIn] = Field(default_factory=list)
    node_affinity: Dict[str, List[str]] = Field(default_factory=dict)
    has_local_storage: bool = False
    controlled: bool = True
    is_daemonset: bool = False


class NodeIn(BaseModel):
    node_id: str
    ready: bool = True
    pods: List[PodIn] = Field(default_factory=list)


class NodeGroupIn(BaseModel):
    """Node group với template và nodes hiện tại."""
    group_id: str
    min_size: int = Field(ge=0)
    max_size: int = Field(ge=0)
    target_size: int = Field(ge=0)
    capacity: Dict[str, Quantity]
    labels: Dict[str, str] = Field(default_factory=dict)
    taints: List[TaintIn] = Field(default_factory=list)
    zones: List[str] = Field(default_factory=list)
    priority: int = 0
    ready_size: Optional[int] = None
    nodes: List[NodeIn] = Field(default_factory=list)

    class Config:
        json_schema_extra = {
            "example": {
                "group_id": "pool-a",
                "min_size": 0,
                "max_size": 10,
                "target_size": 1,
                "capacity": {"cpu": "8", "memory": "32Gi"}
            }
        }


class DisruptionBudgetIn(BaseModel):
    name: str
    selector: Dict[str, str] = Field(default_factory=dict)
    disruptions_allowed: int = Field(ge=0)


class ScaleUpPlanOut(BaseModel):
    node_group_id: str
    delta_nodes: int
    pods: List[str]


class ScaleDownPlanOut(BaseModel):
    node_id: str
    node_group_id: str
    reason: str


class ScaleUpResponse(BaseModel):
    plans: List[ScaleUpPlanOut]
    applied: bool


class ScaleDownResponse(BaseModel):
    plans: List[ScaleDownPlanOut]
    applied: bool


# =============================================================================
# Simulation Schemas
# =============================================================================

class SimulationRequest(BaseModel):
    """Replay load series qua horizontal pipeline."""
    manifest: Dict[str, Any]
    load: List[float] = Field(min_length=1, description="Tổng load mỗi tick")
    interval_seconds: int = Field(default=15, ge=1)
    capacity_per_replica: float = Field(default=100.0, gt=0)
    cost_per_replica_hour: float = Field(default=0.10, ge=0)
    initial_replicas: Optional[int] = Field(default=None, ge=1)


class SimulationResponse(BaseModel):
    total_cost: float
    average_replicas: float
    peak_replicas: int
    min_replicas: int
    scaling_events: int
    flaps: int
    overloaded_periods: int
    drop_rate_pct: float
    timeline: List[int]
