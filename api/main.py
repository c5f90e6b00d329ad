"""
FastAPI Application
===================
API endpoints cho Autoscaling Decision Engine (in-memory collaborators).

Endpoints:
    - GET /health: Health check
    - POST/PUT/DELETE /targets/{id}: Attach / update / detach horizontal targets
    - POST /targets/{id}/samples: Push metric samples
    - POST /targets/{id}/decide: Chạy một tick, trả về ScalingDecision
    - POST/DELETE /workloads/{id}: Attach / detach vertical workloads
    - POST /workloads/{id}/usage: Push container usage
    - GET /recommendations/{workload}/{container}: Resource recommendation
    - POST /node-groups, /pending-pods, /disruption-budgets: Cluster state
    - POST /cluster/scale-up, /cluster/scale-down: Node group plans
    - POST /simulate: Replay load qua horizontal pipeline

Run:
    uvicorn api.main:app --reload --port 8000
"""

from fastapi import FastAPI, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware
from datetime import datetime
import logging
import pandas as pd
import sys
import os

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from api.schemas import (
    HealthResponse,
    TargetRequest, TargetResponse,
    SamplesRequest, SamplesResponse,
    DecisionResponse, ScalingStatsResponse,
    WorkloadRequest, WorkloadResponse,
    UsageRequest, RecommendationResponse,
    PodIn, NodeGroupIn, DisruptionBudgetIn,
    ScaleUpPlanOut, ScaleDownPlanOut, ScaleUpResponse, ScaleDownResponse,
    SimulationRequest, SimulationResponse
)
from scaling_engine import AutoscalingEngine, ConfigurationError, __version__
from scaling_engine.units import parse_quantity
from scaling_engine.metrics import MetricSample
from scaling_engine.horizontal import HorizontalScalerSpec, ScalingTarget, HorizontalScalingSimulator
from scaling_engine.cluster import (
    DisruptionBudget, Node, NodeGroup, NodeTemplate, PendingPodSpec,
    ResourceVector, ScheduledPod, Taint, Toleration
)
from scaling_engine.sources import InMemoryMetricsSource, InMemoryObjectModel

logger = logging.getLogger(__name__)

# =============================================================================
# App Configuration
# =============================================================================

app = FastAPI(
    title="Autoscaling Decision Engine API",
    description="""
    API cho autoscaling decision engine.

    ## Features
    - **Horizontal scaling**: Replica count từ nhiều metrics, stabilization, step policies
    - **Vertical scaling**: Resource recommendations từ decaying histograms
    - **Node groups**: Scale-up bằng bin-packing + expanders, scale-down an toàn
    - **Simulation**: Replay load data qua decision pipeline
    """,
    version=__version__,
    docs_url="/docs",
    redoc_url="/redoc"
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# =============================================================================
# Global State
# =============================================================================

STATE = {
    "engine": None,
    "metrics": None,
    "objects": None
}


def get_engine() -> AutoscalingEngine:
    """Tạo engine in-memory nếu chưa có."""
    if STATE["engine"] is None:
        STATE["metrics"] = InMemoryMetricsSource()
        STATE["objects"] = InMemoryObjectModel()
        STATE["engine"] = AutoscalingEngine(STATE["metrics"], STATE["objects"])
        logger.info("In-memory engine created")
    return STATE["engine"]


def reset_state():
    """Bỏ engine hiện tại (dùng trong tests)."""
    if STATE["engine"] is not None:
        STATE["engine"].close()
    STATE.update(engine=None, metrics=None, objects=None)


def not_found(kind: str, key) -> HTTPException:
    return HTTPException(status_code=404, detail=f"{kind} not found: {key}")


def invalid(error: Exception) -> HTTPException:
    return HTTPException(status_code=422, detail=f"Invalid configuration: {error}")


def to_decision_response(decision) -> DecisionResponse:
    return DecisionResponse(**decision.to_dict())


def to_pod(pod: PodIn, scheduled: bool = False):
    fields = dict(
        pod_id=pod.pod_id,
        requests=ResourceVector.from_manifest(pod.requests),
        labels=dict(pod.labels),
        tolerations=[Toleration(**t.model_dump()) for t in pod.tolerations],
        node_affinity={k: list(v) for k, v in pod.node_affinity.items()}
    )
    if not scheduled:
        return PendingPodSpec(**fields)
    return ScheduledPod(
        has_local_storage=pod.has_local_storage,
        controlled=pod.controlled,
        is_daemonset=pod.is_daemonset,
        **fields
    )


# =============================================================================
# Health Endpoints
# =============================================================================

@app.get("/health", response_model=HealthResponse, tags=["Health"])
async def health_check():
    """
    Health check endpoint.

    Trả về trạng thái engine và số targets / workloads / node groups.
    """
    engine = get_engine()
    return HealthResponse(
        status="healthy",
        timestamp=datetime.now(),
        targets=len(engine.targets()),
        workloads=len(engine.workloads()),
        node_groups=len(STATE["objects"].get_node_groups()),
        version=__version__
    )


# =============================================================================
# Horizontal Target Endpoints
# =============================================================================

@app.get("/targets", response_model=list, tags=["Horizontal"])
async def list_targets():
    """Liệt kê các targets đã attach."""
    return get_engine().targets()


@app.post("/targets/{target_id}", response_model=TargetResponse, tags=["Horizontal"])
async def attach_target(target_id: str, request: TargetRequest):
    """
    Attach một target với HPA manifest.

    Target mới được đăng ký vào object model với replicas = current_replicas
    (mặc định minReplicas).
    """
    engine = get_engine()
    try:
        spec = HorizontalScalerSpec.from_manifest(request.manifest)
        current = request.current_replicas if request.current_replicas is not None else spec.min_replicas
        target = ScalingTarget(target_id, spec.min_replicas, spec.max_replicas, current)
    except ConfigurationError as e:
        raise invalid(e)

    engine.attach_target(target_id, spec)
    STATE["objects"].register_target(target)

    return TargetResponse(
        target_id=target_id,
        min_replicas=spec.min_replicas,
        max_replicas=spec.max_replicas,
        current_replicas=target.current_scale,
        metrics=[m.metric_id for m in spec.metrics]
    )


@app.put("/targets/{target_id}", response_model=TargetResponse, tags=["Horizontal"])
async def update_target(target_id: str, request: TargetRequest):
    """Thay spec của target; bounds mới được áp dụng từ tick tiếp theo."""
    engine = get_engine()
    try:
        spec = HorizontalScalerSpec.from_manifest(request.manifest)
        engine.update_target(target_id, spec)
        target = STATE["objects"].get_target(target_id)
    except ConfigurationError as e:
        raise invalid(e)
    except KeyError:
        raise not_found("Target", target_id)

    target.min_scale = spec.min_replicas
    target.max_scale = spec.max_replicas
    if request.current_replicas is not None:
        target.current_scale = request.current_replicas

    return TargetResponse(
        target_id=target_id,
        min_replicas=spec.min_replicas,
        max_replicas=spec.max_replicas,
        current_replicas=target.current_scale,
        metrics=[m.metric_id for m in spec.metrics]
    )


@app.delete("/targets/{target_id}", tags=["Horizontal"])
async def detach_target(target_id: str):
    """Detach target; không có thêm decision nào cho target này."""
    try:
        get_engine().detach_target(target_id)
    except KeyError:
        raise not_found("Target", target_id)
    STATE["objects"].remove_target(target_id)
    return {"detached": target_id}


@app.post("/targets/{target_id}/samples", response_model=SamplesResponse, tags=["Horizontal"])
async def push_samples(target_id: str, request: SamplesRequest):
    """Push metric samples; engine đọc chúng ở tick tiếp theo."""
    engine = get_engine()
    if target_id not in engine.targets():
        raise not_found("Target", target_id)

    now = engine.clock()
    for sample in request.samples:
        STATE["metrics"].push(MetricSample(
            metric_id=sample.metric_id,
            target_id=target_id,
            value=sample.value,
            timestamp=sample.timestamp if sample.timestamp is not None else now,
            instance=sample.instance
        ))
    return SamplesResponse(accepted=len(request.samples))


@app.post("/targets/{target_id}/decide", response_model=DecisionResponse, tags=["Horizontal"])
async def decide(
    target_id: str,
    now: float = Query(None, description="Thời điểm tick (epoch seconds)"),
    apply: bool = Query(True, description="Áp dụng decision vào object model")
):
    """
    Chạy một tick cho target.

    Pipeline: samples -> per-metric desired -> reconcile -> stabilization.
    """
    try:
        decision = get_engine().decide(target_id, now=now)
    except KeyError:
        raise not_found("Target", target_id)

    if apply:
        STATE["objects"].apply_decision(decision)
    return to_decision_response(decision)


@app.get("/targets/{target_id}/history", response_model=ScalingStatsResponse, tags=["Horizontal"])
async def target_history(target_id: str, limit: int = Query(50, ge=1, le=1000)):
    """Lịch sử decisions và thống kê của target."""
    try:
        scaler = get_engine().scaler(target_id)
    except KeyError:
        raise not_found("Target", target_id)

    stats = scaler.get_stats()
    return ScalingStatsResponse(
        target_id=target_id,
        decisions=[to_decision_response(d) for d in scaler.scaling_history[-limit:]],
        **stats
    )


# =============================================================================
# Vertical Workload Endpoints
# =============================================================================

@app.post("/workloads/{workload_id}", response_model=WorkloadResponse, tags=["Vertical"])
async def attach_workload(workload_id: str, request: WorkloadRequest):
    """Attach workload với VPA manifest."""
    try:
        scaler = get_engine().attach_workload(workload_id, request.manifest)
    except ConfigurationError as e:
        raise invalid(e)

    return WorkloadResponse(
        workload_id=workload_id,
        update_mode=scaler.spec.update_mode.value,
        min_replicas=scaler.spec.min_replicas,
        containers=list(scaler.containers)
    )


@app.delete("/workloads/{workload_id}", tags=["Vertical"])
async def detach_workload(workload_id: str):
    try:
        get_engine().detach_workload(workload_id)
    except KeyError:
        raise not_found("Workload", workload_id)
    return {"detached": workload_id}


@app.post("/workloads/{workload_id}/usage", response_model=SamplesResponse, tags=["Vertical"])
async def push_usage(workload_id: str, request: UsageRequest):
    """Push container usage samples (cores / bytes hoặc quantity strings)."""
    engine = get_engine()
    try:
        for sample in request.samples:
            engine.ingest_usage(
                workload_id,
                sample.container,
                sample.resource,
                parse_quantity(sample.value),
                sample.timestamp,
                sample.weight
            )
    except KeyError:
        raise not_found("Workload", workload_id)
    except ValueError as e:
        raise invalid(e)
    return SamplesResponse(accepted=len(request.samples))


@app.get(
    "/recommendations/{workload_id}/{container}",
    response_model=RecommendationResponse,
    tags=["Vertical"]
)
async def recommend(workload_id: str, container: str):
    """Recommendation cho một container."""
    container_id = f"{workload_id}/{container}"
    try:
        rec = get_engine().recommend(container_id)
    except KeyError:
        raise not_found("Container", container_id)

    data = rec.to_dict()
    return RecommendationResponse(
        container_id=container_id,
        target=data['target'],
        lower_bound=data['lowerBound'],
        upper_bound=data['upperBound'],
        uncapped_target=data['uncappedTarget']
    )


# =============================================================================
# Cluster Endpoints
# =============================================================================

@app.post("/node-groups", tags=["Cluster"])
async def add_node_group(request: NodeGroupIn):
    """Đăng ký (hoặc thay thế) một node group."""
    get_engine()
    try:
        template = NodeTemplate(
            capacity=ResourceVector.from_manifest(request.capacity),
            labels=dict(request.labels),
            taints=[Taint(**t.model_dump()) for t in request.taints]
        )
        group = NodeGroup(
            group_id=request.group_id,
            min_size=request.min_size,
            max_size=request.max_size,
            target_size=request.target_size,
            template=template,
            zones=list(request.zones),
            priority=request.priority,
            ready_size=request.ready_size,
            nodes=[
                Node(
                    node_id=n.node_id,
                    node_group_id=request.group_id,
                    allocatable=template.capacity,
                    labels=dict(template.labels),
                    taints=list(template.taints),
                    pods=[to_pod(p, scheduled=True) for p in n.pods],
                    ready=n.ready
                )
                for n in request.nodes
            ]
        )
    except ConfigurationError as e:
        raise invalid(e)

    STATE["objects"].add_node_group(group)
    return {"group_id": group.group_id, "target_size": group.target_size, "nodes": len(group.nodes)}


@app.post("/pending-pods", tags=["Cluster"])
async def add_pending_pod(request: PodIn):
    get_engine()
    try:
        pod = to_pod(request)
    except ConfigurationError as e:
        raise invalid(e)
    STATE["objects"].add_pending_pod(pod)
    return {"pod_id": pod.pod_id}


@app.delete("/pending-pods/{pod_id}", tags=["Cluster"])
async def remove_pending_pod(pod_id: str):
    get_engine()
    STATE["objects"].remove_pending_pod(pod_id)
    return {"removed": pod_id}


@app.post("/disruption-budgets", tags=["Cluster"])
async def set_disruption_budget(request: DisruptionBudgetIn):
    get_engine()
    STATE["objects"].set_disruption_budget(DisruptionBudget(**request.model_dump()))
    return {"name": request.name}


@app.post("/cluster/scale-up", response_model=ScaleUpResponse, tags=["Cluster"])
async def plan_scale_up(
    now: float = Query(None),
    apply: bool = Query(False, description="Tăng target_size của các groups theo plan")
):
    """Scale-up plans cho pending pods."""
    plans = get_engine().plan_scale_up(now=now)
    if apply:
        for plan in plans:
            STATE["objects"].apply_scale_up(plan)
    return ScaleUpResponse(
        plans=[ScaleUpPlanOut(node_group_id=p.node_group_id, delta_nodes=p.delta_nodes, pods=p.pods) for p in plans],
        applied=apply
    )


@app.post("/cluster/scale-down", response_model=ScaleDownResponse, tags=["Cluster"])
async def plan_scale_down(
    now: float = Query(None),
    apply: bool = Query(False, description="Xóa các nodes theo plan")
):
    """Scale-down plans cho các nodes unneeded."""
    plans = get_engine().plan_scale_down(now=now)
    if apply:
        for plan in plans:
            STATE["objects"].apply_scale_down(plan)
    return ScaleDownResponse(
        plans=[ScaleDownPlanOut(node_id=p.node_id, node_group_id=p.node_group_id, reason=p.reason) for p in plans],
        applied=apply
    )


# =============================================================================
# Simulation Endpoints
# =============================================================================

@app.post("/simulate", response_model=SimulationResponse, tags=["Simulation"])
async def run_simulation(request: SimulationRequest):
    """
    Replay load series qua horizontal pipeline với spec cho trước.
    """
    try:
        spec = HorizontalScalerSpec.from_manifest(request.manifest)
    except ConfigurationError as e:
        raise invalid(e)

    index = pd.date_range('2024-01-01', periods=len(request.load), freq=f"{request.interval_seconds}s")
    load_df = pd.DataFrame({'load': request.load}, index=index)

    simulator = HorizontalScalingSimulator(
        spec,
        capacity_per_replica=request.capacity_per_replica,
        cost_per_replica_hour=request.cost_per_replica_hour
    )
    sim_df = simulator.simulate(load_df, initial_replicas=request.initial_replicas)
    metrics = simulator.calculate_metrics(sim_df)

    return SimulationResponse(
        total_cost=metrics['total_cost'],
        average_replicas=metrics['avg_replicas'],
        peak_replicas=metrics['max_replicas'],
        min_replicas=metrics['min_replicas'],
        scaling_events=metrics['total_scaling_events'],
        flaps=metrics['flaps'],
        overloaded_periods=metrics['overloaded_periods'],
        drop_rate_pct=metrics['drop_rate_pct'],
        timeline=[int(r) for r in sim_df['applied']]
    )


# =============================================================================
# Main
# =============================================================================

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
