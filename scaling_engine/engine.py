"""
Autoscaling Engine
==================
Facade kết nối sample store, horizontal scalers, vertical scalers và
node-group planner với các collaborators bên ngoài.

Operations:
    - decide(target_id) -> ScalingDecision
    - recommend(container_id) -> RecommendedResources
    - plan_scale_up() -> List[ScaleUpPlan]
    - plan_scale_down() -> List[ScaleDownPlan]

Điểm blocking duy nhất trong một tick là đọc metrics: mỗi metric được đọc
trên thread pool với timeout metric_timeout_seconds; quá hạn hoặc lỗi thì
metric đó là UNKNOWN cho tick này.

Usage:
    >>> engine = AutoscalingEngine(metrics_source, object_model)
    >>> engine.attach_target('web', HorizontalScalerSpec(min_replicas=2, max_replicas=10))
    >>> decision = engine.decide('web')
    >>> engine.attach_workload('web', VerticalScalerSpec())
    >>> rec = engine.recommend('web/app')
"""

import time
import logging
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeout
from typing import Any, Callable, Dict, List, Optional, Set, Tuple, Union
from dataclasses import dataclass
from threading import RLock

from .metrics.store import MetricSample, MetricSampleStore
from .horizontal.spec import HorizontalScalerSpec
from .horizontal.calculator import PerMetricDesiredCalculator
from .horizontal.reconciler import MultiMetricReconciler
from .horizontal.autoscaler import HorizontalScaler, ScalingDecision
from .vertical.recommender import (
    RecommendedResources,
    RecommenderConfig,
    ResourceRecommender,
    VerticalScalerSpec,
)
from .vertical.updater import EvictionPlan, PodResources, VerticalScaler
from .cluster.options import ClusterAutoscalerOptions
from .cluster.planner import NodeGroupScalingPlanner, ScaleDownPlan, ScaleUpPlan
from .sources import MetricsSource, ObjectModelSource

logger = logging.getLogger(__name__)


@dataclass
class EngineConfig:
    """
    Cấu hình engine.

    Attributes:
        tolerance: Tolerance của calculator
        min_reported_fraction: Tỷ lệ instances tối thiểu phải có sample
        sample_max_age: Tuổi tối đa của sample (seconds)
        retention_seconds: Retention tối thiểu của sample store
        metric_timeout_seconds: Timeout đọc metrics mỗi tick
        hold_scale_down_on_unknown: Giữ scale-down khi có metric UNKNOWN
        fetch_workers: Số threads đọc metrics
        history_size: Số decisions giữ lại cho mỗi target
    """
    tolerance: float = 0.1
    min_reported_fraction: float = 0.5
    sample_max_age: float = 60.0
    retention_seconds: float = 600.0
    metric_timeout_seconds: float = 5.0
    hold_scale_down_on_unknown: bool = False
    fetch_workers: int = 4
    history_size: int = 1000


class AutoscalingEngine:
    """
    Engine chính cho các scaling decisions.

    Attributes:
        config: EngineConfig
        metrics_source: MetricsSource
        object_model: ObjectModelSource
        store: MetricSampleStore dùng chung cho mọi target
        recommender: ResourceRecommender dùng chung cho mọi workload
        planner: NodeGroupScalingPlanner
    """

    def __init__(
        self,
        metrics_source: MetricsSource,
        object_model: ObjectModelSource,
        config: Optional[EngineConfig] = None,
        recommender_config: Optional[RecommenderConfig] = None,
        cluster_options: Optional[ClusterAutoscalerOptions] = None,
        clock: Callable[[], float] = time.time
    ):
        self.config = config or EngineConfig()
        self.metrics_source = metrics_source
        self.object_model = object_model
        self.clock = clock

        self.store = MetricSampleStore(self.config.retention_seconds)
        self.calculator = PerMetricDesiredCalculator(
            tolerance=self.config.tolerance,
            min_reported_fraction=self.config.min_reported_fraction,
            sample_max_age=self.config.sample_max_age
        )
        self.reconciler = MultiMetricReconciler(self.config.hold_scale_down_on_unknown)
        self.recommender = ResourceRecommender(recommender_config)
        self.planner = NodeGroupScalingPlanner(cluster_options)

        self._scalers: Dict[str, HorizontalScaler] = {}
        self._workloads: Dict[str, VerticalScaler] = {}
        self._lock = RLock()
        self._executor = ThreadPoolExecutor(
            max_workers=self.config.fetch_workers,
            thread_name_prefix='metrics-fetch'
        )

    # ------------------------------------------------------------------
    # Horizontal targets
    # ------------------------------------------------------------------

    @staticmethod
    def _horizontal_spec(spec: Union[HorizontalScalerSpec, Dict[str, Any]]) -> HorizontalScalerSpec:
        if isinstance(spec, HorizontalScalerSpec):
            return spec
        return HorizontalScalerSpec.from_manifest(spec)

    def attach_target(
        self,
        target_id: str,
        spec: Union[HorizontalScalerSpec, Dict[str, Any]]
    ) -> HorizontalScaler:
        """
        Attach (hoặc cập nhật) một horizontal target.

        Raises:
            ConfigurationError: Spec không hợp lệ
        """
        spec = self._horizontal_spec(spec)
        with self._lock:
            existing = self._scalers.get(target_id)
            if existing is not None:
                existing.update_spec(spec)
                return existing

            scaler = HorizontalScaler(
                target_id,
                spec,
                self.store,
                calculator=self.calculator,
                reconciler=self.reconciler,
                history_size=self.config.history_size
            )
            self._scalers[target_id] = scaler
            logger.info(
                "Attached target %s (%d metrics, replicas %d-%d)",
                target_id, len(spec.metrics), spec.min_replicas, spec.max_replicas
            )
            return scaler

    def update_target(self, target_id: str, spec: Union[HorizontalScalerSpec, Dict[str, Any]]):
        spec = self._horizontal_spec(spec)
        self.scaler(target_id).update_spec(spec)

    def detach_target(self, target_id: str):
        with self._lock:
            if self._scalers.pop(target_id, None) is None:
                raise KeyError(target_id)
            self.store.reset_target(target_id)
        logger.info("Detached target %s", target_id)

    def scaler(self, target_id: str) -> HorizontalScaler:
        with self._lock:
            return self._scalers[target_id]

    def targets(self) -> List[str]:
        with self._lock:
            return sorted(self._scalers)

    def ingest(self, sample: MetricSample):
        """Push sample trực tiếp vào store (không qua MetricsSource)."""
        self.store.add(sample)

    def _fetch(self, scaler: HorizontalScaler) -> Set[str]:
        """Đọc samples mới của mọi metric; trả về metric IDs không đọc được."""
        futures = {
            metric.metric_id: self._executor.submit(
                self.metrics_source.get_samples, scaler.target_id, metric
            )
            for metric in scaler.spec.metrics
        }

        deadline = time.monotonic() + self.config.metric_timeout_seconds
        unavailable = set()
        for metric_id, future in futures.items():
            try:
                samples = future.result(timeout=max(0.0, deadline - time.monotonic()))
            except FutureTimeout:
                future.cancel()
                logger.warning(
                    "Target %s: metric %s fetch timed out after %.1fs",
                    scaler.target_id, metric_id, self.config.metric_timeout_seconds
                )
                unavailable.add(metric_id)
                continue
            except Exception as e:
                logger.warning("Target %s: metric %s fetch failed: %s", scaler.target_id, metric_id, e)
                unavailable.add(metric_id)
                continue

            # Target có thể đã bị detach trong lúc fetch
            with self._lock:
                if self._scalers.get(scaler.target_id) is not scaler:
                    logger.debug("Target %s detached during fetch, dropping samples", scaler.target_id)
                    continue
                self.store.extend(samples or [])

        return unavailable

    def decide(self, target_id: str, now: Optional[float] = None) -> ScalingDecision:
        """
        Chạy một tick cho target.

        Args:
            target_id: Target ID
            now: Thời điểm tick (mặc định clock())

        Returns:
            ScalingDecision

        Raises:
            KeyError: Target chưa được attach
        """
        scaler = self.scaler(target_id)
        target = self.object_model.get_target(target_id)
        unavailable = self._fetch(scaler)
        now = self.clock() if now is None else now
        return scaler.step(target, now, unavailable)

    # ------------------------------------------------------------------
    # Vertical workloads
    # ------------------------------------------------------------------

    def attach_workload(
        self,
        workload_id: str,
        spec: Union[VerticalScalerSpec, Dict[str, Any]]
    ) -> VerticalScaler:
        if not isinstance(spec, VerticalScalerSpec):
            spec = VerticalScalerSpec.from_manifest(spec)

        with self._lock:
            existing = self._workloads.get(workload_id)
            if existing is not None:
                existing.update_spec(spec)
                return existing

            scaler = VerticalScaler(workload_id, spec, self.recommender)
            self._workloads[workload_id] = scaler
            logger.info("Attached workload %s (updateMode=%s)", workload_id, spec.update_mode.value)
            return scaler

    def detach_workload(self, workload_id: str):
        with self._lock:
            scaler = self._workloads.pop(workload_id, None)
        if scaler is None:
            raise KeyError(workload_id)
        for name in scaler.containers:
            self.recommender.reset_container(f"{workload_id}/{name}")
        logger.info("Detached workload %s", workload_id)

    def workload(self, workload_id: str) -> VerticalScaler:
        with self._lock:
            return self._workloads[workload_id]

    def workloads(self) -> List[str]:
        with self._lock:
            return sorted(self._workloads)

    def ingest_usage(
        self,
        workload_id: str,
        container_name: str,
        resource: str,
        value: float,
        timestamp: Optional[float] = None,
        weight: float = 1.0
    ):
        timestamp = self.clock() if timestamp is None else timestamp
        self.workload(workload_id).add_usage(container_name, resource, value, timestamp, weight)

    @staticmethod
    def _split_container_id(container_id: str) -> Tuple[str, str]:
        workload_id, sep, container_name = container_id.partition('/')
        if not sep or not container_name:
            raise KeyError(container_id)
        return workload_id, container_name

    def recommend(self, container_id: str) -> RecommendedResources:
        """
        Recommendation cho container '<workload>/<container>'.

        Raises:
            KeyError: Workload chưa attach hoặc container chưa có usage
        """
        workload_id, container_name = self._split_container_id(container_id)
        return self.workload(workload_id).recommend(container_name)

    def admit_pod(self, workload_id: str, pod: PodResources) -> Dict[str, Dict[str, float]]:
        return self.workload(workload_id).admit(pod)

    def update_recommendations(
        self,
        workload_id: str
    ) -> Tuple[Dict[str, RecommendedResources], List[EvictionPlan]]:
        """
        Tính lại recommendations của workload và evictions nếu object model
        cung cấp pods của workload.
        """
        scaler = self.workload(workload_id)
        recommendations = scaler.recommendations()

        get_pods = getattr(self.object_model, 'get_workload_pods', None)
        evictions = scaler.plan_evictions(get_pods(workload_id)) if get_pods else []
        return recommendations, evictions

    # ------------------------------------------------------------------
    # Node groups
    # ------------------------------------------------------------------

    def plan_scale_up(self, now: Optional[float] = None) -> List[ScaleUpPlan]:
        now = self.clock() if now is None else now
        return self.planner.plan_scale_up(
            self.object_model.get_node_groups(),
            self.object_model.get_pending_pods(),
            now
        )

    def plan_scale_down(self, now: Optional[float] = None) -> List[ScaleDownPlan]:
        now = self.clock() if now is None else now
        get_budgets = getattr(self.object_model, 'get_disruption_budgets', None)
        budgets = get_budgets() if get_budgets else []
        return self.planner.plan_scale_down(self.object_model.get_node_groups(), now, budgets)

    def close(self):
        self._executor.shutdown(wait=False)
