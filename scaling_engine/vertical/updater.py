"""
Vertical Scaler
===============
Áp dụng recommendations lên pods của một workload theo update mode.

Update modes:
    - Off: chỉ tính recommendation, không thay đổi pod nào
    - Initial: set requests khi pod được tạo, không evict
    - Auto: set requests khi tạo + evict pods có requests lệch khỏi
      [lower_bound, upper_bound], không bao giờ để số ready pods < min_replicas

Việc evict thực tế (và thứ tự) do orchestrator thực hiện; scaler chỉ trả về
danh sách pods nên evict trong tick này.

Usage:
    >>> scaler = VerticalScaler('web', spec, recommender)
    >>> scaler.add_usage('app', 'cpu', 0.4, timestamp=1000.0)
    >>> requests = scaler.admit(new_pod)
    >>> evictions = scaler.plan_evictions(pods)
"""

import logging
from typing import Dict, List, Optional
from dataclasses import dataclass, field

from .recommender import (
    ContainerScalingMode,
    RecommendedResources,
    ResourceRecommender,
    UpdateMode,
    VerticalScalerSpec,
)

logger = logging.getLogger(__name__)


@dataclass
class PodResources:
    """
    Requests hiện tại của một pod.

    Attributes:
        pod_id: Pod ID
        requests: {container_name: {resource: value}}
        ready: Pod đang ready
        created_at: Thời điểm tạo
    """
    pod_id: str
    requests: Dict[str, Dict[str, float]] = field(default_factory=dict)
    ready: bool = True
    created_at: Optional[float] = None


@dataclass
class EvictionPlan:
    """Pod nên evict để được tạo lại với requests mới."""
    pod_id: str
    reason: str
    drift: float = 0.0


def container_id(workload_id: str, container_name: str) -> str:
    return f"{workload_id}/{container_name}"


class VerticalScaler:
    """
    Vertical scaling cho một workload.

    Attributes:
        workload_id: Workload ID
        spec: VerticalScalerSpec
        recommender: ResourceRecommender dùng chung
    """

    def __init__(self, workload_id: str, spec: VerticalScalerSpec, recommender: ResourceRecommender):
        self.workload_id = workload_id
        self.spec = spec
        self.recommender = recommender
        self.containers: List[str] = []

    def update_spec(self, spec: VerticalScalerSpec):
        self.spec = spec

    def add_usage(self, container_name: str, resource: str, value: float, timestamp: float, weight: float = 1.0):
        self.recommender.add_sample(
            container_id(self.workload_id, container_name), resource, value, timestamp, weight
        )
        if container_name not in self.containers:
            logger.info("Workload %s: tracking new container %s", self.workload_id, container_name)
            self.containers.append(container_name)

    def recommend(self, container_name: str) -> RecommendedResources:
        """Recommendation cho một container (KeyError nếu chưa có usage)."""
        return self.recommender.recommend(
            container_id(self.workload_id, container_name),
            self.spec.policy_for(container_name),
            containers_in_pod=max(1, len(self.containers))
        )

    def recommendations(self) -> Dict[str, RecommendedResources]:
        result = {}
        for name in self.containers:
            if self.spec.policy_for(name).mode == ContainerScalingMode.OFF:
                continue
            try:
                rec = self.recommend(name)
            except KeyError:
                continue
            if not rec.empty:
                result[name] = rec
        return result

    def admit(self, pod: PodResources) -> Dict[str, Dict[str, float]]:
        """
        Requests cho pod mới tạo.

        Args:
            pod: Pod vừa được tạo

        Returns:
            Requests sau khi áp dụng recommendation (giữ nguyên nếu mode Off)
        """
        requests = {name: dict(values) for name, values in pod.requests.items()}
        if self.spec.update_mode == UpdateMode.OFF:
            return requests

        recommendations = self.recommendations()
        for name, rec in recommendations.items():
            if name in requests:
                requests[name].update(rec.target)

        logger.debug("Workload %s: admitted pod %s with %s", self.workload_id, pod.pod_id, requests)
        return requests

    def _drift(self, pod: PodResources, recommendations: Dict[str, RecommendedResources]) -> float:
        """Độ lệch tương đối lớn nhất khỏi [lower_bound, upper_bound]; 0 = trong khoảng."""
        worst = 0.0
        for name, rec in recommendations.items():
            current = pod.requests.get(name)
            if current is None:
                continue
            for resource, target in rec.target.items():
                request = current.get(resource)
                if request is None or request <= 0:
                    worst = max(worst, 1.0)
                    continue
                lower = rec.lower_bound[resource]
                upper = rec.upper_bound[resource]
                if request < lower or request > upper:
                    worst = max(worst, abs(target - request) / request)
        return worst

    def plan_evictions(self, pods: List[PodResources]) -> List[EvictionPlan]:
        """
        Chọn pods cần evict trong tick này (chỉ khi mode Auto).

        Pods không ready được evict trước (không làm giảm số ready replicas),
        sau đó tới pods lệch nhiều nhất, trong giới hạn ready - min_replicas.

        Args:
            pods: Pods hiện tại của workload

        Returns:
            List EvictionPlan
        """
        if self.spec.update_mode != UpdateMode.AUTO:
            return []

        recommendations = self.recommendations()
        if not recommendations:
            return []

        drifted = []
        for pod in pods:
            drift = self._drift(pod, recommendations)
            if drift > 0:
                drifted.append((pod, drift))

        ready_count = sum(1 for p in pods if p.ready)
        budget = max(0, ready_count - self.spec.min_replicas)

        plans = []
        for pod, drift in sorted(drifted, key=lambda item: (item[0].ready, -item[1], item[0].pod_id)):
            if pod.ready:
                if budget == 0:
                    logger.info(
                        "Workload %s: eviction of %s deferred, %d ready replicas (min %d)",
                        self.workload_id, pod.pod_id, ready_count, self.spec.min_replicas
                    )
                    continue
                budget -= 1
            plans.append(EvictionPlan(pod.pod_id, f"requests drifted {drift:.0%} from recommendation", drift))

        if plans:
            logger.info("Workload %s: evicting %d pods", self.workload_id, len(plans))
        return plans
