"""
Control Loop Driver
===================
Chạy các vòng lặp scaling độc lập trên asyncio.

Loops:
    - Mỗi horizontal target: decide() mỗi target_interval (mặc định 15s)
    - Mỗi vertical workload: update_recommendations() mỗi recommender_interval (60s)
    - Node-group planner: scale-up rồi scale-down mỗi planner_interval (10s)

Các calls vào engine chạy trên thread (asyncio.to_thread) để metrics reads
không chặn event loop. Xóa target hủy task ngay lập tức, không emit thêm
decision nào; lỗi trong một tick được log và loop tiếp tục ở tick sau.

Usage:
    >>> driver = ControlLoopDriver(engine, on_decision=object_model.apply_decision)
    >>> await driver.start()
    >>> driver.add_target('web', spec)
    >>> await driver.stop()
"""

import asyncio
import logging
from typing import Any, Callable, Dict, List, Optional

from ..engine import AutoscalingEngine
from ..horizontal.autoscaler import ScalingDecision
from ..cluster.planner import ScaleDownPlan, ScaleUpPlan

logger = logging.getLogger(__name__)

PLANNER_TASK = 'planner'


class ControlLoopDriver:
    """
    Scheduler cho các control loops.

    Attributes:
        engine: AutoscalingEngine
        target_interval: Chu kỳ của target loops (seconds)
        recommender_interval: Chu kỳ của workload loops
        planner_interval: Chu kỳ của planner loop (None = tắt)
    """

    def __init__(
        self,
        engine: AutoscalingEngine,
        target_interval: float = 15.0,
        recommender_interval: float = 60.0,
        planner_interval: Optional[float] = 10.0,
        on_decision: Optional[Callable[[ScalingDecision], Any]] = None,
        on_recommendations: Optional[Callable] = None,
        on_scale_up: Optional[Callable[[List[ScaleUpPlan]], Any]] = None,
        on_scale_down: Optional[Callable[[List[ScaleDownPlan]], Any]] = None
    ):
        self.engine = engine
        self.target_interval = target_interval
        self.recommender_interval = recommender_interval
        self.planner_interval = planner_interval
        self.on_decision = on_decision
        self.on_recommendations = on_recommendations
        self.on_scale_up = on_scale_up
        self.on_scale_down = on_scale_down

        self._tasks: Dict[str, asyncio.Task] = {}
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    def task_names(self) -> List[str]:
        return sorted(name for name, task in self._tasks.items() if not task.done())

    def _spawn(self, name: str, coro):
        self._cancel(name)
        self._tasks[name] = asyncio.get_running_loop().create_task(coro, name=name)

    def _cancel(self, name: str):
        task = self._tasks.pop(name, None)
        if task is not None:
            task.cancel()

    async def start(self):
        """Start loops cho mọi targets / workloads đã attach và planner."""
        if self._running:
            return
        self._running = True
        for target_id in self.engine.targets():
            self._spawn(f"target:{target_id}", self._target_loop(target_id))
        for workload_id in self.engine.workloads():
            self._spawn(f"workload:{workload_id}", self._workload_loop(workload_id))
        if self.planner_interval:
            self._spawn(PLANNER_TASK, self._planner_loop())
        logger.info("Control loops started (%d tasks)", len(self._tasks))

    async def stop(self):
        """Cancel mọi loops và chờ chúng kết thúc."""
        self._running = False
        tasks = list(self._tasks.values())
        self._tasks.clear()
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        logger.info("Control loops stopped")

    # Targets
    def add_target(self, target_id: str, spec):
        self.engine.attach_target(target_id, spec)
        if self._running:
            self._spawn(f"target:{target_id}", self._target_loop(target_id))

    def update_target(self, target_id: str, spec):
        """Spec mới có hiệu lực từ tick tiếp theo; loop không bị restart."""
        self.engine.update_target(target_id, spec)

    def remove_target(self, target_id: str):
        self._cancel(f"target:{target_id}")
        self.engine.detach_target(target_id)

    # Workloads
    def add_workload(self, workload_id: str, spec):
        self.engine.attach_workload(workload_id, spec)
        if self._running:
            self._spawn(f"workload:{workload_id}", self._workload_loop(workload_id))

    def remove_workload(self, workload_id: str):
        self._cancel(f"workload:{workload_id}")
        self.engine.detach_workload(workload_id)

    # Single ticks
    async def run_target_once(self, target_id: str) -> ScalingDecision:
        decision = await asyncio.to_thread(self.engine.decide, target_id)
        if self.on_decision is not None:
            self.on_decision(decision)
        return decision

    async def run_workload_once(self, workload_id: str):
        recommendations, evictions = await asyncio.to_thread(
            self.engine.update_recommendations, workload_id
        )
        if self.on_recommendations is not None:
            self.on_recommendations(workload_id, recommendations, evictions)
        return recommendations, evictions

    async def run_planner_once(self):
        """Scale-up trước; chỉ scale-down khi tick này không có scale-up."""
        ups = await asyncio.to_thread(self.engine.plan_scale_up)
        if ups:
            if self.on_scale_up is not None:
                self.on_scale_up(ups)
            return ups, []

        downs = await asyncio.to_thread(self.engine.plan_scale_down)
        if downs and self.on_scale_down is not None:
            self.on_scale_down(downs)
        return ups, downs

    # Loops
    async def _loop(self, name: str, interval: float, tick):
        while True:
            try:
                await tick()
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("Tick of %s failed", name)
            await asyncio.sleep(interval)

    async def _target_loop(self, target_id: str):
        await self._loop(f"target {target_id}", self.target_interval,
                         lambda: self.run_target_once(target_id))

    async def _workload_loop(self, workload_id: str):
        await self._loop(f"workload {workload_id}", self.recommender_interval,
                         lambda: self.run_workload_once(workload_id))

    async def _planner_loop(self):
        await self._loop("planner", self.planner_interval, self.run_planner_once)
