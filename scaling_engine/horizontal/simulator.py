"""
Horizontal Scaling Simulator
============================
Module simulate horizontal scaling trên historical load data.

Cho phép:
    - Replay một load time series qua toàn bộ decision pipeline
    - So sánh các ScalingBehavior khác nhau (windows, step policies)
    - Phân tích cost (replica-hours), overload và flapping

Load model mặc định: tổng load chia đều cho các replicas, mỗi replica xử
lý được `capacity_per_replica` đơn vị. Cột nào trùng metric_id trong
DataFrame sẽ được dùng trực tiếp làm giá trị quan sát của metric đó.

Usage:
    >>> simulator = HorizontalScalingSimulator(spec, capacity_per_replica=100)
    >>> results = simulator.simulate(load_df, initial_replicas=2)
    >>> events = simulator.get_scaling_events(results)
"""

import pandas as pd
import numpy as np
from typing import Dict, Optional

from ..metrics.store import MetricSample, MetricSampleStore
from .spec import (
    HorizontalScalerSpec,
    ScalingBehavior,
    TargetType,
    ResourceMetricSource,
    PodsMetricSource,
)
from .autoscaler import HorizontalScaler, ScalingTarget

SIMULATED_TARGET = 'simulated'


class HorizontalScalingSimulator:
    """
    Simulator cho horizontal scaling.

    Attributes:
        spec: HorizontalScalerSpec dùng cho simulation
        capacity_per_replica: Load tối đa mỗi replica xử lý được
        cost_per_replica_hour: Chi phí mỗi replica / giờ (USD)

    Example:
        >>> sim = HorizontalScalingSimulator(spec, capacity_per_replica=100)
        >>> results = sim.simulate(df)
        >>> print(f"Total cost: ${sim.calculate_metrics(results)['total_cost']:.2f}")
    """

    def __init__(
        self,
        spec: HorizontalScalerSpec,
        capacity_per_replica: float = 100.0,
        cost_per_replica_hour: float = 0.10
    ):
        """
        Khởi tạo simulator.

        Args:
            spec: Spec của target
            capacity_per_replica: Capacity mỗi replica (đơn vị load)
            cost_per_replica_hour: Chi phí mỗi replica-hour
        """
        if capacity_per_replica <= 0:
            raise ValueError("capacity_per_replica must be positive")

        self.spec = spec
        self.capacity_per_replica = capacity_per_replica
        self.cost_per_replica_hour = cost_per_replica_hour

    def _observe(self, metric, row: pd.Series, load: float, replicas: int) -> Optional[float]:
        """Giá trị quan sát của metric cho một replica (hoặc aggregate)."""
        if metric.metric_id in row.index:
            value = row[metric.metric_id]
            return None if pd.isna(value) else float(value)

        if isinstance(metric, (ResourceMetricSource, PodsMetricSource)):
            if replicas <= 0:
                return None
            per_replica = load / replicas
            if metric.target.type == TargetType.UTILIZATION:
                return per_replica / self.capacity_per_replica * 100
            return per_replica

        return load

    def simulate(
        self,
        load_data: pd.DataFrame,
        initial_replicas: int = None,
        load_column: str = 'load'
    ) -> pd.DataFrame:
        """
        Chạy simulation.

        Args:
            load_data: DataFrame index là DatetimeIndex, có cột load_column
            initial_replicas: Số replicas ban đầu (mặc định min_replicas)
            load_column: Tên cột tổng load

        Returns:
            DataFrame với simulation results:
                - load, replicas, proposed, action, degraded
                - utilization, capacity, is_overloaded, dropped_load
        """
        store = MetricSampleStore()
        scaler = HorizontalScaler(SIMULATED_TARGET, self.spec, store)
        target = ScalingTarget(
            SIMULATED_TARGET,
            min_scale=self.spec.min_replicas,
            max_scale=self.spec.max_replicas,
            current_scale=initial_replicas or max(1, self.spec.min_replicas)
        )

        results = []

        for timestamp, row in load_data.iterrows():
            now = pd.Timestamp(timestamp).timestamp()
            load = float(row[load_column]) if load_column in row.index else 0.0
            replicas = target.current_scale

            for metric in self.spec.metrics:
                value = self._observe(metric, row, load, replicas)
                if value is None:
                    continue
                if isinstance(metric, (ResourceMetricSource, PodsMetricSource)):
                    store.extend(
                        MetricSample(metric.metric_id, SIMULATED_TARGET, value, now, instance=f"replica-{i}")
                        for i in range(replicas)
                    )
                else:
                    store.add(MetricSample(metric.metric_id, SIMULATED_TARGET, value, now))

            decision = scaler.step(target, now)

            capacity = replicas * self.capacity_per_replica
            utilization = load / capacity if capacity > 0 else 1.0
            is_overloaded = load > capacity
            dropped = max(0.0, load - capacity)

            results.append({
                'timestamp': timestamp,
                'load': load,
                'replicas': replicas,
                'proposed': decision.proposed_scale,
                'applied': decision.applied_scale,
                'action': decision.action.value,
                'degraded': decision.degraded,
                'utilization': utilization,
                'capacity': capacity,
                'is_overloaded': is_overloaded,
                'dropped_load': dropped
            })

            # Orchestrator áp dụng decision ngay lập tức trong simulation
            target.current_scale = decision.applied_scale

        if not results:
            return pd.DataFrame()
        return pd.DataFrame(results).set_index('timestamp')

    def get_scaling_events(self, simulation_df: pd.DataFrame) -> pd.DataFrame:
        """
        Extract scaling events từ simulation results.

        Args:
            simulation_df: DataFrame từ simulate()

        Returns:
            DataFrame chỉ chứa các ticks có thay đổi replicas
        """
        events = simulation_df[simulation_df['action'] != 'none'].copy()
        events['replica_change'] = (events['applied'] - events['replicas']).astype(int)
        return events

    def count_flaps(self, simulation_df: pd.DataFrame) -> int:
        """Số lần đảo chiều scale (up rồi down hoặc ngược lại)."""
        actions = simulation_df.loc[simulation_df['action'] != 'none', 'action'].tolist()
        return sum(1 for prev, cur in zip(actions, actions[1:]) if prev != cur)

    def calculate_metrics(self, simulation_df: pd.DataFrame) -> Dict:
        """
        Tính các metrics từ simulation.

        Args:
            simulation_df: DataFrame từ simulate()

        Returns:
            Dict với các metrics
        """
        if len(simulation_df) > 1:
            step_hours = pd.Series(simulation_df.index).diff().dt.total_seconds().median() / 3600
        else:
            step_hours = 0.0

        replica_hours = float(simulation_df['replicas'].sum() * step_hours)
        total_cost = replica_hours * self.cost_per_replica_hour

        events = self.get_scaling_events(simulation_df)
        scale_up_count = int((events['action'] == 'scale_up').sum()) if len(events) > 0 else 0
        scale_down_count = int((events['action'] == 'scale_down').sum()) if len(events) > 0 else 0

        overloaded_count = int(simulation_df['is_overloaded'].sum())
        total_load = simulation_df['load'].sum()
        total_dropped = simulation_df['dropped_load'].sum()

        return {
            'total_hours': len(simulation_df) * step_hours,
            'total_replica_hours': replica_hours,
            'total_cost': total_cost,
            'avg_replicas': float(simulation_df['replicas'].mean()),
            'max_replicas': int(simulation_df['replicas'].max()),
            'min_replicas': int(simulation_df['replicas'].min()),
            'scale_up_count': scale_up_count,
            'scale_down_count': scale_down_count,
            'total_scaling_events': scale_up_count + scale_down_count,
            'flaps': self.count_flaps(simulation_df),
            'overloaded_periods': overloaded_count,
            'overload_rate_pct': overloaded_count / len(simulation_df) * 100,
            'drop_rate_pct': float(total_dropped / total_load * 100) if total_load > 0 else 0.0,
            'avg_utilization': float(simulation_df['utilization'].mean()),
            'max_utilization': float(simulation_df['utilization'].max()),
            'degraded_ticks': int(simulation_df['degraded'].sum())
        }

    def compare_behaviors(
        self,
        load_data: pd.DataFrame,
        behaviors: Dict[str, ScalingBehavior] = None,
        initial_replicas: int = None
    ) -> pd.DataFrame:
        """
        So sánh nhiều ScalingBehavior trên cùng load data.

        Args:
            load_data: Load data
            behaviors: Dict {name: ScalingBehavior}; mặc định so sánh
                behavior hiện tại với không-stabilization
            initial_replicas: Số replicas ban đầu

        Returns:
            DataFrame so sánh, sort theo cost
        """
        if behaviors is None:
            behaviors = {
                'Current': self.spec.behavior,
                'No Stabilization': ScalingBehavior(
                    scale_up=self.spec.behavior.scale_up,
                    scale_down=type(self.spec.behavior.scale_down)(
                        stabilization_window_seconds=0,
                        policies=list(self.spec.behavior.scale_down.policies),
                        select_policy=self.spec.behavior.scale_down.select_policy
                    )
                )
            }

        results = []

        for name, behavior in behaviors.items():
            spec = HorizontalScalerSpec(
                min_replicas=self.spec.min_replicas,
                max_replicas=self.spec.max_replicas,
                metrics=list(self.spec.metrics),
                behavior=behavior
            )
            sim = HorizontalScalingSimulator(spec, self.capacity_per_replica, self.cost_per_replica_hour)
            sim_results = sim.simulate(load_data, initial_replicas=initial_replicas)

            metrics = sim.calculate_metrics(sim_results)
            metrics['behavior'] = name
            results.append(metrics)

        df = pd.DataFrame(results)
        cols = ['behavior'] + [c for c in df.columns if c != 'behavior']
        return df[cols].sort_values('total_cost')


def generate_load(
    periods: int = 240,
    freq: str = '15s',
    base: float = 200.0,
    amplitude: float = 150.0,
    noise: float = 0.05,
    seed: int = 42
) -> pd.DataFrame:
    """
    Tạo load time series dạng sóng sin + noise để demo / test.

    Args:
        periods: Số ticks
        freq: Khoảng cách giữa các ticks
        base: Load trung bình
        amplitude: Biên độ dao động
        noise: Noise tương đối (std / load)
        seed: Random seed

    Returns:
        DataFrame với cột 'load'
    """
    rng = np.random.default_rng(seed)
    index = pd.date_range('2024-01-01', periods=periods, freq=freq)
    wave = base + amplitude * np.sin(np.linspace(0, 2 * np.pi, periods))
    load = np.clip(wave * (1 + rng.normal(0, noise, periods)), 0, None)
    return pd.DataFrame({'load': load}, index=index)


if __name__ == "__main__":
    # Demo
    spec = HorizontalScalerSpec.from_manifest({
        'minReplicas': 2,
        'maxReplicas': 10,
        'metrics': [{
            'type': 'Resource',
            'resource': {'name': 'cpu', 'target': {'type': 'Utilization', 'averageUtilization': 70}}
        }]
    })
    simulator = HorizontalScalingSimulator(spec, capacity_per_replica=100)

    print("Running simulation...")
    results = simulator.simulate(generate_load(), initial_replicas=2)

    metrics = simulator.calculate_metrics(results)
    print("\nSimulation Metrics:")
    for k, v in metrics.items():
        if isinstance(v, float):
            print(f"  {k}: {v:.2f}")
        else:
            print(f"  {k}: {v}")

    events = simulator.get_scaling_events(results)
    print(f"\nScaling Events: {len(events)}")
    if len(events) > 0:
        print(events[['action', 'replicas', 'applied', 'utilization']].head(10))
