"""
Test Simulator Module
=====================
Unit tests cho HorizontalScalingSimulator.
"""

import pytest
import pandas as pd
import numpy as np
import sys
import os

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from scaling_engine.horizontal import (
    HorizontalScalerSpec,
    ScalingBehavior,
    ScalingRules,
    HorizontalScalingSimulator,
)
from scaling_engine.horizontal.simulator import generate_load


def cpu_spec(min_replicas=1, max_replicas=10, utilization=70):
    return HorizontalScalerSpec.from_manifest({
        'minReplicas': min_replicas,
        'maxReplicas': max_replicas,
        'metrics': [{'type': 'Resource', 'resource': {
            'name': 'cpu', 'target': {'type': 'Utilization', 'averageUtilization': utilization}}}]
    })


def constant_load(value, periods=20):
    index = pd.date_range('2024-01-01', periods=periods, freq='15s')
    return pd.DataFrame({'load': np.full(periods, float(value))}, index=index)


class TestHorizontalScalingSimulator:
    """Test cases cho HorizontalScalingSimulator."""

    @pytest.fixture
    def simulator(self):
        return HorizontalScalingSimulator(cpu_spec(), capacity_per_replica=100)

    def test_simulate_output_columns(self, simulator):
        """Test simulation trả về đúng columns."""
        results = simulator.simulate(constant_load(100), initial_replicas=2)

        expected = {'load', 'replicas', 'proposed', 'applied', 'action', 'degraded',
                    'utilization', 'capacity', 'is_overloaded', 'dropped_load'}
        assert expected.issubset(results.columns)
        assert len(results) == 20

    def test_constant_load_converges(self, simulator):
        """Load 500 với capacity 100/replica và target 70% -> 8 replicas, không flap."""
        results = simulator.simulate(constant_load(500), initial_replicas=2)

        assert results['applied'].iloc[-1] == 8
        assert simulator.count_flaps(results) == 0
        assert not results['is_overloaded'].iloc[-1]

    def test_replicas_stay_in_bounds(self):
        """Replicas luôn nằm trong [min, max]."""
        simulator = HorizontalScalingSimulator(cpu_spec(min_replicas=2, max_replicas=5))
        results = simulator.simulate(generate_load(periods=120), initial_replicas=2)

        assert results['applied'].between(2, 5).all()
        assert results['replicas'].between(2, 5).all()

    def test_metric_column_overrides_load(self, simulator):
        """Cột trùng metric_id được dùng làm giá trị quan sát."""
        df = constant_load(100, periods=5)
        df['resource/cpu'] = 140.0

        results = simulator.simulate(df, initial_replicas=2)

        assert results['applied'].iloc[0] == 4

    def test_scaling_events(self, simulator):
        """Test extract scaling events."""
        results = simulator.simulate(constant_load(500), initial_replicas=2)
        events = simulator.get_scaling_events(results)

        assert len(events) > 0
        assert (events['action'] == 'scale_up').all()
        assert (events['replica_change'] > 0).all()

    def test_calculate_metrics(self, simulator):
        """Test tính metrics."""
        results = simulator.simulate(constant_load(100), initial_replicas=2)
        metrics = simulator.calculate_metrics(results)

        assert 'total_cost' in metrics
        assert 'avg_replicas' in metrics
        assert 'drop_rate_pct' in metrics
        assert metrics['total_cost'] > 0
        assert metrics['overloaded_periods'] == 0
        assert metrics['degraded_ticks'] == 0

    def test_compare_behaviors(self, simulator):
        """Test so sánh behaviors."""
        load = generate_load(periods=80)
        comparison = simulator.compare_behaviors(load, initial_replicas=2)

        assert list(comparison['behavior'].sort_values()) == ['Current', 'No Stabilization']
        assert comparison.columns[0] == 'behavior'

    def test_compare_custom_behaviors(self, simulator):
        behaviors = {
            'Fast down': ScalingBehavior(scale_down=ScalingRules(stabilization_window_seconds=0)),
            'Default': ScalingBehavior(),
        }
        comparison = simulator.compare_behaviors(generate_load(periods=80), behaviors)

        assert len(comparison) == 2

    def test_invalid_capacity(self):
        with pytest.raises(ValueError):
            HorizontalScalingSimulator(cpu_spec(), capacity_per_replica=0)
