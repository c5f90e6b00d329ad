"""
Test Cluster Module
===================
Unit tests cho resources, expanders, options và NodeGroupScalingPlanner.
"""

import pytest
import sys
import os

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from scaling_engine.units import ConfigurationError
from scaling_engine.cluster import (
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
    ClusterAutoscalerOptions,
    Expander,
    ExpansionOption,
    NodeGroupScalingPlanner,
    ScaleUpPlan,
)

GI = 2 ** 30


def template(cpu, memory_gi, labels=None, taints=None):
    return NodeTemplate(ResourceVector(cpu=cpu, memory=memory_gi * GI), labels or {}, taints or [])


def group(group_id, tmpl, target=0, min_size=0, max_size=10, ready=None, nodes=None, priority=0):
    return NodeGroup(
        group_id, min_size=min_size, max_size=max_size, target_size=target,
        template=tmpl, priority=priority, ready_size=ready, nodes=nodes or []
    )


def pending(pod_id, cpu, memory_gi=0, **kwargs):
    return PendingPodSpec(pod_id, ResourceVector(cpu=cpu, memory=memory_gi * GI), **kwargs)


def running(pod_id, cpu, memory_gi=0, **kwargs):
    return ScheduledPod(pod_id, ResourceVector(cpu=cpu, memory=memory_gi * GI), **kwargs)


def node(node_id, group_id, cpu=4, memory_gi=16, pods=None, **kwargs):
    return Node(node_id, group_id, ResourceVector(cpu=cpu, memory=memory_gi * GI), pods=pods or [], **kwargs)


# =============================================================================
# Resources
# =============================================================================

class TestResources:
    """Test cases cho resource model."""

    def test_vector_arithmetic(self):
        a = ResourceVector(cpu=2, memory=4 * GI)
        b = ResourceVector(cpu=1, memory=GI, gpu=1)

        assert (a + b).as_dict() == {'cpu': 3, 'memory': 5 * GI, 'gpu': 1}
        assert (a - ResourceVector(cpu=2, memory=4 * GI)).is_zero()
        assert a.scale(2) == ResourceVector(cpu=4, memory=8 * GI)

    def test_fits_in(self):
        capacity = ResourceVector(cpu=4, memory=8 * GI)

        assert ResourceVector(cpu=4, memory=8 * GI).fits_in(capacity)
        assert not ResourceVector(cpu=4.5).fits_in(capacity)
        assert not ResourceVector(gpu=1).fits_in(capacity)

    def test_from_manifest(self):
        vector = ResourceVector.from_manifest({'cpu': '500m', 'memory': '1Gi', 'nvidia.com/gpu': 1})
        assert vector == ResourceVector(cpu=0.5, memory=GI, gpu=1)

    def test_taints_and_tolerations(self):
        """Pod phải tolerate mọi taint NoSchedule / NoExecute."""
        taints = [Taint('gpu', 'true', 'NoSchedule'), Taint('spot', 'true', 'PreferNoSchedule')]
        plain = pending('p1', 1)
        tolerant = pending('p2', 1, tolerations=[Toleration('gpu', 'Equal', 'true')])
        wildcard = pending('p3', 1, tolerations=[Toleration(operator='Exists')])

        assert not can_schedule(plain, {}, taints)
        assert can_schedule(tolerant, {}, taints)
        assert can_schedule(wildcard, {}, taints)

    def test_node_affinity(self):
        pod = pending('p1', 1, node_affinity={'pool': ['batch', 'spot']})

        assert can_schedule(pod, {'pool': 'batch'}, [])
        assert not can_schedule(pod, {'pool': 'web'}, [])
        assert not can_schedule(pod, {}, [])

    def test_node_utilization_ignores_daemonsets(self):
        """Utilization = max(cpu, memory), không tính DaemonSet pods."""
        n = node('n1', 'g', cpu=4, memory_gi=16, pods=[
            running('app', 1, 8),
            running('ds', 2, 0, is_daemonset=True),
        ])

        assert n.utilization() == pytest.approx(0.5)
        assert n.free() == ResourceVector(cpu=1, memory=8 * GI)

    def test_gpu_node_utilization(self):
        n = Node('n1', 'g', ResourceVector(cpu=8, memory=32 * GI, gpu=4), pods=[
            ScheduledPod('train', ResourceVector(cpu=6, gpu=1))
        ])
        assert n.utilization() == pytest.approx(0.25)

    def test_node_group_validation(self):
        """Sizes không hợp lệ -> ConfigurationError."""
        tmpl = template(4, 16)
        with pytest.raises(ConfigurationError):
            group('g', tmpl, min_size=3, max_size=2, target=2)
        with pytest.raises(ConfigurationError):
            group('g', tmpl, target=11)

    def test_node_group_sizes(self):
        g = group('g', template(4, 16), target=3, ready=1, max_size=5)

        assert g.headroom == 2
        assert g.upcoming == 2

    def test_similar_templates_ignore_zone(self):
        a = template(4, 16, {'topology.kubernetes.io/zone': 'a', 'pool': 'web'})
        b = template(4, 16, {'topology.kubernetes.io/zone': 'b', 'pool': 'web'})
        c = template(8, 16, {'pool': 'web'})

        assert a.similar_to(b)
        assert not a.similar_to(c)


# =============================================================================
# Options
# =============================================================================

class TestClusterAutoscalerOptions:
    """Test cases cho ClusterAutoscalerOptions."""

    def test_defaults(self):
        options = ClusterAutoscalerOptions()

        assert options.expanders == ['least-waste']
        assert options.scale_down_unneeded_time == 600
        assert options.scale_down_utilization_threshold == 0.5

    def test_from_flags(self):
        options = ClusterAutoscalerOptions.from_flags({
            '--expander': 'least-waste,priority',
            'scale-down-unneeded-time': '5m',
            'max-node-provision-time': '15m',
            'balance-similar-node-groups': 'true',
            'max-empty-bulk-delete': '3',
            'scale-down-utilization-threshold': '0.6',
        })

        assert options.expanders == ['least-waste', 'priority']
        assert options.scale_down_unneeded_time == 300
        assert options.max_node_provision_time == 900
        assert options.balance_similar_node_groups is True
        assert options.max_empty_bulk_delete == 3
        assert options.scale_down_utilization_threshold == 0.6

    def test_invalid_flags(self):
        with pytest.raises(ConfigurationError):
            ClusterAutoscalerOptions.from_flags({'scale-down-magic': 1})
        with pytest.raises(ConfigurationError):
            ClusterAutoscalerOptions.from_flags({'expander': 'cheapest'})
        with pytest.raises(ConfigurationError):
            ClusterAutoscalerOptions.from_flags({'scale-down-enabled': 'maybe'})
        with pytest.raises(ConfigurationError):
            ClusterAutoscalerOptions(scale_down_utilization_threshold=0)


# =============================================================================
# Expander
# =============================================================================

class TestExpander:
    """Test cases cho Expander strategies."""

    @pytest.fixture
    def options(self):
        pods = [pending(f"p{i}", 2, 4) for i in range(3)]
        large = group('large', template(8, 32))
        small = group('small', template(5, 16), priority=10)
        return [
            ExpansionOption(large, 1, pods),
            ExpansionOption(small, 2, pods[:2]),
        ]

    def test_waste(self, options):
        assert options[0].waste() == pytest.approx(0.4375)

    def test_least_waste(self, options):
        assert Expander('least-waste').choose(options).node_group.group_id == 'large'

    def test_most_pods(self, options):
        assert Expander('most-pods').choose(options).node_group.group_id == 'large'

    def test_priority(self, options):
        assert Expander('priority').choose(options).node_group.group_id == 'small'

    def test_random_is_reproducible(self, options):
        first = Expander('random', seed=7).choose(options)
        second = Expander('random', seed=7).choose(options)

        assert first.node_group.group_id == second.node_group.group_id

    def test_tie_breaks_by_group_id(self):
        pods = [pending('p1', 1)]
        options = [
            ExpansionOption(group('b', template(4, 16)), 1, pods),
            ExpansionOption(group('a', template(4, 16)), 1, pods),
        ]
        assert Expander('least-waste').choose(options).node_group.group_id == 'a'

    def test_empty_options(self):
        assert Expander().choose([]) is None

    def test_unknown_expander(self):
        with pytest.raises(ConfigurationError):
            Expander('cheapest')


# =============================================================================
# Scale-up
# =============================================================================

class TestPlanScaleUp:
    """Test cases cho plan_scale_up."""

    @pytest.fixture
    def planner(self):
        return NodeGroupScalingPlanner()

    def test_least_waste_group_chosen(self, planner):
        """3 pods 2 CPU / 4Gi -> 1 node 8 CPU / 32Gi thay vì 2 nodes 5 CPU / 16Gi."""
        groups = [group('large', template(8, 32)), group('small', template(5, 16))]
        pods = [pending(f"p{i}", 2, 4) for i in (1, 2, 3)]

        plans = planner.plan_scale_up(groups, pods, now=0.0)

        assert plans == [ScaleUpPlan('large', 1, ['p1', 'p2', 'p3'])]

    def test_no_pending_pods(self, planner):
        assert planner.plan_scale_up([group('g', template(4, 16))], [], now=0.0) == []

    def test_pods_fitting_existing_nodes_skipped(self, planner):
        g = group('g', template(4, 16), target=1, nodes=[node('n1', 'g', pods=[running('a', 1)])])

        assert planner.plan_scale_up([g], [pending('p1', 2)], now=0.0) == []

    def test_upcoming_capacity_counts(self, planner):
        """Nodes đang lên được tính là capacity."""
        g = group('g', template(4, 16), target=1, ready=0)

        assert planner.plan_scale_up([g], [pending('p1', 2)], now=0.0) == []

    def test_respects_max_size(self, planner):
        """Mỗi pod cần một node, headroom chỉ còn 2."""
        g = group('g', template(4, 16), target=3, max_size=5)
        pods = [pending(f"p{i}", 3) for i in range(4)]

        plans = planner.plan_scale_up([g], pods, now=0.0)

        assert len(plans) == 1
        assert plans[0].delta_nodes == 2
        assert len(plans[0].pods) == 2

    def test_group_at_max_not_used(self, planner):
        g = group('g', template(4, 16), target=2, max_size=2)
        assert planner.plan_scale_up([g], [pending('p1', 1)], now=0.0) == []

    def test_oversized_pod_not_planned(self, planner):
        assert planner.plan_scale_up([group('g', template(4, 16))], [pending('big', 16)], now=0.0) == []

    def test_taints_respected(self, planner):
        """Pod không tolerate taint của group -> chọn group khác."""
        tainted = group('gpu', template(8, 32, taints=[Taint('gpu', 'true')]))
        plain = group('general', template(4, 16))

        plans = planner.plan_scale_up([tainted, plain], [pending('p1', 1)], now=0.0)

        assert [p.node_group_id for p in plans] == ['general']

    def test_node_affinity_respected(self, planner):
        batch = group('batch', template(4, 16, labels={'pool': 'batch'}))
        web = group('web', template(4, 16, labels={'pool': 'web'}))
        pod = pending('p1', 1, node_affinity={'pool': ['web']})

        plans = planner.plan_scale_up([batch, web], [pod], now=0.0)

        assert [p.node_group_id for p in plans] == ['web']

    def test_pods_split_across_groups(self, planner):
        """Pods không cùng chỗ được -> nhiều plans."""
        batch = group('batch', template(4, 16, labels={'pool': 'batch'}))
        web = group('web', template(4, 16, labels={'pool': 'web'}))
        pods = [
            pending('b1', 1, node_affinity={'pool': ['batch']}),
            pending('w1', 1, node_affinity={'pool': ['web']}),
        ]

        plans = planner.plan_scale_up([batch, web], pods, now=0.0)

        assert sorted((p.node_group_id, p.pods[0]) for p in plans) == [('batch', 'b1'), ('web', 'w1')]

    def test_balance_similar_groups(self):
        """balance-similar-node-groups chia đều nodes mới."""
        planner = NodeGroupScalingPlanner(ClusterAutoscalerOptions(balance_similar_node_groups=True))
        groups = [
            group('web-a', template(4, 16, labels={'topology.kubernetes.io/zone': 'a'})),
            group('web-b', template(4, 16, labels={'topology.kubernetes.io/zone': 'b'})),
        ]
        pods = [pending(f"p{i}", 4) for i in range(4)]

        plans = planner.plan_scale_up(groups, pods, now=0.0)

        assert {p.node_group_id: p.delta_nodes for p in plans} == {'web-a': 2, 'web-b': 2}

    def test_balance_respects_zone_affinity(self):
        """Pods gắn zone-a -> không chia nodes sang group zone-b."""
        planner = NodeGroupScalingPlanner(ClusterAutoscalerOptions(balance_similar_node_groups=True))
        groups = [
            group('a', template(4, 16, labels={'topology.kubernetes.io/zone': 'zone-a'})),
            group('b', template(4, 16, labels={'topology.kubernetes.io/zone': 'zone-b'})),
        ]
        pods = [
            pending(f"p{i}", 4, node_affinity={'topology.kubernetes.io/zone': ['zone-a']})
            for i in range(2)
        ]

        plans = planner.plan_scale_up(groups, pods, now=0.0)

        assert plans == [ScaleUpPlan('a', 2, ['p0', 'p1'])]

    def test_balance_skips_tainted_group(self):
        """Group có taint mà pods không tolerate thì không được chia nodes."""
        planner = NodeGroupScalingPlanner(ClusterAutoscalerOptions(balance_similar_node_groups=True))
        groups = [
            group('web-a', template(4, 16, labels={'topology.kubernetes.io/zone': 'a'})),
            group('web-b', template(4, 16, labels={'topology.kubernetes.io/zone': 'b'},
                                    taints=[Taint('dedicated', 'batch')])),
        ]
        pods = [pending(f"p{i}", 4) for i in range(2)]

        plans = planner.plan_scale_up(groups, pods, now=0.0)

        assert plans == [ScaleUpPlan('web-a', 2, ['p0', 'p1'])]

    def test_repeated_planning_before_apply(self, planner):
        """Plan chưa được áp dụng -> tick sau không plan lại cùng headroom."""
        g = group('g', template(4, 16), max_size=2)
        pods = [pending(f"p{i}", 3) for i in range(2)]

        first = planner.plan_scale_up([g], pods, now=0.0)
        second = planner.plan_scale_up([g], pods, now=10.0)

        assert first == [ScaleUpPlan('g', 2, ['p0', 'p1'])]
        assert second == []
        assert g.target_size + sum(p.delta_nodes for p in first + second) <= g.max_size
        assert planner.effective_size(g) == 2

    def test_new_pods_use_remaining_headroom(self, planner):
        """Nodes đã plan được tính là capacity; pod mới chỉ dùng headroom còn lại."""
        g = group('g', template(4, 16), max_size=3)

        planner.plan_scale_up([g], [pending('p0', 3), pending('p1', 3)], now=0.0)
        plans = planner.plan_scale_up([g], [pending('p0', 3), pending('p1', 3), pending('p2', 3)], now=10.0)

        assert plans == [ScaleUpPlan('g', 1, ['p2'])]
        assert planner.effective_size(g) == 3
        assert planner.plan_scale_up([g], [pending('p3', 3)], now=20.0) == []

    def test_provision_timeout_backs_off_group(self, planner):
        """Nodes không ready sau max_node_provision_time -> backoff, pods sang group khác."""
        pods = [pending('p1', 2)]
        first = planner.plan_scale_up([group('a', template(4, 16)), group('b', template(4, 16))], pods, now=0.0)
        assert [p.node_group_id for p in first] == ['a']

        stuck = [group('a', template(4, 16), target=1, ready=0), group('b', template(4, 16))]

        assert planner.plan_scale_up(stuck, pods, now=500.0) == []

        retry = planner.plan_scale_up(stuck, pods, now=1000.0)
        assert [p.node_group_id for p in retry] == ['b']
        assert planner.in_backoff('a', 1000.0)
        assert planner.backoff_groups(1000.0) == {'a': 1300.0}

    def test_backoff_doubles(self, planner):
        pods = [pending('p1', 2)]
        fresh = [group('a', template(4, 16))]
        stuck = [group('a', template(4, 16), target=1, ready=0)]

        planner.plan_scale_up(fresh, pods, now=0.0)
        planner.plan_scale_up(stuck, pods, now=1000.0)
        planner.plan_scale_up(fresh, pods, now=1300.0)
        planner.plan_scale_up(stuck, pods, now=2300.0)

        assert planner.backoff_groups(2300.0) == {'a': 2900.0}


# =============================================================================
# Scale-down
# =============================================================================

class TestPlanScaleDown:
    """Test cases cho plan_scale_down."""

    @pytest.fixture
    def groups(self):
        nodes = [
            node('n1', 'pool', pods=[running('small', 0.5, 1)]),
            node('n2', 'pool', pods=[running('busy', 2, 4)]),
            node('n3', 'pool', pods=[running('ds', 0.1, 0, is_daemonset=True)]),
        ]
        return [group('pool', template(4, 16), target=3, nodes=nodes)]

    def test_unneeded_nodes_removed_after_unneeded_time(self, groups):
        """Empty node trước, sau đó node có pods đặt lại được."""
        planner = NodeGroupScalingPlanner()

        assert planner.plan_scale_down(groups, now=0.0) == []
        assert set(planner.unneeded_nodes()) == {'n1', 'n3'}

        plans = planner.plan_scale_down(groups, now=600.0)

        assert [p.node_id for p in plans] == ['n3', 'n1']
        assert plans[0].reason == "empty node"

    def test_min_size_respected(self):
        planner = NodeGroupScalingPlanner(ClusterAutoscalerOptions(scale_down_unneeded_time=0))
        groups = [group('pool', template(4, 16), target=1, min_size=1, nodes=[node('n1', 'pool')])]

        assert planner.plan_scale_down(groups, now=0.0) == []

    def test_cooldown_after_scale_up(self):
        planner = NodeGroupScalingPlanner(ClusterAutoscalerOptions(scale_down_unneeded_time=0))
        planner.plan_scale_up([group('pool', template(4, 16))], [pending('p1', 1)], now=0.0)
        groups = [group('pool', template(4, 16), target=2, nodes=[node('n1', 'pool'), node('n2', 'pool')])]

        assert planner.plan_scale_down(groups, now=100.0) == []
        assert len(planner.plan_scale_down(groups, now=700.0)) == 2

    def test_unneeded_timer_resets(self, groups):
        """Node dùng lại nhiều resource -> timer bắt đầu lại."""
        planner = NodeGroupScalingPlanner()
        planner.plan_scale_down(groups, now=0.0)

        groups[0].nodes[0].pods.append(running('burst', 2, 1))
        planner.plan_scale_down(groups, now=300.0)
        groups[0].nodes[0].pods.pop()

        plans = planner.plan_scale_down(groups, now=600.0)
        assert [p.node_id for p in plans] == ['n3']

    @pytest.mark.parametrize("blocking_pod", [
        running('orphan', 0.5, controlled=False),
        running('cache', 0.5, has_local_storage=True),
    ])
    def test_unmovable_pods_block(self, blocking_pod):
        planner = NodeGroupScalingPlanner(ClusterAutoscalerOptions(scale_down_unneeded_time=0))
        nodes = [node('n1', 'pool', pods=[blocking_pod]), node('n2', 'pool', pods=[running('busy', 3)])]
        groups = [group('pool', template(4, 16), target=2, nodes=nodes)]

        assert planner.plan_scale_down(groups, now=0.0) == []

    def test_disruption_budget(self):
        planner = NodeGroupScalingPlanner(ClusterAutoscalerOptions(scale_down_unneeded_time=0))
        nodes = [
            node('n1', 'pool', pods=[running('web-1', 0.5, labels={'app': 'web'})]),
            node('n2', 'pool', pods=[running('busy', 3)]),
        ]
        groups = [group('pool', template(4, 16), target=2, nodes=nodes)]

        blocked = planner.plan_scale_down(groups, now=0.0, budgets=[DisruptionBudget('web', {'app': 'web'}, 0)])
        allowed = planner.plan_scale_down(groups, now=0.0, budgets=[DisruptionBudget('web', {'app': 'web'}, 1)])

        assert blocked == []
        assert [p.node_id for p in allowed] == ['n1']

    def test_pods_that_cannot_move_keep_node(self):
        planner = NodeGroupScalingPlanner(ClusterAutoscalerOptions(scale_down_unneeded_time=0))
        nodes = [node('n1', 'pool', pods=[running('a', 1.5)]), node('n2', 'pool', pods=[running('busy', 3)])]
        groups = [group('pool', template(4, 16), target=2, nodes=nodes)]

        assert planner.plan_scale_down(groups, now=0.0) == []

    def test_one_non_empty_node_per_tick(self):
        planner = NodeGroupScalingPlanner(ClusterAutoscalerOptions(scale_down_unneeded_time=0))
        nodes = [
            node('n1', 'pool', pods=[running('a', 0.5)]),
            node('n2', 'pool', pods=[running('b', 0.5)]),
            node('n3', 'pool', cpu=16, memory_gi=64, pods=[running('busy', 9)]),
        ]
        groups = [group('pool', template(4, 16), target=3, nodes=nodes)]

        plans = planner.plan_scale_down(groups, now=0.0)

        assert [p.node_id for p in plans] == ['n1']

    def test_max_empty_bulk_delete(self):
        planner = NodeGroupScalingPlanner(ClusterAutoscalerOptions(
            scale_down_unneeded_time=0, max_empty_bulk_delete=2
        ))
        nodes = [node(f"n{i}", 'pool') for i in range(4)]
        groups = [group('pool', template(4, 16), target=4, nodes=nodes)]

        assert len(planner.plan_scale_down(groups, now=0.0)) == 2

    def test_scale_down_disabled(self, groups):
        planner = NodeGroupScalingPlanner(ClusterAutoscalerOptions(scale_down_enabled=False))

        assert planner.plan_scale_down(groups, now=0.0) == []
        assert planner.plan_scale_down(groups, now=10000.0) == []
