"""
Test API Module
===============
Tests cho FastAPI endpoints (in-memory engine).
"""

import pytest
import sys
import os

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from fastapi.testclient import TestClient

from api.main import app, reset_state

HPA = {
    'minReplicas': 1,
    'maxReplicas': 10,
    'metrics': [{'type': 'Resource', 'resource': {
        'name': 'cpu', 'target': {'type': 'Utilization', 'averageUtilization': 70}}}],
    'behavior': {'scaleUp': {'policies': [{'type': 'Percent', 'value': 50, 'periodSeconds': 60}]}}
}


@pytest.fixture
def client():
    reset_state()
    with TestClient(app) as c:
        yield c
    reset_state()


class TestHealthEndpoint:
    """Test cases cho /health."""

    def test_health(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        data = response.json()
        assert data['status'] == 'healthy'
        assert data['targets'] == 0


class TestTargetEndpoints:
    """Test cases cho horizontal target endpoints."""

    def test_attach_push_decide(self, client):
        """Attach -> push samples -> decide -> replicas được áp dụng."""
        response = client.post("/targets/web", json={'manifest': HPA, 'current_replicas': 3})
        assert response.status_code == 200
        assert response.json()['metrics'] == ['resource/cpu']

        samples = [
            {'metric_id': 'resource/cpu', 'value': 90, 'timestamp': 1000.0, 'instance': f"web-{i}"}
            for i in range(3)
        ]
        assert client.post("/targets/web/samples", json={'samples': samples}).json() == {'accepted': 3}

        decision = client.post("/targets/web/decide", params={'now': 1000.0}).json()
        assert decision['applied_scale'] == 4
        assert decision['action'] == 'scale_up'

        history = client.get("/targets/web/history").json()
        assert history['total_ticks'] == 1
        assert history['decisions'][0]['current_scale'] == 3

    def test_decide_without_samples_is_degraded(self, client):
        client.post("/targets/web", json={'manifest': HPA, 'current_replicas': 2})

        decision = client.post("/targets/web/decide", params={'now': 1000.0}).json()

        assert decision['degraded'] is True
        assert decision['applied_scale'] == 2

    def test_invalid_manifest(self, client):
        response = client.post("/targets/web", json={'manifest': {'minReplicas': 5, 'maxReplicas': 2}})

        assert response.status_code == 422
        assert client.get("/targets").json() == []

    def test_update_and_detach(self, client):
        client.post("/targets/web", json={'manifest': HPA})

        updated = client.put("/targets/web", json={'manifest': {**HPA, 'maxReplicas': 4}})
        assert updated.json()['max_replicas'] == 4

        assert client.delete("/targets/web").status_code == 200
        assert client.post("/targets/web/decide").status_code == 404

    def test_unknown_target(self, client):
        assert client.put("/targets/nope", json={'manifest': HPA}).status_code == 404
        assert client.delete("/targets/nope").status_code == 404
        assert client.get("/targets/nope/history").status_code == 404
        assert client.post("/targets/nope/samples", json={'samples': []}).status_code == 404


class TestWorkloadEndpoints:
    """Test cases cho vertical workload endpoints."""

    def test_recommendation(self, client):
        manifest = {'resourcePolicy': {'containerPolicies': [
            {'containerName': 'app', 'minAllowed': {'cpu': '100m'}, 'maxAllowed': {'cpu': '1'}}
        ]}}
        assert client.post("/workloads/web", json={'manifest': manifest}).status_code == 200

        usage = [{'container': 'app', 'resource': 'cpu', 'value': '1200m', 'timestamp': float(i)} for i in range(10)]
        assert client.post("/workloads/web/usage", json={'samples': usage}).json() == {'accepted': 10}

        rec = client.get("/recommendations/web/app").json()
        assert rec['target']['cpu'] == '1000m'
        assert rec['container_id'] == 'web/app'

    def test_unknown_container(self, client):
        client.post("/workloads/web", json={})

        assert client.get("/recommendations/web/app").status_code == 404
        assert client.get("/recommendations/other/app").status_code == 404

    def test_invalid_usage(self, client):
        client.post("/workloads/web", json={})
        usage = [{'container': 'app', 'resource': 'gpu', 'value': 1}]

        assert client.post("/workloads/web/usage", json={'samples': usage}).status_code == 422
        assert client.post("/workloads/nope/usage", json={'samples': [
            {'container': 'app', 'resource': 'cpu', 'value': 1}
        ]}).status_code == 404

    def test_invalid_workload_manifest(self, client):
        response = client.post("/workloads/web", json={'manifest': {'updatePolicy': {'updateMode': 'Never'}}})
        assert response.status_code == 422


class TestClusterEndpoints:
    """Test cases cho node-group endpoints."""

    def test_scale_up_plan(self, client):
        """Least-waste chọn node 8 CPU / 32Gi cho 3 pods 2 CPU / 4Gi."""
        client.post("/node-groups", json={
            'group_id': 'large', 'min_size': 0, 'max_size': 5, 'target_size': 0,
            'capacity': {'cpu': '8', 'memory': '32Gi'}
        })
        client.post("/node-groups", json={
            'group_id': 'small', 'min_size': 0, 'max_size': 5, 'target_size': 0,
            'capacity': {'cpu': '5', 'memory': '16Gi'}
        })
        for i in (1, 2, 3):
            client.post("/pending-pods", json={'pod_id': f"p{i}", 'requests': {'cpu': '2', 'memory': '4Gi'}})

        response = client.post("/cluster/scale-up", params={'now': 0, 'apply': True}).json()

        assert response['plans'] == [{'node_group_id': 'large', 'delta_nodes': 1, 'pods': ['p1', 'p2', 'p3']}]
        assert response['applied'] is True

    def test_scale_down_plan(self, client):
        client.post("/node-groups", json={
            'group_id': 'pool', 'min_size': 0, 'max_size': 5, 'target_size': 2,
            'capacity': {'cpu': '4', 'memory': '16Gi'},
            'nodes': [
                {'node_id': 'n1'},
                {'node_id': 'n2', 'pods': [{'pod_id': 'busy', 'requests': {'cpu': '3'}}]},
            ]
        })

        assert client.post("/cluster/scale-down", params={'now': 0}).json()['plans'] == []

        response = client.post("/cluster/scale-down", params={'now': 600, 'apply': True}).json()
        assert [p['node_id'] for p in response['plans']] == ['n1']
        assert client.get("/health").json()['node_groups'] == 1

    def test_invalid_node_group(self, client):
        response = client.post("/node-groups", json={
            'group_id': 'bad', 'min_size': 3, 'max_size': 1, 'target_size': 1,
            'capacity': {'cpu': '4'}
        })
        assert response.status_code == 422


class TestSimulationEndpoint:
    """Test cases cho /simulate."""

    def test_simulate(self, client):
        response = client.post("/simulate", json={
            'manifest': HPA,
            'load': [500.0] * 20,
            'initial_replicas': 2
        })

        assert response.status_code == 200
        data = response.json()
        assert len(data['timeline']) == 20
        assert data['timeline'][-1] == 8
        assert data['total_cost'] > 0

    def test_simulate_invalid(self, client):
        response = client.post("/simulate", json={'manifest': {'maxReplicas': 0}, 'load': [1.0]})
        assert response.status_code == 422
