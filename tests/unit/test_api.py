"""Tests für die REST- und WebSocket-API."""

import pytest
from fastapi.testclient import TestClient

from hecate import __version__
from hecate.api.app import create_app
from hecate.optimization.pipeline import OptimizationContext
from hecate.persistence.store import MemoryStore
from hecate.telemetry.aggregator import TelemetryAggregator


class StaticSampler:
    def sample(self):
        return {
            "cpu": {"percent": 12.5},
            "memory": {"percent": 30.0},
            "disks": [],
            "network": {},
            "processes": {"count": 0},
        }


@pytest.fixture
def aggregator(manager, test_config):
    return TelemetryAggregator(manager, sampler=StaticSampler(), config=test_config)


@pytest.fixture
def client(manager, aggregator, workstation_inventory):
    """TestClient ohne Hintergrund-Threads."""
    app = create_app(
        manager,
        aggregator,
        OptimizationContext(store=MemoryStore()),
        workstation_inventory,
        start_background=False,
    )
    with TestClient(app) as test_client:
        yield test_client


class TestHealth:
    """Tests für den Health-Endpunkt."""

    def test_health(self, client):
        """Testet Health Check."""
        response = client.get("/health")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["version"] == __version__
        assert data["gpus"] == 2
        assert data["monitoring"] is False


class TestSystemProfile:
    """Tests für die Profil-Abfrage."""

    def test_profile(self, client):
        """Testet Profil und Plan für das feste Inventar."""
        response = client.get("/api/v1/system/profile")

        assert response.status_code == 200
        data = response.json()
        assert data["profile"] == "ProWorkstation"
        assert data["inventory"]["ram_gb"] == 128
        assert data["plan"]
        assert data["result"] is None


class TestGpuEndpoints:
    """Tests für die GPU-Endpunkte."""

    def test_list_gpus(self, client, manager):
        """Testet GPU-Liste mit Status."""
        manager.poll_once()

        response = client.get("/api/v1/gpus")

        assert response.status_code == 200
        data = response.json()
        assert [g["index"] for g in data["gpus"]] == [0, 1]
        assert data["gpus"][0]["uid"] == "GPU-fake-0"
        assert data["gpus"][0]["status"]["temperature"] == 50.0
        assert data["load_balancing"] is False

    def test_get_gpu(self, client):
        """Testet Detailabfrage vor dem ersten Sample."""
        response = client.get("/api/v1/gpus/1")

        assert response.status_code == 200
        data = response.json()
        assert data["device"]["index"] == 1
        assert data["status"]["stale"] is True
        assert data["config"] is None
        assert data["healthy"] is False
        assert data["alerts"] == []
        assert data["efficiency"] is None

    def test_get_gpu_after_poll(self, client, manager):
        """Testet Effizienz-Score nach dem ersten Sample."""
        manager.poll_once()

        data = client.get("/api/v1/gpus/0").json()

        assert data["healthy"] is True
        assert data["efficiency"] == pytest.approx(0.372, abs=1e-3)

    def test_unknown_gpu(self, client):
        """Testet unbekannten Index."""
        response = client.get("/api/v1/gpus/99")

        assert response.status_code == 404
        assert response.json()["error"] == "NOT_FOUND"

    def test_configure(self, client, fake_backend):
        """Testet gültige Konfiguration."""
        response = client.post(
            "/api/v1/gpus/0/config",
            json={"power_mode": "balanced", "power_limit": 300, "temp_target": 80},
        )

        assert response.status_code == 200
        config = response.json()["config"]
        assert config["power_limit"] == 300
        assert config["temp_target"] == 80
        assert fake_backend.applied[0][0] == "GPU-fake-0"

    def test_configure_out_of_range(self, client, fake_backend):
        """Testet Power Limit außerhalb der Gerätegrenzen."""
        response = client.post("/api/v1/gpus/0/config", json={"power_limit": 600})

        assert response.status_code == 422
        data = response.json()
        assert data["error"] == "OUT_OF_RANGE"
        assert fake_backend.applied == []

    def test_configure_unknown_fields_ignored(self, client):
        """Testet: unbekannte Felder werden ignoriert."""
        response = client.post(
            "/api/v1/gpus/0/config",
            json={"power_mode": "max_performance", "overclock_everything": True},
        )

        assert response.status_code == 200
        assert response.json()["config"]["power_limit"] == 450

    def test_assign_disabled(self, client):
        """Testet Zuweisung bei deaktiviertem Load Balancing."""
        response = client.post("/api/v1/gpus/assign", json={"workload_type": "training"})

        assert response.status_code == 503
        assert response.json()["error"] == "LOAD_BALANCER_UNAVAILABLE"

    def test_assign(self, client, manager, fake_backend):
        """Testet Zuweisung an die weniger ausgelastete GPU."""
        fake_backend.set_status("GPU-fake-0", utilization=80.0)
        fake_backend.set_status("GPU-fake-1", utilization=20.0)
        manager.poll_once()
        manager.enable_load_balancing("least_utilized")

        response = client.post("/api/v1/gpus/assign", json={"workload_type": "inference"})

        assert response.status_code == 200
        data = response.json()
        assert data["gpu_index"] == 1
        assert data["workload_type"] == "inference"
        assert data["confidence"] == pytest.approx(0.6)

    def test_assign_unknown_strategy(self, client, manager):
        """Testet unbekannte Strategie."""
        manager.enable_load_balancing()

        response = client.post(
            "/api/v1/gpus/assign", json={"workload_type": "x", "strategy": "random"}
        )

        assert response.status_code == 422

    def test_prediction(self, client):
        """Testet Vorhersage ohne Historie."""
        response = client.get("/api/v1/gpus/0/prediction", params={"workload_type": "training"})

        assert response.status_code == 200
        data = response.json()
        assert data["workload_type"] == "training"
        assert data["source"] == "heuristic"
        assert data["confidence"] == 0.1


class TestTelemetryEndpoints:
    """Tests für Historie und Streams."""

    def test_history(self, client, aggregator):
        """Testet Historie mit Limit."""
        for _ in range(3):
            aggregator.collect_once()

        response = client.get("/api/v1/telemetry/history", params={"limit": 2})

        assert response.status_code == 200
        data = response.json()
        assert data["capacity"] == 5
        assert [s["sequence"] for s in data["snapshots"]] == [2, 3]

    def test_history_negative_limit(self, client):
        """Testet ungültiges Limit."""
        response = client.get("/api/v1/telemetry/history", params={"limit": -1})

        assert response.status_code == 422

    def test_snapshot_stream(self, client, aggregator):
        """Testet einen Snapshot pro WebSocket-Nachricht."""
        with client.websocket_connect("/ws") as websocket:
            aggregator.collect_once()
            message = websocket.receive_json()

        assert message["type"] == "metrics_snapshot"
        assert message["version"] == 1
        assert message["sequence"] == 1
        assert message["cpu"] == {"percent": 12.5}
        assert len(message["gpu"]) == 2

    def test_event_stream(self, client, manager):
        """Testet Events über den WebSocket."""
        with client.websocket_connect("/ws/events") as websocket:
            manager.enable_load_balancing()
            message = websocket.receive_json()

        assert message["type"] == "LOAD_BALANCING_ENABLED"
        assert message["source"] == "gpu-manager"
