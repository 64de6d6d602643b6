"""Tests for app factory and role-based routing."""

from unittest.mock import MagicMock, patch

from fastapi.testclient import TestClient

from jarvis.api.factory import create_app


class TestPublicRole:
    """Tests for APP_ROLE=public."""

    def test_health_available(self):
        client = TestClient(create_app(role="public"))
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json() == {"status": "ok"}

    def test_correlation_id_echoed(self):
        client = TestClient(create_app(role="public"))
        response = client.get("/health", headers={"X-Correlation-ID": "cid-123"})
        assert response.headers["X-Correlation-ID"] == "cid-123"

    def test_correlation_id_generated(self):
        client = TestClient(create_app(role="public"))
        assert client.get("/health").headers["X-Correlation-ID"]

    def test_ready_without_database(self, monkeypatch):
        monkeypatch.delenv("DATABASE_URL", raising=False)
        client = TestClient(create_app(role="public"))
        response = client.get("/ready")
        assert response.status_code == 200
        assert response.json()["database"] == "not_configured"

    def test_ready_database_down(self, monkeypatch):
        monkeypatch.setenv("DATABASE_URL", "postgres://u:p@h/jarvis")
        with patch("jarvis.api.routers.public._database_ready", return_value=False):
            response = TestClient(create_app(role="public")).get("/ready")
        assert response.status_code == 503

    def test_tasks_not_mounted(self):
        client = TestClient(create_app(role="public"))
        assert client.get("/tasks/health").status_code == 404
        assert client.post("/tasks/escalation/sweep").status_code == 404

    def test_webhook_mounted(self):
        client = TestClient(create_app(role="public"))
        response = client.post("/webhooks/whatsapp/evolution", json={})
        assert response.status_code != 404


class TestWorkerRole:
    """Tests for APP_ROLE=worker."""

    def test_tasks_mounted(self):
        client = TestClient(create_app(role="worker"))
        response = client.get("/tasks/health")
        assert response.status_code == 200
        assert response.json()["subsystem"] == "tasks"

    def test_metrics_requires_secret(self, monkeypatch):
        monkeypatch.setenv("INTERNAL_TASK_SECRET", "s3cret")
        client = TestClient(create_app(role="worker"))

        assert client.get("/internal/metrics").status_code == 401
        response = client.get("/internal/metrics", headers={"X-Internal-Task-Secret": "s3cret"})
        assert response.status_code == 200
        assert set(response.json()) == {"counters", "gauges", "derived"}


class TestEnvRole:
    def test_defaults_to_public(self, monkeypatch):
        monkeypatch.delenv("APP_ROLE", raising=False)
        client = TestClient(create_app())
        assert client.get("/tasks/health").status_code == 404

    def test_reads_app_role(self, monkeypatch):
        monkeypatch.setenv("APP_ROLE", "worker")
        client = TestClient(create_app())
        assert client.get("/tasks/health").status_code == 200


class TestPeriodicSweep:
    def test_worker_starts_runner_when_enabled(self, monkeypatch):
        monkeypatch.setenv("ESCALATION_SCHEDULER_ENABLED", "true")
        runner = MagicMock()
        with patch("jarvis.api.factory.PeriodicRunner", return_value=runner) as factory:
            with TestClient(create_app(role="worker")):
                runner.start.assert_called_once()
        runner.stop.assert_called_once()
        assert factory.call_args.kwargs["name"] == "escalation-sweep"

    def test_public_never_starts_runner(self, monkeypatch):
        monkeypatch.setenv("ESCALATION_SCHEDULER_ENABLED", "true")
        with patch("jarvis.api.factory.PeriodicRunner") as factory:
            with TestClient(create_app(role="public")):
                pass
        factory.assert_not_called()
