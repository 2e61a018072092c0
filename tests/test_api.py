"""
API endpoint tests.
"""
from urllib.parse import urlparse

from app.core.errors import LaunchError
from conftest import FakeBackend


class TestHealthEndpoint:
    """Tests for service endpoints."""

    def test_health_returns_ok(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "ok"

    def test_response_has_request_id(self, client):
        response = client.get("/health")
        assert response.headers.get("X-Request-Id")

    def test_meta_reports_websocket_path(self, client):
        response = client.get("/meta")
        assert response.status_code == 200
        assert response.json()["websocket_path"] == "/ws"


class TestMetricsEndpoint:
    """Tests for metrics endpoint."""

    def test_metrics_returns_prometheus_format(self, client):
        response = client.get("/metrics")
        assert response.status_code == 200
        assert "text/plain" in response.headers["content-type"]
        content = response.text
        assert "deploy_requests_total" in content
        assert "deploy_projects_queued_total" in content
        assert "deploy_gateway_messages_dropped_total" in content


class TestSubmitProject:
    """Tests for POST /project."""

    def test_submit_with_slug(self, client, fake_backend):
        response = client.post(
            "/project",
            json={"sourceUrl": "https://example.com/r.git", "slug": "demo"},
        )

        assert response.status_code == 200
        assert response.json() == {
            "status": "queued",
            "data": {"projectSlug": "demo", "url": "http://demo.example.test/"},
        }
        job, env = fake_backend.launches[0]
        assert job.slug == "demo"
        assert env["GIT_REPOSITORY__URL"] == "https://example.com/r.git"
        assert env["PROJECT_ID"] == "demo"

    def test_submit_generates_slug(self, client):
        response = client.post("/project", json={"sourceUrl": "https://example.com/r.git"})

        assert response.status_code == 200
        data = response.json()["data"]
        assert data["projectSlug"]
        assert urlparse(data["url"]).hostname.split(".")[0] == data["projectSlug"]

    def test_submit_accepts_git_url_alias(self, client, fake_backend):
        response = client.post("/project", json={"gitURL": "https://example.com/r.git", "slug": "alias"})

        assert response.status_code == 200
        assert fake_backend.launches[0][0].source_url == "https://example.com/r.git"

    def test_missing_source_url_returns_400(self, client, fake_backend):
        response = client.post("/project", json={"slug": "demo"})

        assert response.status_code == 400
        assert response.json() == {"error": "sourceUrl is required"}
        assert fake_backend.launches == []

    def test_empty_body_returns_400(self, client):
        response = client.post("/project", json={})
        assert response.status_code == 400
        assert "error" in response.json()

    def test_malformed_body_returns_400(self, client):
        response = client.post(
            "/project",
            content="not json",
            headers={"Content-Type": "application/json"},
        )
        assert response.status_code == 400
        assert "error" in response.json()

    def test_unknown_backend_hint_returns_400(self, client, fake_backend):
        response = client.post(
            "/project",
            json={"sourceUrl": "https://example.com/r.git", "backendHint": "lambda"},
        )
        assert response.status_code == 400
        assert "error" in response.json()
        assert fake_backend.launches == []

    def test_launch_failure_returns_500(self, client, dispatcher, deploy_config):
        from app.core.backends import BackendKind

        dispatcher._backends[BackendKind.DOCKER] = FakeBackend(
            deploy_config, error=LaunchError("daemon unreachable")
        )

        response = client.post("/project", json={"sourceUrl": "https://example.com/r.git"})

        assert response.status_code == 500
        assert "daemon unreachable" in response.json()["error"]

    def test_misconfigured_backend_returns_500(self, client):
        # ECS is not configured in the test config
        response = client.post(
            "/project",
            json={"sourceUrl": "https://example.com/r.git", "backendHint": "ecs"},
        )

        assert response.status_code == 500
        assert "ECS backend is not configured" in response.json()["error"]
