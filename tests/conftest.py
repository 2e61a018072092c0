"""
Pytest configuration and fixtures.
"""
import os
import sys

# Set test environment before importing app
os.environ["PUBLIC_HOST"] = "example.test"
os.environ["DEFAULT_BACKEND"] = "docker"
os.environ["REDIS_URL"] = "redis://localhost:6379/15"
os.environ["ARTIFACT_BASE_URL"] = "https://artifacts.example.test/__outputs"

import httpx
import pytest
from fastapi.testclient import TestClient

# Add parent directory to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from main import app
from app.core.backends import BackendKind, BuildBackend
from app.core.config import DeployConfig
from app.core.dispatcher import JobDispatcher
from app.core.errors import LaunchError
from app.core.gateway import LogGateway


class FakeBackend(BuildBackend):
    """Records launches instead of starting workers."""

    kind = BackendKind.DOCKER

    def __init__(self, config: DeployConfig, error: Exception | None = None):
        super().__init__(config)
        self.error = error
        self.launches = []

    def check_config(self) -> None:
        pass

    async def launch(self, job, env):
        if self.error is not None:
            raise self.error
        self.launches.append((job, env))
        return f"fake-{job.slug}"


class FakeWebSocket:
    """Collects frames sent by a viewer session."""

    def __init__(self):
        self.sent = []

    async def send_text(self, payload: str) -> None:
        self.sent.append(payload)


class StreamBody(httpx.AsyncByteStream):
    """Unread response body, as a real transport hands it to the client."""

    def __init__(self, body: bytes, chunk_size: int = 4):
        self.body = body
        self.chunk_size = chunk_size

    async def __aiter__(self):
        for i in range(0, len(self.body), self.chunk_size):
            yield self.body[i:i + self.chunk_size]


@pytest.fixture
def deploy_config():
    """Deploy configuration used by dispatcher tests."""
    return DeployConfig(
        public_host="example.test",
        redis_url="redis://broker:6379",
        artifact_bucket="artifacts",
        aws_region="eu-north-1",
        aws_access_key_id="AKIATEST",
        aws_secret_access_key="secret-test",
    )


@pytest.fixture
def fake_backend(deploy_config):
    return FakeBackend(deploy_config)


@pytest.fixture
def dispatcher(deploy_config, fake_backend):
    return JobDispatcher(deploy_config, backends={BackendKind.DOCKER: fake_backend})


@pytest.fixture
def gateway():
    """Gateway without a broker; tests feed it through deliver()."""
    return LogGateway(queue_size=100)


@pytest.fixture
def client(dispatcher, gateway):
    """Create a test client wired to fake collaborators (lifespan not run)."""
    app.state.dispatcher = dispatcher
    app.state.gateway = gateway
    yield TestClient(app, raise_server_exceptions=False)
    del app.state.dispatcher
    del app.state.gateway


@pytest.fixture
def fake_websocket():
    return FakeWebSocket()
