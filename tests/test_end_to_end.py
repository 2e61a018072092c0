"""
End-to-end flow with in-memory collaborators.

Submit a project, watch its logs through the gateway while the worker
builds and uploads, then fetch the site through the proxy.
"""
import json
from unittest.mock import patch

import httpx
import pytest
from fastapi.testclient import TestClient

import proxy_server
from app.core.broker import LogPublisher
from app.core.build_runner import COMPLETION_SENTINEL, BuildWorker
from app.core.gateway import ViewerSession
from app.core.jobs import Job, log_topic, status_topic
from app.core.proxy import ArtifactProxy
from conftest import FakeWebSocket, StreamBody
from test_build_runner import FakeStore, fake_commands
from test_gateway import _drain


class InMemoryBroker:
    """Publishes straight into a gateway, like a broker with one subscriber."""

    def __init__(self, gateway):
        self.gateway = gateway

    async def publish(self, channel: str, payload: str) -> int:
        return self.gateway.deliver(channel, payload)


def store_transport(store: FakeStore) -> httpx.MockTransport:
    def handler(request: httpx.Request) -> httpx.Response:
        key = request.url.path.lstrip("/")
        if key not in store.objects:
            return httpx.Response(404)
        return httpx.Response(200, stream=StreamBody(store.objects[key]), headers={"Content-Type": "text/html"})

    return httpx.MockTransport(handler)


@pytest.mark.asyncio
async def test_submit_watch_build_and_serve(client, gateway, fake_backend, tmp_path):
    response = client.post("/project", json={"sourceUrl": "https://example.com/r.git", "slug": "demo"})
    assert response.status_code == 200
    assert response.json()["data"]["url"] == "http://demo.example.test/"

    job, env = fake_backend.launches[0]
    viewer = FakeWebSocket()
    session = ViewerSession(viewer)
    gateway.subscribe(session, log_topic("demo"))
    gateway.subscribe(session, status_topic("demo"))

    store = FakeStore()
    worker = BuildWorker(
        Job(slug=env["PROJECT_ID"], source_url=env["GIT_REPOSITORY__URL"], backend="worker"),
        LogPublisher(InMemoryBroker(gateway), env["PROJECT_ID"]),
        store,
        tmp_path,
    )
    with patch("app.core.build_runner.run_command", fake_commands()):
        assert await worker.run() == 0
    await _drain(session)

    frames = [json.loads(frame) for frame in viewer.sent]
    logs = [frame["log"] for frame in frames if "log" in frame]
    assert logs[0] == "Starting the build process..."
    assert logs[-1] == COMPLETION_SENTINEL
    assert frames[-1] == {"event": "done", "projectSlug": "demo", "detail": None}

    proxy_server.app.state.proxy = ArtifactProxy(
        "https://artifacts.example.test/__outputs",
        client=httpx.AsyncClient(transport=store_transport(store), base_url="https://artifacts.example.test"),
    )
    try:
        site = TestClient(proxy_server.app, base_url="http://demo.example.test")
        page = site.get("/")
    finally:
        del proxy_server.app.state.proxy

    assert page.status_code == 200
    assert page.content == (tmp_path / "output" / "dist" / "index.html").read_bytes()
