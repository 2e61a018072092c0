#!/usr/bin/env python3
"""
deploy-service artifact proxy: serves each project on its own subdomain.

GET http://<slug>.<host>/<path> is answered from <ARTIFACT_BASE_URL>/<slug>/<path>.
"""
import logging
import os
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import PlainTextResponse

from app.core.config import get_deploy_config
from app.core.errors import ConfigError
from app.core.logging import setup_logging
from app.core.metrics import metrics
from app.core.proxy import ArtifactProxy
from app.core.request_logging import RequestLoggingMiddleware

setup_logging(os.environ.get("LOG_LEVEL", "INFO"))

logger = logging.getLogger("deploy.proxy")

PROXY_METHODS = ["GET", "HEAD", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"]


def create_proxy() -> ArtifactProxy:
    config = get_deploy_config()
    if not config.artifact_base_url:
        raise ConfigError("Artifact proxy is not configured: set ARTIFACT_BASE_URL or ARTIFACT_BUCKET")
    logger.info(f"proxy_target base_url={config.artifact_base_url}")
    return ArtifactProxy(config.artifact_base_url, timeout=config.proxy_timeout_s)


@asynccontextmanager
async def lifespan(app: FastAPI):
    if getattr(app.state, "proxy", None) is None:
        app.state.proxy = create_proxy()
    try:
        yield
    finally:
        await app.state.proxy.aclose()


app = FastAPI(
    title="deploy-proxy",
    description="Subdomain-routed artifact proxy",
    lifespan=lifespan,
    docs_url=None,
    redoc_url=None,
    openapi_url=None,
)

app.add_middleware(RequestLoggingMiddleware)


@app.get("/_proxy/metrics", include_in_schema=False)
async def proxy_metrics():
    """Metrics live under a reserved prefix; every other path is proxied."""
    return PlainTextResponse(metrics.to_prometheus())


@app.api_route("/{path:path}", methods=PROXY_METHODS, include_in_schema=False)
async def serve_artifact(request: Request, path: str):
    return await request.app.state.proxy.handle(request)
