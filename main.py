#!/usr/bin/env python3
"""
deploy-service API: project submission and live build logs.

- POST /project launches a build worker on an isolation backend
- /ws streams job topics from the broker to viewer connections
"""
import os
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse

from app.api.logs import router as logs_router
from app.api.projects import router as projects_router
from app.core.broker import create_redis
from app.core.config import get_deploy_config
from app.core.dispatcher import JobDispatcher
from app.core.errors import DeployError
from app.core.gateway import LogGateway
from app.core.logging import setup_logging
from app.core.metrics import metrics
from app.core.request_logging import RequestLoggingMiddleware

# Setup structured JSON logging
setup_logging(os.environ.get("LOG_LEVEL", "INFO"))

VERSION = "1.0.0"


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Start the broker subscription; dispatcher and gateway live on app.state."""
    config = get_deploy_config()
    app.state.dispatcher = JobDispatcher(config)

    redis_client = create_redis(config.redis_url)
    gateway = LogGateway(redis_client, queue_size=config.viewer_queue_size)
    await gateway.start()
    app.state.gateway = gateway

    try:
        yield
    finally:
        await gateway.stop()
        await redis_client.aclose()


app = FastAPI(
    title="deploy-service",
    description="Deploy git repositories with live build logs",
    version=VERSION,
    lifespan=lifespan,
)


@app.exception_handler(DeployError)
async def deploy_error_handler(request: Request, exc: DeployError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content={"error": str(exc)})


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Malformed bodies use the same {error} shape as other failures."""
    problems = []
    for error in exc.errors():
        location = ".".join(str(part) for part in error.get("loc", ()) if part != "body")
        problems.append(f"{location}: {error.get('msg')}" if location else str(error.get("msg")))
    return JSONResponse(status_code=400, content={"error": "; ".join(problems) or "Invalid request"})


app.add_middleware(RequestLoggingMiddleware)

# The browser console is served from another origin
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(projects_router)
app.include_router(logs_router)


@app.get("/health")
def health():
    """Health check endpoint."""
    return {"status": "ok"}


@app.get("/meta")
def meta():
    """Service metadata for diagnostics and client setup."""
    config = get_deploy_config()
    gateway = getattr(app.state, "gateway", None)
    return {
        "version": VERSION,
        "public_host": config.public_host,
        "default_backend": config.default_backend,
        "websocket_path": "/ws",
        "active_topics": len(gateway.topics) if gateway else 0,
    }


@app.get("/metrics", response_class=PlainTextResponse)
def get_metrics() -> str:
    """Counters in Prometheus text format."""
    return metrics.to_prometheus()
