#!/usr/bin/env python3
"""
Build worker entry point (container command).

Reads the launch environment injected by the dispatcher's backend, runs one
job to completion and exits 0 on success, 1 on failure. The exit code is
only visible to the container supervisor; viewers learn the outcome from
the job's topics.
"""
import asyncio
import logging
import os
import sys
import tempfile
from pathlib import Path

from app.core.artifact_store import ArtifactStore
from app.core.broker import LogPublisher, create_redis
from app.core.build_runner import BuildWorker
from app.core.config import WorkerConfig, get_worker_config
from app.core.errors import ConfigError
from app.core.jobs import Job
from app.core.logging import setup_logging

logger = logging.getLogger("deploy.worker")


def check_worker_config(config: WorkerConfig) -> None:
    if config.missing:
        raise ConfigError(f"Missing environment variables: {', '.join(config.missing)}")


async def run_job(config: WorkerConfig, workspace: Path) -> int:
    job = Job(slug=config.project_id, source_url=config.source_url, backend="worker")
    redis_client = create_redis(config.redis_url)
    store = ArtifactStore(
        bucket=config.artifact_bucket,
        prefix=config.artifact_prefix,
        region=config.aws_region,
        aws_access_key_id=config.aws_access_key_id,
        aws_secret_access_key=config.aws_secret_access_key,
    )
    worker = BuildWorker(
        job,
        LogPublisher(redis_client, job.slug),
        store,
        workspace,
        output_dir=config.output_dir,
        install_command=config.install_command,
        build_command=config.build_command,
        upload_concurrency=config.upload_concurrency,
    )

    try:
        return await worker.run()
    finally:
        await redis_client.aclose()


def main() -> int:
    setup_logging(os.environ.get("LOG_LEVEL", "INFO"))
    config = get_worker_config()

    try:
        check_worker_config(config)
    except ConfigError as e:
        logger.error(f"worker_config_invalid error={e}")
        return 1

    with tempfile.TemporaryDirectory(prefix=f"build-{config.project_id}-") as tmpdir:
        return asyncio.run(run_job(config, Path(tmpdir)))


if __name__ == "__main__":
    sys.exit(main())
