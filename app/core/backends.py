"""
Isolation backends that launch a build worker.

Every backend receives the same launch environment (see
build_launch_environment) and launches fire-and-forget: launch() returns as
soon as the backend accepted the job, never when the build finishes.

Backends:
- ecs: AWS ECS RunTask (managed task service)
- docker: detached container on the local Docker daemon
"""
import asyncio
import logging
from enum import Enum
from typing import Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from app.core.config import DeployConfig
from app.core.errors import ConfigError, LaunchError, ValidationError
from app.core.jobs import Job

logger = logging.getLogger(__name__)


class BackendKind(str, Enum):
    """Available isolation backends."""
    ECS = "ecs"
    DOCKER = "docker"


# Variables that must never show up in logs
SECRET_ENV_KEYS = frozenset(["AWS_ACCESS_KEY_ID", "AWS_SECRET_ACCESS_KEY"])


def build_launch_environment(job: Job, config: DeployConfig) -> dict[str, str]:
    """
    Build the environment injected into a build worker.

    The contract is identical for every backend: source locator, job id,
    log broker address and artifact store target/credentials.
    """
    env = {
        "GIT_REPOSITORY__URL": job.source_url,
        "PROJECT_ID": job.slug,
        "REDIS_URL": config.redis_url,
        "ARTIFACT_PREFIX": config.artifact_prefix,
    }
    optional = {
        "ARTIFACT_BUCKET": config.artifact_bucket,
        "AWS_REGION": config.aws_region,
        "AWS_ACCESS_KEY_ID": config.aws_access_key_id,
        "AWS_SECRET_ACCESS_KEY": config.aws_secret_access_key,
    }
    env.update({key: value for key, value in optional.items() if value})
    return env


def redact_environment(env: dict[str, str]) -> dict[str, str]:
    """Copy of a launch environment safe to log."""
    return {k: ("***" if k in SECRET_ENV_KEYS else v) for k, v in env.items()}


class BuildBackend:
    """Base class for isolation backends."""

    kind: BackendKind

    def __init__(self, config: DeployConfig):
        self.config = config

    def check_config(self) -> None:
        """Raise ConfigError if the backend cannot launch anything."""
        raise NotImplementedError

    async def launch(self, job: Job, env: dict[str, str]) -> str:
        """Launch a worker for job; return a backend reference (task ARN, container id)."""
        raise NotImplementedError


# =============================================================================
# ECS
# =============================================================================

class EcsBackend(BuildBackend):
    """Launch workers as ECS tasks."""

    kind = BackendKind.ECS

    def __init__(self, config: DeployConfig, client=None):
        super().__init__(config)
        self._client = client

    @property
    def client(self):
        if self._client is None:
            self._client = boto3.client(
                "ecs",
                region_name=self.config.aws_region,
                aws_access_key_id=self.config.aws_access_key_id,
                aws_secret_access_key=self.config.aws_secret_access_key,
            )
        return self._client

    def check_config(self) -> None:
        missing = [
            name
            for name, value in (
                ("ECS_CLUSTER", self.config.ecs_cluster),
                ("ECS_TASK_DEFINITION", self.config.ecs_task_definition),
                ("ECS_CONTAINER_NAME", self.config.ecs_container_name),
                ("ECS_SUBNETS", self.config.ecs_subnets),
            )
            if not value
        ]
        if missing:
            raise ConfigError(f"ECS backend is not configured: missing {', '.join(missing)}")

    def build_run_task_request(self, env: dict[str, str]) -> dict:
        """Keyword arguments for ecs.run_task."""
        vpc_config = {
            "assignPublicIp": "ENABLED" if self.config.ecs_assign_public_ip else "DISABLED",
            "subnets": list(self.config.ecs_subnets),
        }
        if self.config.ecs_security_groups:
            vpc_config["securityGroups"] = list(self.config.ecs_security_groups)

        return {
            "cluster": self.config.ecs_cluster,
            "taskDefinition": self.config.ecs_task_definition,
            "launchType": self.config.ecs_launch_type,
            "count": 1,
            "networkConfiguration": {"awsvpcConfiguration": vpc_config},
            "overrides": {
                "containerOverrides": [
                    {
                        "name": self.config.ecs_container_name,
                        "environment": [
                            {"name": key, "value": value} for key, value in env.items()
                        ],
                    }
                ]
            },
        }

    async def launch(self, job: Job, env: dict[str, str]) -> str:
        request = self.build_run_task_request(env)

        try:
            response = await asyncio.to_thread(self.client.run_task, **request)
        except (ClientError, BotoCoreError) as e:
            raise LaunchError(f"ECS RunTask failed: {e}") from e

        failures = response.get("failures") or []
        if failures:
            reasons = ", ".join(f.get("reason", "unknown") for f in failures)
            raise LaunchError(f"ECS RunTask rejected: {reasons}")

        tasks = response.get("tasks") or []
        task_arn = tasks[0].get("taskArn", "") if tasks else ""
        logger.info(
            f"ecs_task_started task_arn={task_arn}",
            extra={"job_id": job.slug, "backend": self.kind.value},
        )
        return task_arn


# =============================================================================
# Docker
# =============================================================================

class DockerBackend(BuildBackend):
    """Launch workers as detached containers on the local Docker daemon."""

    kind = BackendKind.DOCKER

    def check_config(self) -> None:
        if not self.config.docker_image:
            raise ConfigError("Docker backend is not configured: missing DOCKER_IMAGE")
        if not self.config.docker_binary:
            raise ConfigError("Docker backend is not configured: missing DOCKER_BINARY")

    def container_name(self, job: Job) -> str:
        return f"{self.config.docker_container_prefix}-{job.slug}"

    def build_run_command(self, job: Job, env: dict[str, str]) -> list[str]:
        """docker run argv; never passed through a shell."""
        cmd = [self.config.docker_binary, "run", "-d", "--rm", "--name", self.container_name(job)]
        if self.config.docker_network:
            cmd += ["--network", self.config.docker_network]
        for key, value in env.items():
            cmd += ["-e", f"{key}={value}"]
        cmd.append(self.config.docker_image)
        return cmd

    async def _exec(self, cmd: list[str]) -> tuple[int, str, str]:
        try:
            process = await asyncio.create_subprocess_exec(
                *cmd,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise LaunchError(f"Cannot execute {cmd[0]}: {e}") from e

        stdout, stderr = await process.communicate()
        return (
            process.returncode,
            stdout.decode("utf-8", errors="replace").strip(),
            stderr.decode("utf-8", errors="replace").strip(),
        )

    async def ensure_network(self) -> None:
        """Create the worker network; an existing network is fine."""
        if not self.config.docker_network:
            return

        code, _, stderr = await self._exec(
            [self.config.docker_binary, "network", "create", self.config.docker_network]
        )
        if code == 0:
            logger.info(f"docker_network_created network={self.config.docker_network}")
        elif "already exists" in stderr:
            logger.debug(f"docker_network_exists network={self.config.docker_network}")
        else:
            logger.warning(f"docker_network_create_failed network={self.config.docker_network} error={stderr[:200]}")

    async def launch(self, job: Job, env: dict[str, str]) -> str:
        await self.ensure_network()

        code, stdout, stderr = await self._exec(self.build_run_command(job, env))
        if code != 0:
            raise LaunchError(f"Failed to start builder container: {stderr or f'exit code {code}'}")

        container_id = stdout.splitlines()[-1] if stdout else ""
        logger.info(
            f"docker_container_started container_id={container_id[:12]}",
            extra={"job_id": job.slug, "backend": self.kind.value},
        )
        return container_id


BACKEND_CLASSES = {
    BackendKind.ECS: EcsBackend,
    BackendKind.DOCKER: DockerBackend,
}


def parse_backend_kind(name: Optional[str]) -> BackendKind:
    """Resolve a backend name; unknown names are a validation error."""
    try:
        return BackendKind((name or "").strip().lower())
    except ValueError:
        valid = ", ".join(kind.value for kind in BackendKind)
        raise ValidationError(f"Unknown backend: {name}. Valid backends: {valid}")


def create_backend(kind: BackendKind, config: DeployConfig) -> BuildBackend:
    return BACKEND_CLASSES[kind](config)
