"""
Service configuration from environment variables.
All settings are optional with safe defaults; backends validate what they need.
"""
import os
import shlex
from dataclasses import dataclass
from typing import Optional

DEFAULT_REDIS_URL = "redis://localhost:6379"
DEFAULT_ARTIFACT_PREFIX = "__outputs"


def _split_list(value: Optional[str]) -> tuple[str, ...]:
    """Split a comma-separated env value into a tuple of non-empty items."""
    if not value:
        return ()
    return tuple(item.strip() for item in value.split(",") if item.strip())


def _as_bool(value: Optional[str], default: bool) -> bool:
    if value is None or value == "":
        return default
    return value.strip().lower() in ("1", "true", "yes", "on", "enabled")


def _as_command(value: Optional[str], default: tuple[str, ...]) -> tuple[str, ...]:
    if not value:
        return default
    return tuple(shlex.split(value))


@dataclass(frozen=True)
class DeployConfig:
    """Dispatcher, gateway and proxy configuration (immutable)."""
    redis_url: str = DEFAULT_REDIS_URL
    public_host: str = "localhost:8000"
    public_scheme: str = "http"
    default_backend: str = "docker"
    # AWS (never logged)
    aws_region: Optional[str] = None
    aws_access_key_id: Optional[str] = None
    aws_secret_access_key: Optional[str] = None
    # ECS backend
    ecs_cluster: Optional[str] = None
    ecs_task_definition: Optional[str] = None
    ecs_container_name: Optional[str] = None
    ecs_subnets: tuple[str, ...] = ()
    ecs_security_groups: tuple[str, ...] = ()
    ecs_launch_type: str = "FARGATE"
    ecs_assign_public_ip: bool = True
    # Docker backend
    docker_image: str = "build-server"
    docker_network: Optional[str] = "deploy-network"
    docker_container_prefix: str = "deploy-builder"
    docker_binary: str = "docker"
    # Artifact store
    artifact_bucket: Optional[str] = None
    artifact_prefix: str = DEFAULT_ARTIFACT_PREFIX
    artifact_base_url_override: Optional[str] = None
    # Gateway / proxy
    viewer_queue_size: int = 1000
    proxy_timeout_s: float = 30.0

    @property
    def artifact_base_url(self) -> Optional[str]:
        """Public base URL under which artifact keys are readable."""
        if self.artifact_base_url_override:
            return self.artifact_base_url_override.rstrip("/")
        if not self.artifact_bucket:
            return None
        host = f"s3.{self.aws_region}.amazonaws.com" if self.aws_region else "s3.amazonaws.com"
        base = f"https://{host}/{self.artifact_bucket}"
        if self.artifact_prefix:
            base = f"{base}/{self.artifact_prefix.strip('/')}"
        return base


@dataclass(frozen=True)
class WorkerConfig:
    """Build worker configuration, injected by the launching backend."""
    project_id: Optional[str] = None
    source_url: Optional[str] = None
    redis_url: str = DEFAULT_REDIS_URL
    artifact_bucket: Optional[str] = None
    artifact_prefix: str = DEFAULT_ARTIFACT_PREFIX
    aws_region: Optional[str] = None
    aws_access_key_id: Optional[str] = None
    aws_secret_access_key: Optional[str] = None
    output_dir: str = "dist"
    install_command: tuple[str, ...] = ("npm", "install")
    build_command: tuple[str, ...] = ("npm", "run", "build")
    upload_concurrency: int = 8

    @property
    def missing(self) -> list[str]:
        """Names of required variables that are not set."""
        required = {
            "PROJECT_ID": self.project_id,
            "GIT_REPOSITORY__URL": self.source_url,
            "ARTIFACT_BUCKET": self.artifact_bucket,
        }
        return [name for name, value in required.items() if not value]


def get_deploy_config() -> DeployConfig:
    """Load dispatcher/gateway/proxy configuration from environment."""
    default_backend = os.getenv("DEFAULT_BACKEND", "docker").lower()

    return DeployConfig(
        redis_url=os.getenv("REDIS_URL", DEFAULT_REDIS_URL),
        public_host=os.getenv("PUBLIC_HOST", "localhost:8000"),
        public_scheme=os.getenv("PUBLIC_SCHEME", "http"),
        default_backend=default_backend,
        aws_region=os.getenv("AWS_REGION") or None,
        aws_access_key_id=os.getenv("AWS_ACCESS_KEY_ID") or None,
        aws_secret_access_key=os.getenv("AWS_SECRET_ACCESS_KEY") or None,
        ecs_cluster=os.getenv("ECS_CLUSTER") or None,
        ecs_task_definition=os.getenv("ECS_TASK_DEFINITION") or None,
        ecs_container_name=os.getenv("ECS_CONTAINER_NAME") or None,
        ecs_subnets=_split_list(os.getenv("ECS_SUBNETS")),
        ecs_security_groups=_split_list(os.getenv("ECS_SECURITY_GROUPS")),
        ecs_launch_type=os.getenv("ECS_LAUNCH_TYPE", "FARGATE"),
        ecs_assign_public_ip=_as_bool(os.getenv("ECS_ASSIGN_PUBLIC_IP"), True),
        docker_image=os.getenv("DOCKER_IMAGE", "build-server"),
        docker_network=os.getenv("DOCKER_NETWORK", "deploy-network") or None,
        docker_container_prefix=os.getenv("DOCKER_CONTAINER_PREFIX", "deploy-builder"),
        docker_binary=os.getenv("DOCKER_BINARY", "docker"),
        artifact_bucket=os.getenv("ARTIFACT_BUCKET") or None,
        artifact_prefix=os.getenv("ARTIFACT_PREFIX", DEFAULT_ARTIFACT_PREFIX),
        artifact_base_url_override=os.getenv("ARTIFACT_BASE_URL") or None,
        viewer_queue_size=int(os.getenv("VIEWER_QUEUE_SIZE", "1000")),
        proxy_timeout_s=float(os.getenv("PROXY_TIMEOUT_S", "30")),
    )


def get_worker_config() -> WorkerConfig:
    """Load build worker configuration from environment."""
    return WorkerConfig(
        project_id=os.getenv("PROJECT_ID") or None,
        source_url=os.getenv("GIT_REPOSITORY__URL") or None,
        redis_url=os.getenv("REDIS_URL", DEFAULT_REDIS_URL),
        artifact_bucket=os.getenv("ARTIFACT_BUCKET") or None,
        artifact_prefix=os.getenv("ARTIFACT_PREFIX", DEFAULT_ARTIFACT_PREFIX),
        aws_region=os.getenv("AWS_REGION") or None,
        aws_access_key_id=os.getenv("AWS_ACCESS_KEY_ID") or None,
        aws_secret_access_key=os.getenv("AWS_SECRET_ACCESS_KEY") or None,
        output_dir=os.getenv("BUILD_OUTPUT_DIR", "dist"),
        install_command=_as_command(os.getenv("INSTALL_COMMAND"), ("npm", "install")),
        build_command=_as_command(os.getenv("BUILD_COMMAND"), ("npm", "run", "build")),
        upload_concurrency=max(1, int(os.getenv("UPLOAD_CONCURRENCY", "8"))),
    )
