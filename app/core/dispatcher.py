"""
Job dispatcher: validate a deploy request and launch a build worker.

The dispatcher is stateless. Nothing about a job is kept past the launch
call, so a crash loses no job state; a failed launch leaves nothing behind
and is not retried.
"""
import logging
from dataclasses import dataclass
from typing import Optional

from app.core.backends import (
    BackendKind,
    BuildBackend,
    build_launch_environment,
    create_backend,
    parse_backend_kind,
    redact_environment,
)
from app.core.config import DeployConfig
from app.core.errors import ConfigError, LaunchError, ValidationError
from app.core.jobs import Job
from app.core.metrics import metrics
from app.core.slugs import generate_slug, normalize_slug

logger = logging.getLogger(__name__)


@dataclass
class LaunchResult:
    """Outcome of a successful submission."""
    job: Job
    url: str
    launch_ref: str


class JobDispatcher:
    """Launches one build worker per submission on the selected backend."""

    def __init__(
        self,
        config: DeployConfig,
        backends: Optional[dict[BackendKind, BuildBackend]] = None,
    ):
        self.config = config
        self._backends: dict[BackendKind, BuildBackend] = dict(backends or {})

    def project_url(self, slug: str) -> str:
        """Predicted public URL of a project: <scheme>://<slug>.<host>/"""
        return f"{self.config.public_scheme}://{slug}.{self.config.public_host}/"

    def get_backend(self, hint: Optional[str] = None) -> BuildBackend:
        kind = parse_backend_kind(hint or self.config.default_backend)
        if kind not in self._backends:
            self._backends[kind] = create_backend(kind, self.config)
        return self._backends[kind]

    async def submit(
        self,
        source_url: Optional[str],
        slug: Optional[str] = None,
        backend_hint: Optional[str] = None,
    ) -> LaunchResult:
        """
        Validate a deploy request and launch its build worker.

        Returns as soon as the backend accepted the launch; never waits for
        the build.

        Raises:
            ValidationError: Missing source URL, bad slug or unknown backend
            ConfigError: Selected backend is misconfigured (nothing launched)
            LaunchError: Backend rejected or failed the launch call
        """
        if not source_url or not source_url.strip():
            metrics.inc("submit_rejected_total")
            raise ValidationError("sourceUrl is required")

        try:
            project_slug = normalize_slug(slug) if slug else generate_slug()
            backend = self.get_backend(backend_hint)
            backend.check_config()
        except (ValidationError, ConfigError):
            metrics.inc("submit_rejected_total")
            raise

        job = Job(slug=project_slug, source_url=source_url.strip(), backend=backend.kind.value)
        env = build_launch_environment(job, self.config)
        logger.debug(
            f"launch_environment env={redact_environment(env)}",
            extra={"job_id": job.slug, "backend": job.backend},
        )

        try:
            launch_ref = await backend.launch(job, env)
        except LaunchError as e:
            metrics.inc("launch_error_total")
            logger.error(
                f"launch_failed error={e}",
                extra={"job_id": job.slug, "backend": job.backend},
            )
            raise

        metrics.inc("projects_queued_total")
        logger.info(
            "project_queued",
            extra={"job_id": job.slug, "backend": job.backend},
        )
        return LaunchResult(job=job, url=self.project_url(job.slug), launch_ref=launch_ref)
