"""
Deploy job model.

The dispatcher keeps no job record past the launch call. A Job only lives
for the duration of a submit request (dispatcher side) or a worker run
(worker side); its slug names everything else.
"""
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum

LOG_TOPIC_PREFIX = "logs:"
STATUS_TOPIC_PREFIX = "status:"

# Broker patterns the gateway subscribes to at startup
TOPIC_PATTERNS = (f"{LOG_TOPIC_PREFIX}*", f"{STATUS_TOPIC_PREFIX}*")


class JobStage(str, Enum):
    """Lifecycle stage of a deploy job."""
    QUEUED = "queued"
    START = "start"
    CLONE = "clone"
    INSTALL = "install"
    BUILD = "build"
    COLLECT = "collect"
    UPLOAD = "upload"
    DONE = "done"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStage.DONE, JobStage.FAILED)


@dataclass
class Job:
    """A deploy job, addressed by its slug."""
    slug: str
    source_url: str
    backend: str
    stage: JobStage = JobStage.QUEUED
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def log_topic(self) -> str:
        return log_topic(self.slug)

    @property
    def status_topic(self) -> str:
        return status_topic(self.slug)


def log_topic(slug: str) -> str:
    """Topic carrying a job's log lines."""
    return f"{LOG_TOPIC_PREFIX}{slug}"


def status_topic(slug: str) -> str:
    """Topic carrying a job's typed terminal event."""
    return f"{STATUS_TOPIC_PREFIX}{slug}"


def artifact_key(prefix: str, slug: str, relative_path: str) -> str:
    """Object key of one artifact: <prefix>/<slug>/<relative path>."""
    relative = relative_path.replace("\\", "/").lstrip("/")
    parts = [p for p in (prefix.strip("/"), slug, relative) if p]
    return "/".join(parts)
