"""
Redis pub/sub access for job topics.

The broker is an external collaborator: ordered within a channel,
at-most-once, no replay. Publishing is fire-and-forget; a message published
before anyone subscribes is simply lost.
"""
import asyncio
import json
import logging
from typing import Optional

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from app.core.jobs import log_topic, status_topic

logger = logging.getLogger(__name__)


def create_redis(url: str) -> aioredis.Redis:
    """Async Redis client with str payloads (rediss:// enables TLS)."""
    return aioredis.from_url(url, decode_responses=True)


def encode_log(line: str) -> str:
    """Wire payload of one log line."""
    return json.dumps({"log": line})


def encode_terminal_event(slug: str, event: str, detail: Optional[str] = None) -> str:
    """Wire payload of the typed terminal event on status:<slug>."""
    return json.dumps({"event": event, "projectSlug": slug, "detail": detail})


class LogPublisher:
    """Publishes one job's log lines and terminal event."""

    def __init__(self, client: aioredis.Redis, slug: str):
        self._client = client
        self.slug = slug
        self.topic = log_topic(slug)
        self.published = 0
        # One publish in flight at a time: the broker sees call order even
        # when the pooled client spreads callers over several connections
        self._lock = asyncio.Lock()

    async def _publish(self, channel: str, payload: str) -> None:
        try:
            async with self._lock:
                await self._client.publish(channel, payload)
        except RedisError as e:
            # No acknowledgment is expected; the build goes on without viewers
            logger.warning(
                f"publish_failed error_type={type(e).__name__}",
                extra={"job_id": self.slug, "topic": channel},
            )

    async def log(self, line: str) -> None:
        """Publish one log line (also echoed to the local log)."""
        logger.info(line, extra={"job_id": self.slug})
        await self._publish(self.topic, encode_log(line))
        self.published += 1

    async def terminal(self, event: str, detail: Optional[str] = None) -> None:
        """Publish the job's terminal event ('done' or 'failed')."""
        await self._publish(status_topic(self.slug), encode_terminal_event(self.slug, event, detail))
