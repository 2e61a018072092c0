"""
Log fan-out gateway: bridges the broker to live viewer WebSockets.

The gateway subscribes once, at startup, to every job topic pattern and
keeps a table of topic -> subscribed sessions. Each broker message is
queued, unmodified, to every current subscriber of its topic. There is no
replay for late joiners and no ordering across topics.

Table mutations are plain synchronous methods, so fan-out running on the
same event loop never sees a half-updated subscriber set.
"""
import asyncio
import json
import logging
import uuid
from typing import Optional

from redis.exceptions import RedisError
from starlette.websockets import WebSocket, WebSocketDisconnect

from app.core.jobs import TOPIC_PATTERNS
from app.core.metrics import metrics

logger = logging.getLogger(__name__)

DEFAULT_QUEUE_SIZE = 1000
INVALID_MESSAGE = json.dumps({"error": "Invalid message format"})


class ViewerSession:
    """
    One viewer connection.

    Owns its subscribed topics and a bounded outbound queue. When the queue
    is full the oldest payload is dropped, so a stalled viewer never grows
    memory without bound.
    """

    def __init__(self, websocket, queue_size: int = DEFAULT_QUEUE_SIZE):
        self.id = uuid.uuid4().hex[:12]
        self.websocket = websocket
        self.topics: set[str] = set()
        self.dropped = 0
        self._outbox: asyncio.Queue[str] = asyncio.Queue(maxsize=max(1, queue_size))

    @property
    def pending(self) -> int:
        return self._outbox.qsize()

    def push(self, payload: str) -> None:
        """Queue a payload for this viewer, dropping the oldest if full."""
        if self._outbox.full():
            self._outbox.get_nowait()
            self.dropped += 1
            metrics.inc("gateway_messages_dropped_total")
        self._outbox.put_nowait(payload)

    async def run_sender(self) -> None:
        """Drain the outbound queue to the socket until cancelled."""
        while True:
            payload = await self._outbox.get()
            await self.websocket.send_text(payload)


class LogGateway:
    """Fans broker messages out to subscribed viewer sessions."""

    def __init__(
        self,
        broker=None,
        patterns: tuple[str, ...] = TOPIC_PATTERNS,
        queue_size: int = DEFAULT_QUEUE_SIZE,
    ):
        self._broker = broker
        self._patterns = patterns
        self._queue_size = queue_size
        self._topics: dict[str, set[ViewerSession]] = {}
        self._pubsub = None
        self._listener: Optional[asyncio.Task] = None

    # -------------------------------------------------------------------------
    # Topic table
    # -------------------------------------------------------------------------

    @property
    def topics(self) -> list[str]:
        return sorted(self._topics)

    def subscriber_count(self, topic: str) -> int:
        return len(self._topics.get(topic, ()))

    def subscribe(self, session: ViewerSession, topic: str) -> None:
        self._topics.setdefault(topic, set()).add(session)
        session.topics.add(topic)

    def unsubscribe(self, session: ViewerSession, topic: str) -> None:
        subscribers = self._topics.get(topic)
        if subscribers is not None:
            subscribers.discard(session)
            if not subscribers:
                del self._topics[topic]
        session.topics.discard(topic)

    def disconnect(self, session: ViewerSession) -> None:
        """Remove a session from every topic it held."""
        for topic in list(session.topics):
            self.unsubscribe(session, topic)

    def deliver(self, topic: str, payload: str) -> int:
        """Queue payload to every subscriber of topic; returns the count."""
        subscribers = self._topics.get(topic)
        if not subscribers:
            return 0
        for session in subscribers:
            session.push(payload)
        metrics.inc("gateway_messages_delivered_total", len(subscribers))
        return len(subscribers)

    # -------------------------------------------------------------------------
    # Control messages
    # -------------------------------------------------------------------------

    def handle_control(self, session: ViewerSession, raw: str) -> None:
        """
        Apply one client control message.

        The acknowledgment is queued in the same step as the table update,
        so it always precedes the first delivery for that topic.
        """
        try:
            data = json.loads(raw)
        except (TypeError, ValueError):
            data = None

        action = data.get("action") if isinstance(data, dict) else None
        channel = data.get("channel") if isinstance(data, dict) else None

        if not isinstance(channel, str) or not channel:
            action = None

        if action == "subscribe":
            self.subscribe(session, channel)
            session.push(json.dumps({"message": f"Joined {channel}"}))
            metrics.inc("gateway_subscriptions_total")
            logger.info("viewer_subscribed", extra={"session_id": session.id, "topic": channel})
        elif action == "unsubscribe":
            self.unsubscribe(session, channel)
            session.push(json.dumps({"message": f"Left {channel}"}))
            logger.info("viewer_unsubscribed", extra={"session_id": session.id, "topic": channel})
        else:
            session.push(INVALID_MESSAGE)
            logger.warning("viewer_invalid_message", extra={"session_id": session.id})

    # -------------------------------------------------------------------------
    # Viewer connections
    # -------------------------------------------------------------------------

    async def serve(self, websocket: WebSocket) -> None:
        """Run one viewer connection until it disconnects."""
        await websocket.accept()
        session = ViewerSession(websocket, self._queue_size)
        sender = asyncio.create_task(session.run_sender())
        metrics.inc("gateway_connections_total")
        logger.info("viewer_connected", extra={"session_id": session.id})

        try:
            while True:
                message = await websocket.receive()
                if message["type"] == "websocket.disconnect":
                    raise WebSocketDisconnect(message.get("code", 1000))
                raw = message.get("text")
                if raw is None and message.get("bytes") is not None:
                    raw = message["bytes"].decode("utf-8", errors="replace")
                self.handle_control(session, raw)
        except WebSocketDisconnect as e:
            logger.info(
                f"viewer_disconnected code={e.code} pending={session.pending} dropped={session.dropped}",
                extra={"session_id": session.id},
            )
        finally:
            self.disconnect(session)
            sender.cancel()
            try:
                await sender
            except asyncio.CancelledError:
                pass
            except Exception:
                logger.debug("viewer_sender_closed", extra={"session_id": session.id}, exc_info=True)

    # -------------------------------------------------------------------------
    # Broker subscription
    # -------------------------------------------------------------------------

    async def start(self) -> None:
        """Pattern-subscribe to all job topics and start the listener."""
        if self._broker is None:
            raise RuntimeError("LogGateway.start() requires a broker client")

        self._pubsub = self._broker.pubsub()
        await self._pubsub.psubscribe(*self._patterns)
        self._listener = asyncio.create_task(self._listen())
        logger.info(f"gateway_subscribed patterns={','.join(self._patterns)}")

    async def _listen(self) -> None:
        try:
            async for message in self._pubsub.listen():
                if message.get("type") != "pmessage":
                    continue
                metrics.inc("gateway_messages_received_total")
                self.deliver(message["channel"], message["data"])
        except RedisError:
            logger.exception("gateway_listener_failed")
            raise

    async def stop(self) -> None:
        """Stop the listener and close the broker subscription."""
        if self._listener is not None:
            self._listener.cancel()
            try:
                await self._listener
            except (asyncio.CancelledError, RedisError):
                # A broker failure was already logged by the listener
                pass
            self._listener = None

        if self._pubsub is not None:
            await self._pubsub.punsubscribe()
            await self._pubsub.aclose()
            self._pubsub = None
        logger.info("gateway_stopped")
