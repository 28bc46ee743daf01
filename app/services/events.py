"""
Kindred — Domain event publication

Services emit domain events (e.g. ``embedding_generated``) to an injected
``EventSink``.  Transport-facing components subscribe to the Redis channel;
services never hold references to them.
"""

from __future__ import annotations

import json
from typing import Any, Callable, Protocol

import structlog

from app.config import get_settings
from app.database import utcnow

logger = structlog.get_logger("kindred.events")


class EventSink(Protocol):
    async def publish(self, event_type: str, payload: dict[str, Any]) -> None:
        ...


class NullEventSink:
    """Sink that only logs; used when no transport is configured."""

    async def publish(self, event_type: str, payload: dict[str, Any]) -> None:
        logger.debug("event_dropped", event_type=event_type)


class RedisEventSink:
    """Publish events as JSON on a Redis pub/sub channel.

    Publication is best-effort: a Redis failure is logged and swallowed so
    the emitting operation still succeeds.

    Parameters
    ----------
    redis_getter:
        Callable returning the shared ``redis.asyncio`` client, or ``None``
        while it is not connected.
    channel:
        Pub/sub channel.  Defaults to ``EVENTS_CHANNEL``.
    """

    def __init__(
        self,
        redis_getter: Callable[[], Any],
        channel: str | None = None,
    ) -> None:
        self._redis_getter = redis_getter
        self.channel = channel or get_settings().EVENTS_CHANNEL

    async def publish(self, event_type: str, payload: dict[str, Any]) -> None:
        client = self._redis_getter()
        if client is None:
            logger.warning("event_publish_skipped", event_type=event_type, reason="redis_unavailable")
            return

        message = json.dumps(
            {
                "type": event_type,
                "payload": payload,
                "emitted_at": utcnow().isoformat(),
            },
            default=str,
        )
        try:
            receivers = await client.publish(self.channel, message)
        except Exception as exc:
            logger.error("event_publish_failed", event_type=event_type, error=str(exc))
            return

        logger.info(
            "event_published",
            event_type=event_type,
            channel=self.channel,
            receivers=receivers,
        )
