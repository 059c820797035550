"""Durable fan-out of published events to external streams."""

from __future__ import annotations

import json
from typing import Any, Protocol, runtime_checkable

import redis.asyncio as redis
import structlog

from rw_soar.events.models import Event

logger = structlog.get_logger()


@runtime_checkable
class EventSink(Protocol):
    """Receives a copy of every event published on the bus."""

    async def forward(self, event: Event) -> None:
        """Forward an event to the external destination."""
        ...


class RedisStreamSink:
    """Appends events to a Redis stream for multi-process consumers.

    Each event becomes one stream entry whose fields mirror the event
    envelope; ``data`` is JSON encoded.
    """

    def __init__(
        self,
        client: Any,
        stream_name: str = "alerts_stream",
        maxlen: int | None = None,
    ) -> None:
        self._client = client
        self._stream_name = stream_name
        self._maxlen = maxlen
        self._logger = logger.bind(component="redis_stream_sink", stream=stream_name)

    @classmethod
    def from_url(
        cls,
        url: str,
        stream_name: str = "alerts_stream",
        maxlen: int | None = None,
    ) -> RedisStreamSink:
        """Create a sink with its own Redis client."""
        client = redis.Redis.from_url(url, decode_responses=True)
        return cls(client, stream_name=stream_name, maxlen=maxlen)

    @property
    def stream_name(self) -> str:
        return self._stream_name

    @staticmethod
    def encode(event: Event) -> dict[str, str]:
        """Flatten an event into stream entry fields."""
        payload = event.to_payload()
        return {
            "id": payload["id"],
            "type": payload["type"],
            "entityId": str(payload["entityId"]),
            "entityType": payload["entityType"],
            "organizationId": str(payload["organizationId"]),
            "timestamp": payload["timestamp"],
            "data": json.dumps(payload["data"], default=str),
        }

    async def forward(self, event: Event) -> None:
        message_id = await self._client.xadd(
            self._stream_name,
            self.encode(event),
            maxlen=self._maxlen,
            approximate=self._maxlen is not None,
        )
        self._logger.debug(
            "event_forwarded",
            event_type=event.type,
            event_id=event.id,
            message_id=message_id,
        )

    async def close(self) -> None:
        """Close the underlying client connection pool."""
        await self._client.aclose()
