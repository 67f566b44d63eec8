"""Per-meeting status change feed on Redis Streams.

Every status write the pipeline makes is appended to the meeting's stream.
Observers read it with blocking XREAD starting after the last id they saw,
which gives at-least-once, per-meeting ordered delivery and lets a
reconnecting observer resume without missing events.

Stream key pattern: meetings:{meeting_id}:status
"""

from __future__ import annotations

from collections.abc import AsyncIterator

import redis.asyncio as aioredis
import structlog

from src.insights.events.schemas import StatusEvent

logger = structlog.get_logger(__name__)


def stream_id_key(stream_id: str) -> tuple[int, int]:
    """Sort key of a Redis stream id (``<ms>-<seq>``); unparseable ids sort first."""
    ms, _, seq = stream_id.partition("-")
    try:
        return int(ms), int(seq or 0)
    except ValueError:
        return 0, 0


class StatusBus:
    """Publish and read per-meeting status streams.

    Args:
        redis: Async Redis client created with ``decode_responses=True``.
        maxlen: Approximate number of events kept per meeting.
    """

    def __init__(self, redis: aioredis.Redis, maxlen: int = 500) -> None:
        self._redis = redis
        self._maxlen = maxlen

    @staticmethod
    def stream_key(meeting_id: str) -> str:
        return f"meetings:{meeting_id}:status"

    async def publish(self, event: StatusEvent) -> str:
        """Append an event to its meeting's stream.

        Returns:
            Redis message ID assigned by XADD.
        """
        stream_key = self.stream_key(event.meeting_id)
        message_id = await self._redis.xadd(
            stream_key,
            event.to_stream_dict(),
            maxlen=self._maxlen,
            approximate=True,
        )
        logger.debug(
            "status_event_published",
            stream=stream_key,
            entity=event.entity.value,
            status=event.status,
            message_id=message_id,
        )
        return message_id

    async def history(self, meeting_id: str) -> list[StatusEvent]:
        """All retained events of a meeting, oldest first."""
        entries = await self._redis.xrange(self.stream_key(meeting_id))
        return [
            StatusEvent.from_stream_dict(data, stream_id=message_id)
            for message_id, data in entries
        ]

    async def listen(
        self,
        meeting_id: str,
        last_id: str = "0",
        block_ms: int = 5000,
        count: int = 100,
    ) -> AsyncIterator[StatusEvent]:
        """Yield events after ``last_id`` as they arrive.

        ``"0"`` replays retained history first, ``"$"`` starts with new events
        only. Runs until the consumer stops iterating.
        """
        stream_key = self.stream_key(meeting_id)
        while True:
            response = await self._redis.xread(
                {stream_key: last_id}, count=count, block=block_ms
            )
            for _key, entries in response or []:
                for message_id, data in entries:
                    last_id = message_id
                    yield StatusEvent.from_stream_dict(data, stream_id=message_id)
