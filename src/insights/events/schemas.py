"""Status event schema for the per-meeting change feed.

Events serialize to flat string dicts for Redis Streams and deserialize
back losslessly.

Stream key pattern: meetings:{meeting_id}:status
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, Field


class StatusEntity(str, Enum):
    """Which record a status event describes."""

    MEETING = "meeting"
    ANALYSIS = "analysis"


class StatusEvent(BaseModel):
    """One status change of a meeting or one of its analyses.

    Attributes:
        event_id: Unique identifier (auto-generated UUID4).
        meeting_id: Meeting the change belongs to; also the stream key.
        entity: Meeting or analysis.
        status: New status value.
        analysis_id: Analysis involved, if any.
        error_message: Human-readable failure message on ``failed``.
        error_code: FailureCode value on ``failed``.
        timestamp: UTC creation time.
        stream_id: Redis message ID, set when read back from the stream.
    """

    event_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    meeting_id: str
    entity: StatusEntity
    status: str
    analysis_id: str | None = None
    error_message: str | None = None
    error_code: str | None = None
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    stream_id: str | None = None

    def to_stream_dict(self) -> dict[str, str]:
        """Serialize to a flat dict of strings for XADD; None becomes ""."""
        return {
            "event_id": self.event_id,
            "meeting_id": self.meeting_id,
            "entity": self.entity.value,
            "status": self.status,
            "analysis_id": self.analysis_id or "",
            "error_message": self.error_message or "",
            "error_code": self.error_code or "",
            "timestamp": self.timestamp.isoformat(),
        }

    @classmethod
    def from_stream_dict(
        cls, raw: dict[str, str], stream_id: str | None = None
    ) -> StatusEvent:
        """Reverse ``to_stream_dict()``."""
        return cls(
            event_id=raw["event_id"],
            meeting_id=raw["meeting_id"],
            entity=StatusEntity(raw["entity"]),
            status=raw["status"],
            analysis_id=raw.get("analysis_id") or None,
            error_message=raw.get("error_message") or None,
            error_code=raw.get("error_code") or None,
            timestamp=datetime.fromisoformat(raw["timestamp"]),
            stream_id=stream_id,
        )
