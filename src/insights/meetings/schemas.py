"""Pydantic v2 schemas for the meeting insights domain.

Defines the data contracts for meetings, analyses, transcript segments and
action items (the persisted records other collaborators read against), plus
AnalysisDocument: the normalized structured document stored as
``analysis_json``, which is the authoritative source for all derived content.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from enum import Enum
from typing import Annotated, Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


# ── Enums ────────────────────────────────────────────────────────────────────


class MeetingStatus(str, Enum):
    """Lifecycle status of an uploaded meeting recording."""

    UPLOADED = "uploaded"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (MeetingStatus.COMPLETED, MeetingStatus.FAILED)


class AnalysisStatus(str, Enum):
    """Status of one pipeline run. ``ready`` and ``failed`` are terminal."""

    PROCESSING = "processing"
    READY = "ready"
    FAILED = "failed"


class Priority(str, Enum):
    """Action item priority."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


# ── Analysis Document (analysis_json) ────────────────────────────────────────

# Numbers from model output: no bool or numeric-string coercion, finite only
DocumentFloat = Annotated[float, Field(strict=True, allow_inf_nan=False)]


class _DocumentItem(BaseModel):
    """Common config for items parsed from model output."""

    model_config = ConfigDict(extra="ignore")

    @field_validator("id", mode="before", check_fields=False)
    @classmethod
    def _id_to_str(cls, value: Any) -> Any:
        # Models sometimes emit numeric ids
        if isinstance(value, int) and not isinstance(value, bool):
            return str(value)
        if value == "":
            return None
        return value


class DocumentActionItem(_DocumentItem):
    """Action item as reported by the extraction stage."""

    id: str | None = None
    text: str
    owner: str | None = None
    timestamp: DocumentFloat | None = None
    due_date: str | None = None
    confidence: DocumentFloat | None = None
    priority: Priority = Priority.MEDIUM

    @field_validator("priority", mode="before")
    @classmethod
    def _fold_priority(cls, value: Any) -> Any:
        if value is None:
            return Priority.MEDIUM
        if isinstance(value, str):
            return value.strip().lower()
        return value

    @field_validator("owner", "due_date", mode="before")
    @classmethod
    def _blank_to_none(cls, value: Any) -> Any:
        if isinstance(value, str) and not value.strip():
            return None
        return value


class TimelineEvent(_DocumentItem):
    """A notable moment in the meeting."""

    id: str | None = None
    time: DocumentFloat
    title: str
    description: str = ""
    importance: DocumentFloat | None = None


class SentimentPoint(_DocumentItem):
    """One sample of the sentiment curve, value in [-1, 1]."""

    time: DocumentFloat
    value: DocumentFloat


class SpeakerStat(_DocumentItem):
    """Talk-time statistics for one speaker."""

    name: str
    speaking_time_seconds: DocumentFloat = 0.0
    speaking_percentage: DocumentFloat = 0.0


class DocumentSegment(_DocumentItem):
    """Speaker-attributed transcript segment."""

    id: str | None = None
    speaker: str | None = None
    start: DocumentFloat
    end: DocumentFloat
    text: str
    confidence: DocumentFloat | None = None


class AnalysisDocument(BaseModel):
    """Normalized structured document stored as ``analysis_json``."""

    model_config = ConfigDict(extra="ignore")

    summary: str
    action_items: list[DocumentActionItem] = Field(default_factory=list)
    timeline_events: list[TimelineEvent] = Field(default_factory=list)
    sentiment: list[SentimentPoint] = Field(default_factory=list)
    speakers: list[SpeakerStat] = Field(default_factory=list)
    transcript_segments: list[DocumentSegment] = Field(default_factory=list)

    @field_validator(
        "action_items",
        "timeline_events",
        "sentiment",
        "speakers",
        "transcript_segments",
        mode="before",
    )
    @classmethod
    def _null_to_empty(cls, value: Any) -> Any:
        return [] if value is None else value


# ── Persisted Records ────────────────────────────────────────────────────────


class Meeting(BaseModel):
    """One uploaded recording and its lifecycle status."""

    id: uuid.UUID = Field(default_factory=uuid.uuid4)
    owner_id: uuid.UUID
    title: str
    audio_path: str
    audio_size: int | None = None
    duration_seconds: float | None = None
    language: str | None = None
    status: MeetingStatus = MeetingStatus.UPLOADED
    created_at: datetime
    updated_at: datetime


class Analysis(BaseModel):
    """One pipeline run's record."""

    id: uuid.UUID = Field(default_factory=uuid.uuid4)
    meeting_id: uuid.UUID
    status: AnalysisStatus = AnalysisStatus.PROCESSING
    model: str | None = None
    raw_transcript: dict[str, Any] | None = None
    analysis_json: AnalysisDocument | None = None
    token_usage: dict[str, Any] = Field(default_factory=dict)
    confidence_score: float | None = None
    processing_duration_ms: int | None = None
    error_message: str | None = None
    error_code: str | None = None
    created_at: datetime
    updated_at: datetime


class TranscriptSegment(BaseModel):
    """Derived row: one transcript segment of an analysis."""

    id: uuid.UUID = Field(default_factory=uuid.uuid4)
    analysis_id: uuid.UUID
    speaker: str | None = None
    start_sec: float
    end_sec: float
    text: str
    confidence: float | None = None


class ActionItem(BaseModel):
    """Derived row: one action item of an analysis."""

    id: uuid.UUID = Field(default_factory=uuid.uuid4)
    analysis_id: uuid.UUID
    text: str
    owner: str | None = None
    due_date: str | None = None
    priority: Priority = Priority.MEDIUM
    timestamp_sec: float | None = None
    confidence: float | None = None
    completed: bool = False
    completed_at: datetime | None = None
    created_at: datetime | None = None


# ── Request/Create Models ────────────────────────────────────────────────────


class MeetingCreate(BaseModel):
    """Registration of an uploaded recording."""

    owner_id: uuid.UUID
    title: str = Field(min_length=1)
    audio_path: str = Field(min_length=1)
    audio_size: int | None = Field(None, ge=0)


class ActionItemCreate(BaseModel):
    """Manually created action item; confidence is always 1.0."""

    text: str = Field(min_length=1)
    owner: str | None = None
    due_date: str | None = None
    priority: Priority = Priority.MEDIUM


class ActionItemUpdate(BaseModel):
    """Completion toggle for an action item."""

    completed: bool
