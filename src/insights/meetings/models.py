"""Meeting insight persistence models.

Four SQLAlchemy models:
- MeetingModel: One uploaded recording and its lifecycle status
- AnalysisModel: One pipeline run (raw transcript checkpoint, analysis_json)
- TranscriptSegmentModel: Derived rows projected from analysis_json
- ActionItemModel: Derived rows projected from analysis_json

No foreign key constraints and no uniqueness on analyses.meeting_id
(application-level referential integrity via repository).
"""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import Boolean, CheckConstraint, DateTime, Float, Index, Integer, String, Text, func
from sqlalchemy import text as sa_text
from sqlalchemy.dialects.postgresql import JSON, UUID
from sqlalchemy.orm import Mapped, mapped_column

from src.insights.core.database import Base


class MeetingModel(Base):
    """Uploaded meeting recording.

    Status moves uploaded -> processing -> completed | failed and is only
    mutated by the pipeline.
    """

    __tablename__ = "meetings"
    __table_args__ = (Index("ix_meetings_owner_id", "owner_id"),)

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
        server_default=sa_text("gen_random_uuid()"),
    )
    owner_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False)
    title: Mapped[str] = mapped_column(String(500), nullable=False)
    audio_path: Mapped[str] = mapped_column(String(1000), nullable=False)
    audio_size: Mapped[int | None] = mapped_column(Integer, nullable=True)
    duration_seconds: Mapped[float | None] = mapped_column(Float, nullable=True)
    language: Mapped[str | None] = mapped_column(String(20), nullable=True)
    status: Mapped[str] = mapped_column(
        String(50),
        default="uploaded",
        server_default=sa_text("'uploaded'"),
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
    )
    updated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        onupdate=func.now(),
        nullable=True,
    )


class AnalysisModel(Base):
    """One pipeline run.

    raw_transcript is checkpointed as soon as transcription succeeds;
    analysis_json holds the normalized document once extraction succeeds.
    """

    __tablename__ = "analyses"
    __table_args__ = (Index("ix_analyses_meeting_id", "meeting_id"),)

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
        server_default=sa_text("gen_random_uuid()"),
    )
    meeting_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False)
    status: Mapped[str] = mapped_column(
        String(50),
        default="processing",
        server_default=sa_text("'processing'"),
    )
    model: Mapped[str | None] = mapped_column(String(200), nullable=True)
    raw_transcript: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    analysis_json: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    token_usage: Mapped[dict] = mapped_column(
        JSON, default=dict, server_default=sa_text("'{}'::json")
    )
    confidence_score: Mapped[float | None] = mapped_column(Float, nullable=True)
    processing_duration_ms: Mapped[int | None] = mapped_column(Integer, nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    error_code: Mapped[str | None] = mapped_column(String(100), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
    )
    updated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        onupdate=func.now(),
        nullable=True,
    )


class TranscriptSegmentModel(Base):
    """Speaker-attributed transcript segment of one analysis."""

    __tablename__ = "transcript_segments"
    __table_args__ = (
        Index("ix_transcript_segments_analysis_id", "analysis_id"),
        CheckConstraint("end_sec >= start_sec", name="ck_segment_end_after_start"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
        server_default=sa_text("gen_random_uuid()"),
    )
    analysis_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False)
    speaker: Mapped[str | None] = mapped_column(Text, nullable=True)
    start_sec: Mapped[float] = mapped_column(Float, nullable=False)
    end_sec: Mapped[float] = mapped_column(Float, nullable=False)
    text: Mapped[str] = mapped_column(Text, nullable=False)
    confidence: Mapped[float | None] = mapped_column(Float, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
    )


class ActionItemModel(Base):
    """Action item of one analysis, extracted or created by hand."""

    __tablename__ = "action_items"
    __table_args__ = (Index("ix_action_items_analysis_id", "analysis_id"),)

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
        server_default=sa_text("gen_random_uuid()"),
    )
    analysis_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False)
    text: Mapped[str] = mapped_column(Text, nullable=False)
    owner: Mapped[str | None] = mapped_column(Text, nullable=True)
    due_date: Mapped[str | None] = mapped_column(Text, nullable=True)
    priority: Mapped[str] = mapped_column(
        String(20),
        default="medium",
        server_default=sa_text("'medium'"),
    )
    timestamp_sec: Mapped[float | None] = mapped_column(Float, nullable=True)
    confidence: Mapped[float | None] = mapped_column(Float, nullable=True)
    completed: Mapped[bool] = mapped_column(
        Boolean,
        default=False,
        server_default=sa_text("false"),
    )
    completed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
    )
