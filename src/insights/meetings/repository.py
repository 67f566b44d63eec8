"""Meeting repository -- async CRUD for meetings, analyses and derived rows.

Provides MeetingRepository with the session_factory callable pattern.
Handles serialization between Pydantic schemas and SQLAlchemy models.
JSON columns use Pydantic model_dump(mode="json") for save and
model_validate() for load.

Status writes enforce the state machines: a meeting or analysis that has
reached a terminal status is never moved again.
"""

from __future__ import annotations

import uuid
from collections.abc import AsyncGenerator, Callable
from datetime import datetime, timezone
from typing import Any

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from src.insights.meetings.models import (
    ActionItemModel,
    AnalysisModel,
    MeetingModel,
    TranscriptSegmentModel,
)
from src.insights.meetings.schemas import (
    ActionItem,
    ActionItemCreate,
    Analysis,
    AnalysisDocument,
    AnalysisStatus,
    DocumentActionItem,
    DocumentSegment,
    Meeting,
    MeetingCreate,
    MeetingStatus,
    Priority,
    TranscriptSegment,
)

logger = structlog.get_logger(__name__)


class StatusTransitionError(ValueError):
    """Raised when a status write would leave a terminal status."""


_MEETING_TRANSITIONS: dict[MeetingStatus, set[MeetingStatus]] = {
    MeetingStatus.UPLOADED: {MeetingStatus.PROCESSING, MeetingStatus.FAILED},
    MeetingStatus.PROCESSING: {MeetingStatus.COMPLETED, MeetingStatus.FAILED},
    MeetingStatus.COMPLETED: set(),
    MeetingStatus.FAILED: set(),
}


def check_meeting_transition(current: MeetingStatus, new: MeetingStatus) -> None:
    """Validate a meeting status change.

    Re-writing the current non-terminal status is allowed (idempotent).

    Raises:
        StatusTransitionError: If the change is not permitted.
    """
    if current == new and not current.is_terminal:
        return
    if new not in _MEETING_TRANSITIONS[current]:
        raise StatusTransitionError(
            f"Meeting status cannot change from {current.value} to {new.value}"
        )


# ── Serialization Helpers ───────────────────────────────────────────────────


def _model_to_meeting(model: MeetingModel) -> Meeting:
    """Convert MeetingModel to Meeting schema."""
    return Meeting(
        id=model.id,
        owner_id=model.owner_id,
        title=model.title,
        audio_path=model.audio_path,
        audio_size=model.audio_size,
        duration_seconds=model.duration_seconds,
        language=model.language,
        status=MeetingStatus(model.status),
        created_at=model.created_at,
        updated_at=model.updated_at or model.created_at,
    )


def _model_to_analysis(model: AnalysisModel) -> Analysis:
    """Convert AnalysisModel to Analysis schema."""
    document = (
        AnalysisDocument.model_validate(model.analysis_json)
        if model.analysis_json is not None
        else None
    )
    return Analysis(
        id=model.id,
        meeting_id=model.meeting_id,
        status=AnalysisStatus(model.status),
        model=model.model,
        raw_transcript=model.raw_transcript,
        analysis_json=document,
        token_usage=model.token_usage or {},
        confidence_score=model.confidence_score,
        processing_duration_ms=model.processing_duration_ms,
        error_message=model.error_message,
        error_code=model.error_code,
        created_at=model.created_at,
        updated_at=model.updated_at or model.created_at,
    )


def _model_to_segment(model: TranscriptSegmentModel) -> TranscriptSegment:
    """Convert TranscriptSegmentModel to TranscriptSegment schema."""
    return TranscriptSegment(
        id=model.id,
        analysis_id=model.analysis_id,
        speaker=model.speaker,
        start_sec=model.start_sec,
        end_sec=model.end_sec,
        text=model.text,
        confidence=model.confidence,
    )


def _model_to_action_item(model: ActionItemModel) -> ActionItem:
    """Convert ActionItemModel to ActionItem schema."""
    return ActionItem(
        id=model.id,
        analysis_id=model.analysis_id,
        text=model.text,
        owner=model.owner,
        due_date=model.due_date,
        priority=Priority(model.priority),
        timestamp_sec=model.timestamp_sec,
        confidence=model.confidence,
        completed=model.completed,
        completed_at=model.completed_at,
        created_at=model.created_at,
    )


# ── Repository ──────────────────────────────────────────────────────────────


class MeetingRepository:
    """Async CRUD operations for meetings, analyses and derived rows.

    Args:
        session_factory: Async callable that yields AsyncSession instances.
    """

    def __init__(
        self, session_factory: Callable[..., AsyncGenerator[AsyncSession, None]]
    ) -> None:
        self._session_factory = session_factory

    # ── Meetings ─────────────────────────────────────────────────────────

    async def create_meeting(self, data: MeetingCreate) -> Meeting:
        """Register an uploaded recording in ``uploaded`` status."""
        async for session in self._session_factory():
            model = MeetingModel(
                owner_id=data.owner_id,
                title=data.title,
                audio_path=data.audio_path,
                audio_size=data.audio_size,
                status=MeetingStatus.UPLOADED.value,
            )
            session.add(model)
            await session.commit()
            await session.refresh(model)
            return _model_to_meeting(model)

    async def get_meeting(self, meeting_id: str) -> Meeting | None:
        """Get a meeting by ID.

        Args:
            meeting_id: Meeting UUID string.

        Returns:
            Meeting if found, None otherwise.
        """
        async for session in self._session_factory():
            model = await session.get(MeetingModel, uuid.UUID(meeting_id))
            if model is None:
                return None
            return _model_to_meeting(model)

    async def update_meeting_status(
        self, meeting_id: str, status: MeetingStatus
    ) -> Meeting:
        """Move a meeting to a new lifecycle status.

        Args:
            meeting_id: Meeting UUID string.
            status: New MeetingStatus.

        Returns:
            Updated Meeting.

        Raises:
            ValueError: If meeting not found.
            StatusTransitionError: If the meeting is already terminal.
        """
        async for session in self._session_factory():
            model = await session.get(
                MeetingModel, uuid.UUID(meeting_id), with_for_update=True
            )
            if model is None:
                raise ValueError(f"Meeting not found: id={meeting_id}")

            check_meeting_transition(MeetingStatus(model.status), status)
            model.status = status.value
            model.updated_at = datetime.now(timezone.utc)
            await session.commit()
            await session.refresh(model)
            return _model_to_meeting(model)

    async def update_meeting_media(
        self,
        meeting_id: str,
        duration_seconds: float | None,
        language: str | None,
    ) -> None:
        """Record duration and detected language from transcription."""
        async for session in self._session_factory():
            model = await session.get(MeetingModel, uuid.UUID(meeting_id))
            if model is None:
                raise ValueError(f"Meeting not found: id={meeting_id}")
            if duration_seconds is not None:
                model.duration_seconds = duration_seconds
            if language:
                model.language = language
            model.updated_at = datetime.now(timezone.utc)
            await session.commit()

    # ── Analyses ─────────────────────────────────────────────────────────

    async def create_analysis(self, meeting_id: str) -> Analysis:
        """Create an analysis in ``processing`` status bound to a meeting."""
        async for session in self._session_factory():
            model = AnalysisModel(
                meeting_id=uuid.UUID(meeting_id),
                status=AnalysisStatus.PROCESSING.value,
                token_usage={},
            )
            session.add(model)
            await session.commit()
            await session.refresh(model)
            return _model_to_analysis(model)

    async def get_analysis(self, analysis_id: str) -> Analysis | None:
        """Get an analysis by ID."""
        async for session in self._session_factory():
            model = await session.get(AnalysisModel, uuid.UUID(analysis_id))
            if model is None:
                return None
            return _model_to_analysis(model)

    async def get_latest_analysis(self, meeting_id: str) -> Analysis | None:
        """Get the most recently created analysis for a meeting."""
        async for session in self._session_factory():
            stmt = (
                select(AnalysisModel)
                .where(AnalysisModel.meeting_id == uuid.UUID(meeting_id))
                .order_by(AnalysisModel.created_at.desc())
                .limit(1)
            )
            result = await session.execute(stmt)
            model = result.scalar_one_or_none()
            if model is None:
                return None
            return _model_to_analysis(model)

    async def save_raw_transcript(
        self, analysis_id: str, raw_transcript: dict[str, Any]
    ) -> None:
        """Checkpoint the raw transcription response onto the analysis."""
        async for session in self._session_factory():
            model = await self._get_processing_analysis(session, analysis_id)
            model.raw_transcript = raw_transcript
            model.updated_at = datetime.now(timezone.utc)
            await session.commit()

    async def complete_analysis(
        self,
        analysis_id: str,
        document: AnalysisDocument,
        token_usage: dict[str, Any],
        confidence_score: float | None,
        model_name: str | None,
        processing_duration_ms: int | None,
    ) -> Analysis:
        """Store the normalized document and flip the analysis to ``ready``.

        Raises:
            ValueError: If analysis not found.
            StatusTransitionError: If the analysis is already terminal.
        """
        async for session in self._session_factory():
            model = await self._get_processing_analysis(session, analysis_id)
            model.analysis_json = document.model_dump(mode="json")
            model.status = AnalysisStatus.READY.value
            model.token_usage = token_usage
            model.confidence_score = confidence_score
            model.model = model_name
            model.processing_duration_ms = processing_duration_ms
            model.updated_at = datetime.now(timezone.utc)
            await session.commit()
            await session.refresh(model)
            return _model_to_analysis(model)

    async def fail_analysis(
        self,
        analysis_id: str,
        error_message: str,
        error_code: str,
        processing_duration_ms: int | None = None,
    ) -> Analysis:
        """Flip the analysis to ``failed`` with a human-readable message.

        Raises:
            ValueError: If analysis not found.
            StatusTransitionError: If the analysis is already terminal.
        """
        async for session in self._session_factory():
            model = await self._get_processing_analysis(session, analysis_id)
            model.status = AnalysisStatus.FAILED.value
            model.error_message = error_message
            model.error_code = error_code
            model.processing_duration_ms = processing_duration_ms
            model.updated_at = datetime.now(timezone.utc)
            await session.commit()
            await session.refresh(model)
            return _model_to_analysis(model)

    async def _get_processing_analysis(
        self, session: AsyncSession, analysis_id: str
    ) -> AnalysisModel:
        model = await session.get(
            AnalysisModel, uuid.UUID(analysis_id), with_for_update=True
        )
        if model is None:
            raise ValueError(f"Analysis not found: id={analysis_id}")
        if model.status != AnalysisStatus.PROCESSING.value:
            raise StatusTransitionError(
                f"Analysis {analysis_id} is already {model.status}"
            )
        return model

    # ── Derived Rows ─────────────────────────────────────────────────────

    async def insert_transcript_segments(
        self, analysis_id: str, segments: list[DocumentSegment]
    ) -> int:
        """Bulk-insert transcript segment rows. Returns the number inserted."""
        if not segments:
            return 0
        async for session in self._session_factory():
            aid = uuid.UUID(analysis_id)
            session.add_all(
                [
                    TranscriptSegmentModel(
                        analysis_id=aid,
                        speaker=s.speaker,
                        start_sec=s.start,
                        end_sec=s.end,
                        text=s.text,
                        confidence=s.confidence,
                    )
                    for s in segments
                ]
            )
            await session.commit()
            return len(segments)

    async def insert_action_items(
        self, analysis_id: str, items: list[DocumentActionItem]
    ) -> int:
        """Bulk-insert action item rows. Returns the number inserted."""
        if not items:
            return 0
        async for session in self._session_factory():
            aid = uuid.UUID(analysis_id)
            session.add_all(
                [
                    ActionItemModel(
                        analysis_id=aid,
                        text=item.text,
                        owner=item.owner,
                        due_date=item.due_date,
                        priority=item.priority.value,
                        timestamp_sec=item.timestamp,
                        confidence=item.confidence,
                        completed=False,
                    )
                    for item in items
                ]
            )
            await session.commit()
            return len(items)

    async def list_transcript_segments(
        self, analysis_id: str
    ) -> list[TranscriptSegment]:
        """Transcript segments of an analysis ordered by start offset."""
        async for session in self._session_factory():
            stmt = (
                select(TranscriptSegmentModel)
                .where(TranscriptSegmentModel.analysis_id == uuid.UUID(analysis_id))
                .order_by(TranscriptSegmentModel.start_sec)
            )
            result = await session.execute(stmt)
            return [_model_to_segment(m) for m in result.scalars().all()]

    async def list_action_items(self, analysis_id: str) -> list[ActionItem]:
        """Action items of an analysis ordered by creation time."""
        async for session in self._session_factory():
            stmt = (
                select(ActionItemModel)
                .where(ActionItemModel.analysis_id == uuid.UUID(analysis_id))
                .order_by(ActionItemModel.created_at)
            )
            result = await session.execute(stmt)
            return [_model_to_action_item(m) for m in result.scalars().all()]

    async def create_action_item(
        self, analysis_id: str, data: ActionItemCreate
    ) -> ActionItem:
        """Add a manually created action item (confidence 1.0)."""
        async for session in self._session_factory():
            model = ActionItemModel(
                analysis_id=uuid.UUID(analysis_id),
                text=data.text,
                owner=data.owner,
                due_date=data.due_date,
                priority=data.priority.value,
                confidence=1.0,
                completed=False,
            )
            session.add(model)
            await session.commit()
            await session.refresh(model)
            return _model_to_action_item(model)

    async def set_action_item_completed(
        self, item_id: str, completed: bool
    ) -> ActionItem | None:
        """Toggle completion; completed_at is set on completion, cleared otherwise."""
        async for session in self._session_factory():
            model = await session.get(ActionItemModel, uuid.UUID(item_id))
            if model is None:
                return None
            model.completed = completed
            model.completed_at = datetime.now(timezone.utc) if completed else None
            await session.commit()
            await session.refresh(model)
            return _model_to_action_item(model)
