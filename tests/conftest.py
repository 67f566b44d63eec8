"""Shared fixtures and test doubles for the meeting insights tests.

Provides:
- InMemoryMeetingRepository: mirrors MeetingRepository, enforces the same
  status guards, and can be told to fail individual calls
- InMemoryStatusBus: records published events, replays them from listen()
- InMemoryRunLock: RunLock without Redis
- Stage doubles (AsyncMock) and a PipelineContext wired from them
"""

from __future__ import annotations

import copy
import json
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any
from unittest.mock import AsyncMock

import pytest

from src.insights.events.propagator import StatusPropagator
from src.insights.events.schemas import StatusEvent
from src.insights.meetings.repository import StatusTransitionError, check_meeting_transition
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
    TranscriptSegment,
)
from src.insights.pipeline.context import PipelineContext
from src.insights.pipeline.normalizer import ResultNormalizer
from src.insights.pipeline.persistence import AnalysisPersister
from src.insights.pipeline.schemas import ExtractionResult, TokenUsage, TranscriptionResult

OWNER_ID = uuid.uuid4()
BASE_TIME = datetime(2026, 10, 1, 9, 0, tzinfo=timezone.utc)


class InMemoryMeetingRepository:
    """In-memory test double for MeetingRepository.

    Set ``fail_on[method_name] = exc`` to make a method raise. ``calls``
    records method names in invocation order.
    """

    def __init__(self) -> None:
        self.meetings: dict[str, Meeting] = {}
        self.analyses: dict[str, Analysis] = {}
        self.segments: dict[str, list[TranscriptSegment]] = {}
        self.action_items: dict[str, list[ActionItem]] = {}
        self.fail_on: dict[str, Exception] = {}
        self.calls: list[str] = []
        self._tick = 0

    def _now(self) -> datetime:
        # Strictly increasing timestamps keep "latest" deterministic
        self._tick += 1
        return BASE_TIME + timedelta(seconds=self._tick)

    def _enter(self, name: str) -> None:
        self.calls.append(name)
        if name in self.fail_on:
            raise self.fail_on[name]

    # ── Meetings ─────────────────────────────────────────────────────────

    async def create_meeting(self, data: MeetingCreate) -> Meeting:
        self._enter("create_meeting")
        now = self._now()
        meeting = Meeting(
            owner_id=data.owner_id,
            title=data.title,
            audio_path=data.audio_path,
            audio_size=data.audio_size,
            created_at=now,
            updated_at=now,
        )
        self.meetings[str(meeting.id)] = meeting
        return meeting

    async def get_meeting(self, meeting_id: str) -> Meeting | None:
        self._enter("get_meeting")
        return self.meetings.get(meeting_id)

    async def update_meeting_status(self, meeting_id: str, status: MeetingStatus) -> Meeting:
        self._enter("update_meeting_status")
        meeting = self.meetings.get(meeting_id)
        if meeting is None:
            raise ValueError(f"Meeting not found: id={meeting_id}")
        check_meeting_transition(meeting.status, status)
        updated = meeting.model_copy(update={"status": status, "updated_at": self._now()})
        self.meetings[meeting_id] = updated
        return updated

    async def update_meeting_media(
        self, meeting_id: str, duration_seconds: float | None, language: str | None
    ) -> None:
        self._enter("update_meeting_media")
        meeting = self.meetings[meeting_id]
        self.meetings[meeting_id] = meeting.model_copy(
            update={
                "duration_seconds": duration_seconds
                if duration_seconds is not None
                else meeting.duration_seconds,
                "language": language or meeting.language,
            }
        )

    # ── Analyses ─────────────────────────────────────────────────────────

    async def create_analysis(self, meeting_id: str) -> Analysis:
        self._enter("create_analysis")
        now = self._now()
        analysis = Analysis(meeting_id=uuid.UUID(meeting_id), created_at=now, updated_at=now)
        self.analyses[str(analysis.id)] = analysis
        return analysis

    async def get_analysis(self, analysis_id: str) -> Analysis | None:
        self._enter("get_analysis")
        return self.analyses.get(analysis_id)

    async def get_latest_analysis(self, meeting_id: str) -> Analysis | None:
        self._enter("get_latest_analysis")
        candidates = [a for a in self.analyses.values() if str(a.meeting_id) == meeting_id]
        if not candidates:
            return None
        return max(candidates, key=lambda a: a.created_at)

    def _processing(self, analysis_id: str) -> Analysis:
        analysis = self.analyses.get(analysis_id)
        if analysis is None:
            raise ValueError(f"Analysis not found: id={analysis_id}")
        if analysis.status != AnalysisStatus.PROCESSING:
            raise StatusTransitionError(f"Analysis {analysis_id} is already {analysis.status.value}")
        return analysis

    async def save_raw_transcript(self, analysis_id: str, raw_transcript: dict[str, Any]) -> None:
        self._enter("save_raw_transcript")
        analysis = self._processing(analysis_id)
        self.analyses[analysis_id] = analysis.model_copy(update={"raw_transcript": raw_transcript})

    async def complete_analysis(
        self,
        analysis_id: str,
        document: AnalysisDocument,
        token_usage: dict[str, Any],
        confidence_score: float | None,
        model_name: str | None,
        processing_duration_ms: int | None,
    ) -> Analysis:
        self._enter("complete_analysis")
        analysis = self._processing(analysis_id)
        updated = analysis.model_copy(
            update={
                "status": AnalysisStatus.READY,
                "analysis_json": document,
                "token_usage": token_usage,
                "confidence_score": confidence_score,
                "model": model_name,
                "processing_duration_ms": processing_duration_ms,
                "updated_at": self._now(),
            }
        )
        self.analyses[analysis_id] = updated
        return updated

    async def fail_analysis(
        self,
        analysis_id: str,
        error_message: str,
        error_code: str,
        processing_duration_ms: int | None = None,
    ) -> Analysis:
        self._enter("fail_analysis")
        analysis = self._processing(analysis_id)
        updated = analysis.model_copy(
            update={
                "status": AnalysisStatus.FAILED,
                "error_message": error_message,
                "error_code": error_code,
                "processing_duration_ms": processing_duration_ms,
                "updated_at": self._now(),
            }
        )
        self.analyses[analysis_id] = updated
        return updated

    # ── Derived Rows ─────────────────────────────────────────────────────

    async def insert_transcript_segments(
        self, analysis_id: str, segments: list[DocumentSegment]
    ) -> int:
        self._enter("insert_transcript_segments")
        rows = [
            TranscriptSegment(
                analysis_id=uuid.UUID(analysis_id),
                speaker=s.speaker,
                start_sec=s.start,
                end_sec=s.end,
                text=s.text,
                confidence=s.confidence,
            )
            for s in segments
        ]
        self.segments.setdefault(analysis_id, []).extend(rows)
        return len(rows)

    async def insert_action_items(self, analysis_id: str, items: list[DocumentActionItem]) -> int:
        self._enter("insert_action_items")
        rows = [
            ActionItem(
                analysis_id=uuid.UUID(analysis_id),
                text=item.text,
                owner=item.owner,
                due_date=item.due_date,
                priority=item.priority,
                timestamp_sec=item.timestamp,
                confidence=item.confidence,
                created_at=self._now(),
            )
            for item in items
        ]
        self.action_items.setdefault(analysis_id, []).extend(rows)
        return len(rows)

    async def list_transcript_segments(self, analysis_id: str) -> list[TranscriptSegment]:
        self._enter("list_transcript_segments")
        return sorted(self.segments.get(analysis_id, []), key=lambda s: s.start_sec)

    async def list_action_items(self, analysis_id: str) -> list[ActionItem]:
        self._enter("list_action_items")
        return list(self.action_items.get(analysis_id, []))

    async def create_action_item(self, analysis_id: str, data: ActionItemCreate) -> ActionItem:
        self._enter("create_action_item")
        item = ActionItem(
            analysis_id=uuid.UUID(analysis_id),
            text=data.text,
            owner=data.owner,
            due_date=data.due_date,
            priority=data.priority,
            confidence=1.0,
            created_at=self._now(),
        )
        self.action_items.setdefault(analysis_id, []).append(item)
        return item

    async def set_action_item_completed(self, item_id: str, completed: bool) -> ActionItem | None:
        self._enter("set_action_item_completed")
        for analysis_id, items in self.action_items.items():
            for index, item in enumerate(items):
                if str(item.id) == item_id:
                    updated = item.model_copy(
                        update={
                            "completed": completed,
                            "completed_at": self._now() if completed else None,
                        }
                    )
                    items[index] = updated
                    return updated
        return None


class InMemoryStatusBus:
    """Test double for StatusBus; ``fail`` makes publish raise."""

    def __init__(self) -> None:
        self.events: list[StatusEvent] = []
        self.fail: Exception | None = None

    async def publish(self, event: StatusEvent) -> str:
        if self.fail is not None:
            raise self.fail
        stream_id = f"{len(self.events) + 1}-0"
        self.events.append(event.model_copy(update={"stream_id": stream_id}))
        return stream_id

    async def history(self, meeting_id: str) -> list[StatusEvent]:
        return [e for e in self.events if e.meeting_id == meeting_id]

    async def listen(self, meeting_id: str, last_id: str = "0", **_: Any):
        after = int(last_id.split("-")[0]) if last_id not in ("0", "$") else 0
        for event in list(self.events):
            if event.meeting_id == meeting_id and int(event.stream_id.split("-")[0]) > after:
                yield event

    def trail(self, meeting_id: str) -> list[tuple[str, str]]:
        """(entity, status) pairs in publish order."""
        return [(e.entity.value, e.status) for e in self.events if e.meeting_id == meeting_id]


class InMemoryRunLock:
    """RunLock without Redis."""

    def __init__(self) -> None:
        self.held: set[str] = set()
        self.released: list[str] = []

    async def acquire(self, meeting_id: str) -> bool:
        if meeting_id in self.held:
            return False
        self.held.add(meeting_id)
        return True

    async def release(self, meeting_id: str) -> None:
        self.held.discard(meeting_id)
        self.released.append(meeting_id)


# ── Sample payloads ──────────────────────────────────────────────────────────


def make_transcription(num_segments: int = 3) -> TranscriptionResult:
    return TranscriptionResult.model_validate(
        {
            "text": " ".join(f"Segment {i}." for i in range(num_segments)),
            "language": "english",
            "duration": 5.0 * num_segments,
            "segments": [
                {
                    "id": i,
                    "start": 5.0 * i,
                    "end": 5.0 * (i + 1),
                    "text": f"Segment {i}.",
                    "avg_logprob": -0.1,
                    "no_speech_prob": 0.01,
                }
                for i in range(num_segments)
            ],
        }
    )


SAMPLE_ANALYSIS: dict[str, Any] = {
    "summary": "The team agreed on the Q4 launch plan.",
    "action_items": [
        {
            "id": "a1",
            "text": "Draft the launch announcement",
            "owner": "Dana",
            "timestamp": 4.2,
            "due_date": "2026-10-25",
            "confidence": 0.92,
            "priority": "high",
        },
        {
            "text": "Book the venue",
            "owner": "Lee",
            "timestamp": 11.0,
            "confidence": 0.8,
            "priority": "Medium",
        },
    ],
    "timeline_events": [
        {"id": "t1", "time": 0.0, "title": "Kickoff", "description": "Agenda", "importance": 0.5}
    ],
    "sentiment": [{"time": 10.0, "value": 0.4}, {"time": 0.0, "value": 0.1}],
    "speakers": [
        {"name": "Dana", "speaking_time_seconds": 9.0, "speaking_percentage": 60.0},
        {"name": "Lee", "speaking_time_seconds": 6.0, "speaking_percentage": 40.0},
    ],
    "transcript_segments": [
        {"id": "s1", "speaker": "Dana", "start": 0.0, "end": 5.0, "text": "Segment 0.", "confidence": 0.9},
        {"id": "s2", "speaker": "Lee", "start": 5.0, "end": 10.0, "text": "Segment 1.", "confidence": 0.8},
        {"id": "s3", "speaker": "Dana", "start": 10.0, "end": 15.0, "text": "Segment 2.", "confidence": 0.7},
    ],
}


def make_extraction(content: str | None = None) -> ExtractionResult:
    return ExtractionResult(
        content=content if content is not None else json.dumps(SAMPLE_ANALYSIS),
        model="gpt-4o-mini-2024-07-18",
        usage=TokenUsage(prompt_tokens=900, completion_tokens=300, total_tokens=1200),
    )


# ── Fixtures ─────────────────────────────────────────────────────────────────


@pytest.fixture
def sample_analysis() -> dict[str, Any]:
    """Well-formed extraction output: 3 segments, 2 action items."""
    return copy.deepcopy(SAMPLE_ANALYSIS)


@pytest.fixture
def repo() -> InMemoryMeetingRepository:
    return InMemoryMeetingRepository()


@pytest.fixture
def bus() -> InMemoryStatusBus:
    return InMemoryStatusBus()


@pytest.fixture
def run_lock() -> InMemoryRunLock:
    return InMemoryRunLock()


@pytest.fixture
async def meeting(repo: InMemoryMeetingRepository) -> Meeting:
    meeting = await repo.create_meeting(
        MeetingCreate(
            owner_id=OWNER_ID,
            title="Q4 planning",
            audio_path="recordings/q4-planning.m4a",
            audio_size=1024,
        )
    )
    repo.calls.clear()
    return meeting


@pytest.fixture
def storage() -> AsyncMock:
    mock = AsyncMock()
    mock.download = AsyncMock(return_value=b"RIFF....WAVEfmt ")
    return mock


@pytest.fixture
def transcriber() -> AsyncMock:
    mock = AsyncMock()
    mock.transcribe = AsyncMock(return_value=make_transcription())
    return mock


@pytest.fixture
def extractor() -> AsyncMock:
    mock = AsyncMock()
    mock.extract = AsyncMock(return_value=make_extraction())
    return mock


@pytest.fixture
def pipeline_context(
    repo: InMemoryMeetingRepository,
    bus: InMemoryStatusBus,
    run_lock: InMemoryRunLock,
    storage: AsyncMock,
    transcriber: AsyncMock,
    extractor: AsyncMock,
) -> PipelineContext:
    return PipelineContext(
        repository=repo,
        propagator=StatusPropagator(repo, bus),
        storage=storage,
        transcriber=transcriber,
        extractor=extractor,
        normalizer=ResultNormalizer(),
        persister=AnalysisPersister(repo),
        run_lock=run_lock,
        transcription_language="en",
    )
