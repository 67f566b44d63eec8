"""REST and Server-Sent Events endpoints for meetings.

Registration of uploaded recordings, meeting and analysis reads, and the
per-meeting status feed. The feed replays retained events first and then
streams new ones, so a client renders each change incrementally instead of
reloading the whole meeting.
"""

from __future__ import annotations

from collections.abc import AsyncIterator

import structlog
from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, Field

from src.insights.api.deps import get_meeting_repository, get_status_bus, parse_uuid
from src.insights.events.bus import StatusBus, stream_id_key
from src.insights.events.schemas import StatusEntity, StatusEvent
from src.insights.meetings.repository import MeetingRepository
from src.insights.meetings.schemas import (
    ActionItem,
    Analysis,
    Meeting,
    MeetingCreate,
    MeetingStatus,
    TranscriptSegment,
)

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/api/v1/meetings", tags=["meetings"])


# ── Response Schemas ─────────────────────────────────────────────────────────


class AnalysisDetailResponse(BaseModel):
    """Latest analysis of a meeting with its derived rows."""

    analysis: Analysis
    transcript_segments: list[TranscriptSegment] = Field(default_factory=list)
    action_items: list[ActionItem] = Field(default_factory=list)


# ── Endpoints ────────────────────────────────────────────────────────────────


@router.post("", response_model=Meeting, status_code=status.HTTP_201_CREATED)
async def register_meeting(
    body: MeetingCreate,
    repo: MeetingRepository = Depends(get_meeting_repository),
) -> Meeting:
    """Register an uploaded recording in ``uploaded`` status."""
    meeting = await repo.create_meeting(body)
    logger.info("meeting_registered", meeting_id=str(meeting.id), audio_path=meeting.audio_path)
    return meeting


@router.get("/{meeting_id}", response_model=Meeting)
async def get_meeting(
    meeting_id: str,
    repo: MeetingRepository = Depends(get_meeting_repository),
) -> Meeting:
    """Get meeting details by ID."""
    meeting = await repo.get_meeting(parse_uuid(meeting_id, "Meeting"))
    if meeting is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Meeting not found: {meeting_id}",
        )
    return meeting


@router.get("/{meeting_id}/analysis", response_model=AnalysisDetailResponse)
async def get_latest_analysis(
    meeting_id: str,
    repo: MeetingRepository = Depends(get_meeting_repository),
) -> AnalysisDetailResponse:
    """Latest analysis with segments (by start) and action items (by creation)."""
    analysis = await repo.get_latest_analysis(parse_uuid(meeting_id, "Meeting"))
    if analysis is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"No analysis for meeting: {meeting_id}",
        )
    analysis_id = str(analysis.id)
    return AnalysisDetailResponse(
        analysis=analysis,
        transcript_segments=await repo.list_transcript_segments(analysis_id),
        action_items=await repo.list_action_items(analysis_id),
    )


@router.get("/{meeting_id}/events")
async def stream_status_events(
    meeting_id: str,
    request: Request,
    repo: MeetingRepository = Depends(get_meeting_repository),
    bus: StatusBus = Depends(get_status_bus),
) -> StreamingResponse:
    """Server-Sent Events feed of a meeting's status changes.

    Honors ``Last-Event-ID`` so a reconnecting client resumes after the last
    event it received. The stream ends after the meeting reaches a terminal
    status. For a meeting that is already terminal the retained events after
    ``Last-Event-ID`` are replayed and the stream ends at once.
    """
    meeting_id = parse_uuid(meeting_id, "Meeting")
    meeting = await repo.get_meeting(meeting_id)
    if meeting is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Meeting not found: {meeting_id}",
        )
    last_id = request.headers.get("Last-Event-ID") or "0"

    async def event_stream() -> AsyncIterator[str]:
        if meeting.status.is_terminal:
            after = stream_id_key(last_id)
            for event in await bus.history(meeting_id):
                if stream_id_key(event.stream_id) > after:
                    yield _sse_frame(event)
            logger.debug("status_stream_closed", meeting_id=meeting_id, reason="terminal")
            return

        async for event in bus.listen(meeting_id, last_id=last_id):
            yield _sse_frame(event)
            if (
                event.entity == StatusEntity.MEETING
                and MeetingStatus(event.status).is_terminal
            ):
                break

    return StreamingResponse(
        event_stream(),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )


def _sse_frame(event: StatusEvent) -> str:
    return (
        f"id: {event.stream_id}\n"
        f"event: {event.entity.value}\n"
        f"data: {event.model_dump_json(exclude={'stream_id'})}\n\n"
    )
