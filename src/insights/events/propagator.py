"""Status propagation -- durable status writes plus change-feed events.

The database row is written first and is the source of truth; the event is
published afterwards. A publish failure is logged and swallowed because
observers can always recover the state from the row.
"""

from __future__ import annotations

import structlog

from src.insights.events.bus import StatusBus
from src.insights.events.schemas import StatusEntity, StatusEvent
from src.insights.meetings.repository import MeetingRepository
from src.insights.meetings.schemas import AnalysisStatus, Meeting, MeetingStatus

logger = structlog.get_logger(__name__)


class StatusPropagator:
    """Writes meeting status and broadcasts status events for a meeting."""

    def __init__(self, repository: MeetingRepository, bus: StatusBus) -> None:
        self._repository = repository
        self._bus = bus

    async def set_meeting_status(
        self,
        meeting_id: str,
        status: MeetingStatus,
        analysis_id: str | None = None,
        error_message: str | None = None,
        error_code: str | None = None,
    ) -> Meeting:
        """Persist a meeting transition, then publish it.

        Raises:
            StatusTransitionError: If the meeting is already terminal.
        """
        meeting = await self._repository.update_meeting_status(meeting_id, status)
        await self.publish(
            StatusEvent(
                meeting_id=meeting_id,
                entity=StatusEntity.MEETING,
                status=status.value,
                analysis_id=analysis_id,
                error_message=error_message,
                error_code=error_code,
            )
        )
        return meeting

    async def analysis_changed(
        self,
        meeting_id: str,
        analysis_id: str,
        status: AnalysisStatus,
        error_message: str | None = None,
        error_code: str | None = None,
    ) -> None:
        """Publish an analysis transition already written by the repository."""
        await self.publish(
            StatusEvent(
                meeting_id=meeting_id,
                entity=StatusEntity.ANALYSIS,
                status=status.value,
                analysis_id=analysis_id,
                error_message=error_message,
                error_code=error_code,
            )
        )

    async def publish(self, event: StatusEvent) -> None:
        try:
            await self._bus.publish(event)
        except Exception:
            logger.warning(
                "status_publish_failed",
                meeting_id=event.meeting_id,
                entity=event.entity.value,
                status=event.status,
                exc_info=True,
            )
