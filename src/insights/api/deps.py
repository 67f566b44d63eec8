"""FastAPI dependencies resolving shared collaborators from app.state.

The lifespan handler puts the repository, status bus and pipeline context
factory on ``app.state``; tests assign doubles to the same attributes.
"""

from __future__ import annotations

import uuid
from collections.abc import Callable

from fastapi import HTTPException, Request, status

from src.insights.events.bus import StatusBus
from src.insights.meetings.repository import MeetingRepository
from src.insights.pipeline.context import PipelineContext


def _state_attr(request: Request, name: str, label: str):
    value = getattr(request.app.state, name, None)
    if value is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=f"{label} not initialized",
        )
    return value


def get_meeting_repository(request: Request) -> MeetingRepository:
    """Retrieve MeetingRepository from app.state, 503 if not available."""
    return _state_attr(request, "meeting_repository", "Meeting repository")


def get_status_bus(request: Request) -> StatusBus:
    """Retrieve StatusBus from app.state, 503 if not available."""
    return _state_attr(request, "status_bus", "Status bus")


def get_pipeline_context_factory(request: Request) -> Callable[[], PipelineContext]:
    """Retrieve the per-invocation PipelineContext factory, 503 if not available."""
    return _state_attr(request, "pipeline_context_factory", "Pipeline")


def parse_uuid(value: str, label: str) -> str:
    """Validate a path id; unknown shapes are reported as not found."""
    try:
        return str(uuid.UUID(value))
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"{label} not found: {value}",
        ) from None
