"""Pipeline trigger endpoint.

``POST /api/v1/process-audio`` runs one analysis for an uploaded meeting
and answers once the run has finished, successfully or not. Error bodies
carry the human-readable message in ``details`` and the FailureCode in
``code``.
"""

from __future__ import annotations

from collections.abc import Callable

import structlog
from fastapi import APIRouter, Depends, Request, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from src.insights.api.deps import get_pipeline_context_factory
from src.insights.pipeline.context import PipelineContext
from src.insights.pipeline.errors import (
    FailureCode,
    MeetingNotFound,
    MeetingNotProcessable,
    PipelineAlreadyRunning,
)
from src.insights.pipeline.orchestrator import PipelineOrchestrator

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/api/v1", tags=["pipeline"])


class ProcessAudioRequest(BaseModel):
    """Trigger body as sent by the upload client."""

    model_config = ConfigDict(populate_by_name=True)

    meeting_id: str = Field(alias="meetingId", min_length=1)
    audio_path: str = Field(alias="audioPath", min_length=1)


def _error(status_code: int, error: str, details: str, code: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"error": error, "details": details, "code": code},
    )


@router.post("/process-audio")
async def process_audio(
    request: Request,
    context_factory: Callable[[], PipelineContext] = Depends(get_pipeline_context_factory),
) -> JSONResponse:
    """Run the analysis pipeline for one meeting recording."""
    try:
        body = ProcessAudioRequest.model_validate(await request.json())
    except (ValueError, ValidationError):
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"error": "Missing required parameters"},
        )

    orchestrator = PipelineOrchestrator(context_factory())
    try:
        outcome = await orchestrator.run(body.meeting_id, body.audio_path)
    except MeetingNotFound as exc:
        return _error(status.HTTP_404_NOT_FOUND, "Meeting not found", exc.message, exc.code.value)
    except MeetingNotProcessable as exc:
        return _error(
            status.HTTP_409_CONFLICT, "Meeting cannot be processed", exc.message, exc.code.value
        )
    except PipelineAlreadyRunning as exc:
        return _error(
            status.HTTP_409_CONFLICT, "Processing already in progress", exc.message, exc.code.value
        )
    except Exception as exc:
        logger.exception("process_audio_failed", meeting_id=body.meeting_id)
        return _error(
            status.HTTP_500_INTERNAL_SERVER_ERROR,
            "Processing failed",
            str(exc),
            FailureCode.UNKNOWN.value,
        )

    if not outcome.success:
        return _error(
            status.HTTP_500_INTERNAL_SERVER_ERROR,
            "Processing failed",
            outcome.error_message or "",
            outcome.error_code or FailureCode.UNKNOWN.value,
        )

    return JSONResponse(
        status_code=status.HTTP_200_OK,
        content={"success": True, "analysisId": str(outcome.analysis_id)},
    )
