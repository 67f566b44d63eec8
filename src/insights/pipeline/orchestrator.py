"""Pipeline orchestrator -- drives one meeting through analysis.

Sequence per run: create the analysis (checkpoint), move the meeting to
processing, download, transcribe, checkpoint the raw transcript, extract,
normalize, persist, complete the meeting. Every stage failure is caught
exactly once here, recorded on both the analysis and the meeting with its
FailureCode, and returned as a failed PipelineOutcome.

Precondition failures (unknown meeting, terminal meeting, run already in
progress) are raised to the caller before anything is written.
"""

from __future__ import annotations

import time
import uuid
from statistics import fmean

import structlog

from src.insights.core.monitoring import pipeline_runs_total, track_stage
from src.insights.meetings.schemas import AnalysisDocument, AnalysisStatus, Meeting, MeetingStatus
from src.insights.pipeline.context import PipelineContext
from src.insights.pipeline.errors import (
    OPERATOR_ACTIONABLE,
    MeetingNotFound,
    MeetingNotProcessable,
    PersistenceFailure,
    PipelineAlreadyRunning,
    PipelineError,
    UnknownFailure,
)
from src.insights.pipeline.schemas import PipelineOutcome, TranscriptionResult
from src.insights.pipeline.transcription import audio_filename

logger = structlog.get_logger(__name__)


def mean_confidence(
    document: AnalysisDocument, transcript: TranscriptionResult
) -> float | None:
    """Mean segment confidence: document segments first, else transcription segments."""
    scores = [s.confidence for s in document.transcript_segments if s.confidence is not None]
    if not scores:
        scores = [s.confidence for s in transcript.segments if s.confidence is not None]
    if not scores:
        return None
    return round(fmean(scores), 4)


class PipelineOrchestrator:
    """Runs the analysis pipeline for one meeting per call to ``run``."""

    def __init__(self, context: PipelineContext) -> None:
        self._ctx = context

    async def run(self, meeting_id: str, audio_path: str) -> PipelineOutcome:
        """Process a meeting's recording end to end.

        Args:
            meeting_id: Meeting UUID string.
            audio_path: Object path of the recording in storage.

        Returns:
            PipelineOutcome; ``success`` is False when a stage failed.

        Raises:
            MeetingNotFound: No meeting with this id.
            MeetingNotProcessable: Meeting already completed or failed.
            PipelineAlreadyRunning: Another run holds the meeting's lock.
        """
        await self._check_processable(meeting_id)

        if not await self._ctx.run_lock.acquire(meeting_id):
            raise PipelineAlreadyRunning(
                f"Meeting {meeting_id} is already being processed"
            )
        try:
            # A run that held the lock may have finished since the first check
            await self._check_processable(meeting_id)
            return await self._run_locked(meeting_id, audio_path)
        finally:
            await self._ctx.run_lock.release(meeting_id)

    async def _check_processable(self, meeting_id: str) -> Meeting:
        meeting = await self._load_meeting(meeting_id)
        if meeting.status.is_terminal:
            raise MeetingNotProcessable(
                f"Meeting {meeting_id} is already {meeting.status.value}"
            )
        return meeting

    async def _load_meeting(self, meeting_id: str) -> Meeting:
        try:
            uuid.UUID(meeting_id)
        except ValueError as exc:
            raise MeetingNotFound(f"Meeting not found: {meeting_id}") from exc
        meeting = await self._ctx.repository.get_meeting(meeting_id)
        if meeting is None:
            raise MeetingNotFound(f"Meeting not found: {meeting_id}")
        return meeting

    async def _run_locked(self, meeting_id: str, audio_path: str) -> PipelineOutcome:
        ctx = self._ctx
        started = time.perf_counter()
        log = logger.bind(meeting_id=meeting_id)
        analysis_id: str | None = None

        try:
            analysis = await ctx.repository.create_analysis(meeting_id)
            analysis_id = str(analysis.id)
            log = log.bind(analysis_id=analysis_id)
            log.info("pipeline_started", audio_path=audio_path)

            await ctx.propagator.analysis_changed(
                meeting_id, analysis_id, AnalysisStatus.PROCESSING
            )
            await ctx.propagator.set_meeting_status(
                meeting_id, MeetingStatus.PROCESSING, analysis_id=analysis_id
            )

            async with track_stage("download"):
                audio = await ctx.storage.download(audio_path)

            async with track_stage("transcription"):
                transcript = await ctx.transcriber.transcribe(
                    audio,
                    filename=audio_filename(audio_path),
                    language=ctx.transcription_language,
                )
            await self._checkpoint_transcript(meeting_id, analysis_id, transcript)

            async with track_stage("extraction"):
                extraction = await ctx.extractor.extract(transcript.segments_for_prompt())

            async with track_stage("normalization"):
                document = ctx.normalizer.normalize(extraction.content)

            token_usage = {
                "transcription_segments": len(transcript.segments),
                **extraction.usage.model_dump(),
            }
            async with track_stage("persistence"):
                report = await ctx.persister.persist(
                    analysis_id,
                    document=document,
                    token_usage=token_usage,
                    confidence_score=mean_confidence(document, transcript),
                    model_name=extraction.model,
                    processing_duration_ms=self._elapsed_ms(started),
                )

            await ctx.propagator.analysis_changed(
                meeting_id, analysis_id, AnalysisStatus.READY
            )
            await ctx.propagator.set_meeting_status(
                meeting_id, MeetingStatus.COMPLETED, analysis_id=analysis_id
            )
        except PipelineError as exc:
            return await self._record_failure(meeting_id, analysis_id, exc, started)
        except Exception as exc:
            log.exception("pipeline_unexpected_error")
            failure = UnknownFailure(str(exc) or type(exc).__name__)
            return await self._record_failure(meeting_id, analysis_id, failure, started)

        pipeline_runs_total.labels(outcome="success", code="none").inc()
        log.info(
            "pipeline_completed",
            duration_ms=self._elapsed_ms(started),
            segments_inserted=report.segments_inserted,
            action_items_inserted=report.action_items_inserted,
            derived_rows_complete=report.complete,
        )
        return PipelineOutcome(
            success=True,
            meeting_id=uuid.UUID(meeting_id),
            analysis_id=uuid.UUID(analysis_id),
            document=document,
            persistence=report,
        )

    async def _checkpoint_transcript(
        self, meeting_id: str, analysis_id: str, transcript: TranscriptionResult
    ) -> None:
        try:
            await self._ctx.repository.save_raw_transcript(
                analysis_id, transcript.model_dump(mode="json")
            )
            await self._ctx.repository.update_meeting_media(
                meeting_id, transcript.effective_duration, transcript.language
            )
        except Exception as exc:
            raise PersistenceFailure(
                f"Failed to store transcript checkpoint: {exc}", table="analyses"
            ) from exc

    async def _record_failure(
        self,
        meeting_id: str,
        analysis_id: str | None,
        error: PipelineError,
        started: float,
    ) -> PipelineOutcome:
        ctx = self._ctx
        code = error.code.value
        log = logger.bind(meeting_id=meeting_id, analysis_id=analysis_id, code=code)
        log_method = log.error if error.code in OPERATOR_ACTIONABLE else log.warning
        log_method("pipeline_failed", error=error.message)

        if analysis_id is not None:
            try:
                await ctx.repository.fail_analysis(
                    analysis_id,
                    error_message=error.message,
                    error_code=code,
                    processing_duration_ms=self._elapsed_ms(started),
                )
            except Exception:
                # The row keeps its stored status; announce nothing it does not hold
                log.error("failure_record_failed", entity="analysis", exc_info=True)
            else:
                await ctx.propagator.analysis_changed(
                    meeting_id,
                    analysis_id,
                    AnalysisStatus.FAILED,
                    error_message=error.message,
                    error_code=code,
                )

        try:
            await ctx.propagator.set_meeting_status(
                meeting_id,
                MeetingStatus.FAILED,
                analysis_id=analysis_id,
                error_message=error.message,
                error_code=code,
            )
        except Exception:
            log.error("failure_record_failed", entity="meeting", exc_info=True)

        pipeline_runs_total.labels(outcome="failed", code=code).inc()
        return PipelineOutcome(
            success=False,
            meeting_id=uuid.UUID(meeting_id),
            analysis_id=uuid.UUID(analysis_id) if analysis_id else None,
            error_code=code,
            error_message=error.message,
        )

    @staticmethod
    def _elapsed_ms(started: float) -> int:
        return int((time.perf_counter() - started) * 1000)
