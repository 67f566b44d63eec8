"""Persistence stage -- stores the normalized document and derived rows.

The document write is the commit point of a run: once it succeeds the
analysis is ``ready`` and stays ``ready``. Transcript segment and action
item rows are a best-effort projection of the document; a failed insert
is reported, counted and logged, never rolled back into a run failure.
"""

from __future__ import annotations

from typing import Any

import structlog

from src.insights.core.monitoring import derived_rows_failures_total
from src.insights.meetings.repository import MeetingRepository
from src.insights.meetings.schemas import AnalysisDocument
from src.insights.pipeline.errors import PersistenceFailure
from src.insights.pipeline.schemas import PersistenceReport

logger = structlog.get_logger(__name__)


class AnalysisPersister:
    """Writes a completed analysis through the meeting repository."""

    def __init__(self, repository: MeetingRepository) -> None:
        self._repository = repository

    async def persist(
        self,
        analysis_id: str,
        document: AnalysisDocument,
        token_usage: dict[str, Any],
        confidence_score: float | None,
        model_name: str | None,
        processing_duration_ms: int | None,
    ) -> PersistenceReport:
        """Store the document, flip the analysis to ready, insert derived rows.

        Raises:
            PersistenceFailure: The document write failed (fatal).
        """
        try:
            await self._repository.complete_analysis(
                analysis_id,
                document=document,
                token_usage=token_usage,
                confidence_score=confidence_score,
                model_name=model_name,
                processing_duration_ms=processing_duration_ms,
            )
        except Exception as exc:
            raise PersistenceFailure(
                f"Failed to store analysis result: {exc}", fatal=True, table="analyses"
            ) from exc

        report = PersistenceReport(analysis_id=analysis_id)

        try:
            report.segments_inserted = await self._repository.insert_transcript_segments(
                analysis_id, document.transcript_segments
            )
        except Exception as exc:
            self._record_derived_failure(report, "transcript_segments", exc)

        try:
            report.action_items_inserted = await self._repository.insert_action_items(
                analysis_id, document.action_items
            )
        except Exception as exc:
            self._record_derived_failure(report, "action_items", exc)

        logger.info(
            "analysis_persisted",
            analysis_id=analysis_id,
            segments_inserted=report.segments_inserted,
            action_items_inserted=report.action_items_inserted,
            complete=report.complete,
        )
        return report

    @staticmethod
    def _record_derived_failure(
        report: PersistenceReport, table: str, exc: Exception
    ) -> None:
        failure = PersistenceFailure(
            f"Failed to insert {table}: {exc}", fatal=False, table=table
        )
        report.failures.append(failure.message)
        derived_rows_failures_total.labels(table=table).inc()
        logger.error(
            "derived_rows_insert_failed",
            analysis_id=report.analysis_id,
            table=table,
            error=str(exc),
        )
