"""Normalizes raw extraction output into an AnalysisDocument.

Pure and deterministic: the same raw text always produces an equal
document, including generated ids. Shapes that do not match the document
schema are rejected; only numeric ranges are clipped.
"""

from __future__ import annotations

import json
import re
import uuid

import structlog
from pydantic import ValidationError

from src.insights.meetings.schemas import (
    AnalysisDocument,
    DocumentActionItem,
    DocumentSegment,
    SentimentPoint,
    SpeakerStat,
    TimelineEvent,
)
from src.insights.pipeline.errors import (
    ExtractionParseFailure,
    ExtractionValidationFailure,
)

logger = structlog.get_logger(__name__)

# Namespace for ids assigned to items the model left without one
ITEM_ID_NAMESPACE = uuid.UUID("6f1c2a0e-7d3b-5c84-9e41-2b7a5d9c0f13")

_OPENING_FENCE = re.compile(r"^```[\w+-]*[ \t]*\n?")
_CLOSING_FENCE = re.compile(r"\n?[ \t]*```$")

PERCENTAGE_TOLERANCE = 1.0


def strip_fences(raw: str) -> str:
    """Remove surrounding whitespace and a markdown code fence, if present."""
    text = raw.strip()
    text = _OPENING_FENCE.sub("", text, count=1)
    text = _CLOSING_FENCE.sub("", text, count=1)
    return text.strip()


def _clip(value: float | None, low: float, high: float) -> float | None:
    if value is None:
        return None
    return min(high, max(low, value))


def _non_negative(value: float | None) -> float | None:
    if value is None:
        return None
    return max(0.0, value)


def stable_item_id(kind: str, position: int, content: str) -> str:
    return str(uuid.uuid5(ITEM_ID_NAMESPACE, f"{kind}:{position}:{content}"))


class ResultNormalizer:
    """Parse, validate and clip extraction output."""

    def normalize(self, raw: str) -> AnalysisDocument:
        """Turn raw completion text into a normalized document.

        Raises:
            ExtractionParseFailure: Text is not a JSON object.
            ExtractionValidationFailure: JSON does not match the document schema.
        """
        text = strip_fences(raw)
        try:
            data = json.loads(text)
        except json.JSONDecodeError as exc:
            raise ExtractionParseFailure(
                f"Failed to parse analysis output as JSON: {exc.msg} "
                f"(line {exc.lineno}, column {exc.colno})"
            ) from exc

        if not isinstance(data, dict):
            raise ExtractionParseFailure(
                f"Analysis output must be a JSON object, got {type(data).__name__}"
            )

        try:
            document = AnalysisDocument.model_validate(data)
        except ValidationError as exc:
            first = exc.errors()[0]
            location = ".".join(str(part) for part in first["loc"])
            raise ExtractionValidationFailure(
                f"Analysis output failed validation at {location}: {first['msg']} "
                f"({exc.error_count()} errors)"
            ) from exc

        normalized = AnalysisDocument(
            summary=document.summary.strip(),
            action_items=[
                self._action_item(i, item) for i, item in enumerate(document.action_items)
            ],
            timeline_events=[
                self._timeline_event(i, event)
                for i, event in enumerate(document.timeline_events)
            ],
            sentiment=self._sentiment(document.sentiment),
            speakers=self._speakers(document.speakers),
            transcript_segments=[
                self._segment(i, segment)
                for i, segment in enumerate(document.transcript_segments)
            ],
        )
        logger.debug(
            "analysis_normalized",
            action_items=len(normalized.action_items),
            segments=len(normalized.transcript_segments),
            timeline_events=len(normalized.timeline_events),
        )
        return normalized

    # ── Per-kind rules ───────────────────────────────────────────────────────

    @staticmethod
    def _action_item(position: int, item: DocumentActionItem) -> DocumentActionItem:
        return item.model_copy(
            update={
                "id": item.id or stable_item_id("action_item", position, item.text),
                "timestamp": _non_negative(item.timestamp),
                "confidence": _clip(item.confidence, 0.0, 1.0),
            }
        )

    @staticmethod
    def _timeline_event(position: int, event: TimelineEvent) -> TimelineEvent:
        return event.model_copy(
            update={
                "id": event.id
                or stable_item_id("timeline_event", position, f"{event.time}:{event.title}"),
                "time": max(0.0, event.time),
                "importance": _clip(event.importance, 0.0, 1.0),
            }
        )

    @staticmethod
    def _segment(position: int, segment: DocumentSegment) -> DocumentSegment:
        start = max(0.0, segment.start)
        end = max(start, segment.end)
        return segment.model_copy(
            update={
                "id": segment.id
                or stable_item_id(
                    "transcript_segment", position, f"{segment.start}:{segment.end}:{segment.text}"
                ),
                "start": start,
                "end": end,
                "confidence": _clip(segment.confidence, 0.0, 1.0),
            }
        )

    @staticmethod
    def _sentiment(points: list[SentimentPoint]) -> list[SentimentPoint]:
        clipped = [
            point.model_copy(
                update={"time": max(0.0, point.time), "value": _clip(point.value, -1.0, 1.0)}
            )
            for point in points
        ]
        return sorted(clipped, key=lambda point: point.time)

    @staticmethod
    def _speakers(speakers: list[SpeakerStat]) -> list[SpeakerStat]:
        speakers = [
            speaker.model_copy(
                update={
                    "speaking_time_seconds": max(0.0, speaker.speaking_time_seconds),
                    "speaking_percentage": _clip(speaker.speaking_percentage, 0.0, 100.0),
                }
            )
            for speaker in speakers
        ]
        if not speakers:
            return speakers

        total_pct = sum(s.speaking_percentage for s in speakers)
        total_time = sum(s.speaking_time_seconds for s in speakers)
        if abs(total_pct - 100.0) <= PERCENTAGE_TOLERANCE or total_time <= 0:
            return speakers

        # Percentages disagree with the reported times; derive from times
        return [
            s.model_copy(
                update={
                    "speaking_percentage": round(s.speaking_time_seconds / total_time * 100.0, 2)
                }
            )
            for s in speakers
        ]
