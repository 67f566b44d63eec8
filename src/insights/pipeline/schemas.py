"""Pydantic schemas passed between pipeline stages."""

from __future__ import annotations

import math
import uuid
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from src.insights.meetings.schemas import AnalysisDocument


class WhisperSegment(BaseModel):
    """One time-coded segment from the speech-to-text service."""

    model_config = ConfigDict(extra="allow")

    id: int | None = None
    start: float
    end: float
    text: str
    avg_logprob: float | None = None
    no_speech_prob: float | None = None

    @property
    def confidence(self) -> float | None:
        """Per-segment confidence signal: exp(avg_logprob) clipped to [0, 1]."""
        if self.avg_logprob is None:
            return None
        return min(1.0, max(0.0, math.exp(self.avg_logprob)))


class TranscriptionResult(BaseModel):
    """Verbose transcription response: full text plus segments."""

    model_config = ConfigDict(extra="allow")

    text: str = ""
    segments: list[WhisperSegment] = Field(default_factory=list)
    language: str | None = None
    duration: float | None = None

    @property
    def effective_duration(self) -> float | None:
        if self.duration is not None:
            return self.duration
        if self.segments:
            return max(s.end for s in self.segments)
        return None

    def segments_for_prompt(self) -> list[dict[str, Any]]:
        """Segment list serialized verbatim into the extraction prompt."""
        return [s.model_dump(mode="json", exclude_none=True) for s in self.segments]


class TokenUsage(BaseModel):
    """Token usage reported by the extraction call."""

    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0


class ExtractionResult(BaseModel):
    """Raw completion text from the extraction stage."""

    content: str
    model: str
    usage: TokenUsage = Field(default_factory=TokenUsage)


class PersistenceReport(BaseModel):
    """What the persistence layer managed to write."""

    analysis_id: str
    segments_inserted: int = 0
    action_items_inserted: int = 0
    failures: list[str] = Field(default_factory=list)

    @property
    def complete(self) -> bool:
        return not self.failures


class PipelineOutcome(BaseModel):
    """Result of one orchestrator run, success or failure."""

    success: bool
    meeting_id: uuid.UUID
    analysis_id: uuid.UUID | None = None
    error_code: str | None = None
    error_message: str | None = None
    document: AnalysisDocument | None = None
    persistence: PersistenceReport | None = None
