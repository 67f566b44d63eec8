"""Extraction stage -- turns transcript segments into a structured analysis.

A single chat completion through litellm. The completion text is returned
untouched; JSON parsing and validation belong to the normalizer.
"""

from __future__ import annotations

import json
from typing import Any

import litellm
import structlog

from src.insights.pipeline.errors import ExtractionRequestFailure
from src.insights.pipeline.retry import stage_retrying
from src.insights.pipeline.schemas import ExtractionResult, TokenUsage

logger = structlog.get_logger(__name__)

SYSTEM_PROMPT = (
    "You are a meeting analyst that returns only valid JSON responses. "
    "Extract structured meeting data from transcripts."
)

_DOCUMENT_SHAPE = """{
  "summary": "Brief 1-2 sentence summary of the meeting",
  "action_items": [
    {
      "id": "unique-id",
      "text": "Action item description",
      "owner": "Person responsible",
      "timestamp": 123.45,
      "due_date": "2024-01-15",
      "confidence": 0.95,
      "priority": "medium"
    }
  ],
  "timeline_events": [
    {
      "id": "unique-id",
      "time": 123.45,
      "title": "Event title",
      "description": "Brief description",
      "importance": 0.8
    }
  ],
  "sentiment": [
    {
      "time": 0,
      "value": 0.2
    }
  ],
  "speakers": [
    {
      "name": "Speaker Name",
      "speaking_time_seconds": 45.2,
      "speaking_percentage": 35.5
    }
  ],
  "transcript_segments": [
    {
      "id": "unique-id",
      "speaker": "Speaker Name",
      "start": 0.0,
      "end": 5.2,
      "text": "Transcript text",
      "confidence": 0.95
    }
  ]
}"""

_TRANSIENT_ERRORS: tuple[type[BaseException], ...] = (
    litellm.APIConnectionError,
    litellm.Timeout,
    litellm.RateLimitError,
    litellm.ServiceUnavailableError,
    litellm.InternalServerError,
)


def build_extraction_prompt(segments: list[dict[str, Any]]) -> str:
    """User instruction with the segment list embedded as JSON."""
    return (
        "You are a meeting analyst that returns ONLY valid JSON. Given the "
        "following timestamped transcript segments, produce a JSON response "
        f"with this exact structure:\n\n{_DOCUMENT_SHAPE}\n\n"
        f"Transcript segments: {json.dumps(segments)}\n\n"
        "Return only valid JSON, no other text."
    )


def _is_transient(exc: BaseException) -> bool:
    return isinstance(exc, _TRANSIENT_ERRORS)


class ExtractionClient:
    """Chat-completion client for structured meeting extraction."""

    def __init__(
        self,
        model: str = "openai/gpt-4o-mini",
        api_key: str | None = None,
        temperature: float = 0.1,
        max_tokens: int = 2000,
        timeout: float = 300.0,
        max_attempts: int = 3,
        retry_min_wait: float = 1.0,
        retry_max_wait: float = 10.0,
    ) -> None:
        self.model = model
        self._api_key = api_key or None
        self._temperature = temperature
        self._max_tokens = max_tokens
        self._timeout = timeout
        self._max_attempts = max_attempts
        self._retry_min_wait = retry_min_wait
        self._retry_max_wait = retry_max_wait

    async def extract(self, segments: list[dict[str, Any]]) -> ExtractionResult:
        """Run the extraction call over transcript segments.

        Args:
            segments: Transcription segments, serialized verbatim into the prompt.

        Returns:
            ExtractionResult with the raw completion text and token usage.

        Raises:
            ExtractionRequestFailure: The completion call failed.
        """
        messages = [
            {"role": "system", "content": SYSTEM_PROMPT},
            {"role": "user", "content": build_extraction_prompt(segments)},
        ]
        logger.info("extraction_started", model=self.model, segments=len(segments))

        retrying = stage_retrying(
            "extraction",
            _is_transient,
            max_attempts=self._max_attempts,
            min_wait=self._retry_min_wait,
            max_wait=self._retry_max_wait,
        )
        try:
            response = await retrying(self._complete_once, messages)
        except Exception as exc:
            raise ExtractionRequestFailure(f"OpenAI analysis failed: {exc}") from exc

        try:
            content = response.choices[0].message.content or ""
        except (AttributeError, IndexError) as exc:
            raise ExtractionRequestFailure(
                "OpenAI analysis failed: response contained no choices"
            ) from exc

        usage = TokenUsage()
        if getattr(response, "usage", None):
            usage = TokenUsage(
                prompt_tokens=response.usage.prompt_tokens or 0,
                completion_tokens=response.usage.completion_tokens or 0,
                total_tokens=response.usage.total_tokens or 0,
            )

        logger.info(
            "extraction_completed",
            model=getattr(response, "model", None) or self.model,
            total_tokens=usage.total_tokens,
            content_length=len(content),
        )
        return ExtractionResult(
            content=content,
            model=getattr(response, "model", None) or self.model,
            usage=usage,
        )

    async def _complete_once(self, messages: list[dict]) -> Any:
        return await litellm.acompletion(
            model=self.model,
            messages=messages,
            temperature=self._temperature,
            max_tokens=self._max_tokens,
            timeout=self._timeout,
            api_key=self._api_key,
        )
