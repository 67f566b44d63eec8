"""Transcription stage -- speech-to-text over the OpenAI audio API.

Sends the raw audio as a multipart request and returns the full text plus
time-coded segments. Error bodies are mapped to distinct failure kinds:
quota exhaustion and invalid credentials are operator-actionable and never
retried; other failures are usually transient and are retried with
backoff (tenacity) before surfacing as TranscriptionOtherFailure.
"""

from __future__ import annotations

import posixpath

import httpx
import structlog
from pydantic import ValidationError

from src.insights.pipeline.errors import (
    TranscriptionAuthFailure,
    TranscriptionOtherFailure,
    TranscriptionQuotaExceeded,
)
from src.insights.pipeline.retry import stage_retrying
from src.insights.pipeline.schemas import TranscriptionResult

logger = structlog.get_logger(__name__)

JSON_RESPONSE_FORMATS = ("json", "verbose_json")
QUOTA_ERROR_CODE = "insufficient_quota"
AUTH_ERROR_CODE = "invalid_api_key"


def audio_filename(audio_path: str) -> str:
    """Upload filename keeping the original extension (``wav`` if none)."""
    base = posixpath.basename(audio_path)
    _, ext = posixpath.splitext(base)
    return f"audio.{ext.lstrip('.').lower() or 'wav'}"


def _error_details(response: httpx.Response) -> tuple[str | None, str]:
    """Extract (error.code, error.message) from an OpenAI error body."""
    try:
        body = response.json()
    except ValueError:
        return None, response.text
    error = body.get("error") if isinstance(body, dict) else None
    if not isinstance(error, dict):
        return None, response.text
    return error.get("code"), error.get("message") or response.text


def _is_transient(exc: BaseException) -> bool:
    if isinstance(exc, httpx.TransportError):
        return True
    if isinstance(exc, httpx.HTTPStatusError):
        code, _ = _error_details(exc.response)
        if code in (QUOTA_ERROR_CODE, AUTH_ERROR_CODE):
            return False
        status_code = exc.response.status_code
        return status_code == 429 or status_code >= 500
    return False


def map_transcription_error(response: httpx.Response):
    """Map a failed response to the matching transcription failure."""
    code, message = _error_details(response)
    if code == QUOTA_ERROR_CODE:
        return TranscriptionQuotaExceeded()
    if code == AUTH_ERROR_CODE or response.status_code == 401:
        return TranscriptionAuthFailure()
    return TranscriptionOtherFailure(
        f"OpenAI transcription failed: {message}",
        retryable=response.status_code == 429 or response.status_code >= 500,
    )


class TranscriptionClient:
    """Speech-to-text client (Whisper-compatible transcription endpoint).

    Args:
        api_key: OpenAI API key.
        base_url: API root, e.g. ``https://api.openai.com/v1``.
        model: Transcription model identifier.
        timeout: Request timeout in seconds.
        max_attempts: Attempts for transient failures.
        retry_min_wait: Backoff lower bound in seconds.
        retry_max_wait: Backoff upper bound in seconds.
        transport: Optional httpx transport (tests use httpx.MockTransport).
    """

    def __init__(
        self,
        api_key: str,
        base_url: str = "https://api.openai.com/v1",
        model: str = "whisper-1",
        timeout: float = 600.0,
        max_attempts: int = 3,
        retry_min_wait: float = 1.0,
        retry_max_wait: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._api_key = api_key
        self._url = f"{base_url.rstrip('/')}/audio/transcriptions"
        self.model = model
        self._timeout = timeout
        self._max_attempts = max_attempts
        self._retry_min_wait = retry_min_wait
        self._retry_max_wait = retry_max_wait
        self._transport = transport

    async def transcribe(
        self,
        audio: bytes,
        filename: str = "audio.wav",
        language: str | None = "en",
        response_format: str = "verbose_json",
    ) -> TranscriptionResult:
        """Transcribe audio bytes.

        Args:
            audio: Raw audio content.
            filename: Upload filename; its extension tells the service the format.
            language: ISO-639-1 language hint, or None to auto-detect.
            response_format: ``verbose_json`` (segments) or ``json`` (text only).

        Returns:
            TranscriptionResult with text, segments and detected language.

        Raises:
            TranscriptionQuotaExceeded: Account quota exhausted.
            TranscriptionAuthFailure: API key missing or rejected.
            TranscriptionOtherFailure: Any other service or transport failure.
        """
        if response_format not in JSON_RESPONSE_FORMATS:
            raise ValueError(f"Unsupported response_format: {response_format}")
        if not self._api_key:
            raise TranscriptionAuthFailure()

        logger.info(
            "transcription_started",
            model=self.model,
            size_bytes=len(audio),
            language=language,
        )

        retrying = stage_retrying(
            "transcription",
            _is_transient,
            max_attempts=self._max_attempts,
            min_wait=self._retry_min_wait,
            max_wait=self._retry_max_wait,
        )
        try:
            payload = await retrying(
                self._post_once, audio, filename, language, response_format
            )
        except httpx.HTTPStatusError as exc:
            raise map_transcription_error(exc.response) from exc
        except httpx.HTTPError as exc:
            raise TranscriptionOtherFailure(
                f"OpenAI transcription failed: {exc}", retryable=True
            ) from exc

        try:
            result = TranscriptionResult.model_validate(payload)
        except ValidationError as exc:
            raise TranscriptionOtherFailure(
                f"OpenAI transcription failed: unexpected response shape ({exc.error_count()} errors)"
            ) from exc

        logger.info(
            "transcription_completed",
            segments=len(result.segments),
            language=result.language,
            duration=result.effective_duration,
        )
        return result

    async def _post_once(
        self,
        audio: bytes,
        filename: str,
        language: str | None,
        response_format: str,
    ) -> dict:
        data = {"model": self.model, "response_format": response_format}
        if language:
            data["language"] = language

        async with httpx.AsyncClient(
            headers={"Authorization": f"Bearer {self._api_key}"},
            timeout=self._timeout,
            transport=self._transport,
        ) as client:
            response = await client.post(
                self._url,
                data=data,
                files={"file": (filename, audio)},
            )
            response.raise_for_status()
            try:
                return response.json()
            except ValueError as exc:
                content_type = response.headers.get("content-type", "unknown")
                raise TranscriptionOtherFailure(
                    f"OpenAI transcription failed: response was not JSON ({content_type})"
                ) from exc
