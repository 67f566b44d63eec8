"""Error taxonomy for the meeting analysis pipeline.

Every stage failure is a PipelineError carrying an explicit FailureCode,
so the orchestrator and the HTTP layer branch on the code instead of
matching message text. The message stays human-readable and is what gets
stored on the analysis as ``error_message``.
"""

from __future__ import annotations

from enum import Enum


class FailureCode(str, Enum):
    """Machine-readable failure kinds."""

    DOWNLOAD_FAILED = "download_failed"
    TRANSCRIPTION_QUOTA_EXCEEDED = "transcription_quota_exceeded"
    TRANSCRIPTION_AUTH_FAILED = "transcription_auth_failed"
    TRANSCRIPTION_FAILED = "transcription_failed"
    EXTRACTION_REQUEST_FAILED = "extraction_request_failed"
    EXTRACTION_PARSE_FAILED = "extraction_parse_failed"
    EXTRACTION_VALIDATION_FAILED = "extraction_validation_failed"
    PERSISTENCE_FAILED = "persistence_failed"
    UNKNOWN = "unknown"

    # Preconditions (rejected before any analysis is created)
    MEETING_NOT_FOUND = "meeting_not_found"
    MEETING_NOT_PROCESSABLE = "meeting_not_processable"
    ALREADY_RUNNING = "already_running"


class PipelineError(Exception):
    """Base class for pipeline failures.

    Attributes:
        message: Human-readable description, safe to show to users.
        code: FailureCode for programmatic branching.
        retryable: Whether the underlying call may succeed if repeated.
        fatal: Whether the failure ends the run.
    """

    code: FailureCode = FailureCode.UNKNOWN
    retryable: bool = False
    fatal: bool = True

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class DownloadFailure(PipelineError):
    code = FailureCode.DOWNLOAD_FAILED


class TranscriptionQuotaExceeded(PipelineError):
    code = FailureCode.TRANSCRIPTION_QUOTA_EXCEEDED

    def __init__(
        self,
        message: str = (
            "OpenAI API quota exceeded. Please check your OpenAI billing "
            "and upgrade your plan."
        ),
    ) -> None:
        super().__init__(message)


class TranscriptionAuthFailure(PipelineError):
    code = FailureCode.TRANSCRIPTION_AUTH_FAILED

    def __init__(
        self,
        message: str = (
            "Invalid OpenAI API key. Please check your API key configuration."
        ),
    ) -> None:
        super().__init__(message)


class TranscriptionOtherFailure(PipelineError):
    """Generic speech-to-text failure; usually transient."""

    code = FailureCode.TRANSCRIPTION_FAILED

    def __init__(self, message: str, retryable: bool = False) -> None:
        super().__init__(message)
        self.retryable = retryable


class ExtractionRequestFailure(PipelineError):
    code = FailureCode.EXTRACTION_REQUEST_FAILED


class ExtractionParseFailure(PipelineError):
    """Extraction output is not a JSON object."""

    code = FailureCode.EXTRACTION_PARSE_FAILED


class ExtractionValidationFailure(ExtractionParseFailure):
    """Extraction output is JSON but does not match the document schema."""

    code = FailureCode.EXTRACTION_VALIDATION_FAILED


class PersistenceFailure(PipelineError):
    """Database write failure.

    Fatal when storing the normalized document; non-fatal for derived rows,
    where analysis_json remains the authoritative copy.
    """

    code = FailureCode.PERSISTENCE_FAILED

    def __init__(self, message: str, fatal: bool = True, table: str | None = None) -> None:
        super().__init__(message)
        self.fatal = fatal
        self.table = table


class UnknownFailure(PipelineError):
    code = FailureCode.UNKNOWN


# ── Preconditions ────────────────────────────────────────────────────────────


class MeetingNotFound(PipelineError):
    code = FailureCode.MEETING_NOT_FOUND


class MeetingNotProcessable(PipelineError):
    code = FailureCode.MEETING_NOT_PROCESSABLE


class PipelineAlreadyRunning(PipelineError):
    code = FailureCode.ALREADY_RUNNING


# Quota and credential problems need an operator, not a retry.
OPERATOR_ACTIONABLE = frozenset(
    {
        FailureCode.TRANSCRIPTION_QUOTA_EXCEEDED,
        FailureCode.TRANSCRIPTION_AUTH_FAILED,
    }
)
