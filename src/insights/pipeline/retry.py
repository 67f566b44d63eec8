"""Bounded retry with exponential backoff for external calls inside a stage.

Retries only failures the caller classifies as transient. A run is never
restarted or resumed as a whole; once a stage gives up, the orchestrator
records the failure.
"""

from __future__ import annotations

from collections.abc import Callable

import structlog
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

logger = structlog.get_logger(__name__)


def _log_retry(stage: str) -> Callable[[RetryCallState], None]:
    def before_sleep(retry_state: RetryCallState) -> None:
        exc = retry_state.outcome.exception() if retry_state.outcome else None
        logger.warning(
            "stage_call_retrying",
            stage=stage,
            attempt=retry_state.attempt_number,
            wait_seconds=round(retry_state.next_action.sleep, 2)
            if retry_state.next_action
            else None,
            error=str(exc) if exc else None,
        )

    return before_sleep


def stage_retrying(
    stage: str,
    is_transient: Callable[[BaseException], bool],
    max_attempts: int = 3,
    min_wait: float = 1.0,
    max_wait: float = 10.0,
) -> AsyncRetrying:
    """Build a tenacity AsyncRetrying for one stage call.

    Args:
        stage: Stage name for log context.
        is_transient: Predicate deciding whether an exception is retried.
        max_attempts: Total attempts including the first.
        min_wait: Lower bound of the exponential backoff, seconds.
        max_wait: Upper bound of the exponential backoff, seconds.

    Returns:
        AsyncRetrying that re-raises the last exception when exhausted.
    """
    return AsyncRetrying(
        stop=stop_after_attempt(max(1, max_attempts)),
        wait=wait_exponential(multiplier=min_wait, min=min_wait, max=max_wait),
        retry=retry_if_exception(is_transient),
        before_sleep=_log_retry(stage),
        reraise=True,
    )
