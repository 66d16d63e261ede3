"""Retry policy for upstream graph API calls.

Only transient failures (transport errors and 5xx) are retried. Absence
(404) and client errors propagate immediately.
"""

from __future__ import annotations

from tenacity import (
    RetryCallState,
    retry,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential_jitter,
)

from readergraph.core.exceptions import FetchError
from readergraph.core.logging import get_logger

logger = get_logger(__name__)


def _log_fetch_retry(retry_state: RetryCallState) -> None:
    exc = retry_state.outcome.exception() if retry_state.outcome else None
    logger.warning(
        "fetch_retry",
        fn=getattr(retry_state.fn, "__qualname__", None),
        attempt=retry_state.attempt_number,
        sleep_s=getattr(retry_state.next_action, "sleep", None),
        status_code=getattr(exc, "status_code", None),
        error=str(exc) if exc else None,
    )


def is_retryable(exc: BaseException) -> bool:
    if not isinstance(exc, FetchError):
        return False
    return exc.status_code is None or exc.status_code >= 500


def retry_fetch(max_attempts: int = 3, initial: float = 0.5, jitter: float = 0.5):
    """Retry decorator for graph API reads with exponential backoff + jitter."""
    return retry(
        stop=stop_after_attempt(max_attempts),
        wait=wait_exponential_jitter(initial=initial, max=8, jitter=jitter),
        retry=retry_if_exception(is_retryable),
        before_sleep=_log_fetch_retry,
        reraise=True,
    )
