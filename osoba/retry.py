"""Bounded retry for transient GitHub failures.

Watchers wrap their list and status calls in call_with_retry so a single
API hiccup does not cost a whole tick. Only errors classified as retryable
by the GitHub client are retried; everything else propagates immediately.
"""

from collections.abc import Callable
from typing import TypeVar

from tenacity import (
    RetryCallState,
    Retrying,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential_jitter,
)

from osoba.github_client import is_retryable_error
from osoba.logger import get_logger

logger = get_logger(__name__)

T = TypeVar("T")

DEFAULT_ATTEMPTS = 3
DEFAULT_BASE_DELAY = 1.0
MAX_DELAY = 60.0


def _log_retry(retry_state: RetryCallState) -> None:
    outcome = retry_state.outcome
    error = outcome.exception() if outcome else None
    delay = retry_state.next_action.sleep if retry_state.next_action else 0
    logger.warning(
        f"Attempt {retry_state.attempt_number} failed: {error}. Retrying in {delay:.1f}s..."
    )


def call_with_retry(
    operation: Callable[[], T],
    *,
    attempts: int = DEFAULT_ATTEMPTS,
    base_delay: float = DEFAULT_BASE_DELAY,
    sleep: Callable[[float], None] | None = None,
) -> T:
    """Call operation, retrying retryable errors with exponential backoff.

    Delays grow as base_delay * 2^(attempt-1) plus jitter, capped at MAX_DELAY.

    Args:
        operation: Zero-argument callable to run
        attempts: Total attempts including the first
        base_delay: Initial delay in seconds
        sleep: Replacement sleep function (tests pass a no-op)

    Returns:
        The operation's return value

    Raises:
        The last error once attempts are exhausted, or the first
        non-retryable error.
    """
    kwargs = {}
    if sleep is not None:
        kwargs["sleep"] = sleep

    retrying = Retrying(
        stop=stop_after_attempt(attempts),
        wait=wait_exponential_jitter(initial=base_delay, max=MAX_DELAY, jitter=base_delay * 0.2),
        retry=retry_if_exception(is_retryable_error),
        before_sleep=_log_retry,
        reraise=True,
        **kwargs,
    )
    return retrying(operation)
