"""Retry policy for slow upstream collaborators (pricing engine, delivery).

Only :class:`UpstreamTimeout` is retried, and at most ``max_retries`` times
(one by default).  Every other error surfaces immediately.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Any, TypeVar

import structlog
from tenacity import (
    RetryCallState,
    Retrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
    wait_random,
)
from tenacity.wait import wait_base

from quotation.domain.errors import UpstreamTimeout

logger = structlog.get_logger()

T = TypeVar("T")

DEFAULT_MAX_RETRIES = 1


def _before_sleep_log(retry_state: RetryCallState) -> None:
    """Log a warning before each retry attempt."""
    exception = retry_state.outcome.exception() if retry_state.outcome else None
    logger.warning(
        "upstream_retry",
        upstream=getattr(exception, "upstream", "unknown"),
        attempt=retry_state.attempt_number,
        wait=retry_state.next_action.sleep if retry_state.next_action else 0,
    )


def backoff(wait_initial: float, wait_max: float) -> wait_base:
    """Exponential backoff from *wait_initial* capped at *wait_max*, with jitter.

    Up to *wait_initial* seconds of random jitter are added to each wait.
    """
    return wait_exponential(multiplier=wait_initial, max=wait_max) + wait_random(0, wait_initial)


def resilient_call(
    upstream: str,
    func: Callable[..., T],
    *args: Any,
    max_retries: int = DEFAULT_MAX_RETRIES,
    wait_initial: float = 0.5,
    wait_max: float = 2.0,
    **kwargs: Any,
) -> T:
    """Call *func*, retrying on :class:`UpstreamTimeout` up to *max_retries* times.

    Args:
        upstream: Human-readable collaborator name (used in logs).
        func: The callable to invoke.
        *args: Positional arguments for *func*.
        max_retries: Automatic retries after the first attempt.
        wait_initial: Initial backoff in seconds.
        wait_max: Maximum backoff in seconds.
        **kwargs: Keyword arguments for *func*.

    Returns:
        Whatever *func* returns.

    Raises:
        UpstreamTimeout: If every attempt timed out.
        Exception: Any non-timeout error from *func*, unchanged.
    """
    retrying = Retrying(
        retry=retry_if_exception_type(UpstreamTimeout),
        stop=stop_after_attempt(max_retries + 1),
        wait=backoff(wait_initial, wait_max),
        before_sleep=_before_sleep_log,
        reraise=True,
    )
    try:
        return retrying(func, *args, **kwargs)
    except UpstreamTimeout as exc:
        logger.error(
            "upstream_retries_exhausted",
            upstream=upstream,
            attempts=max_retries + 1,
            timeout_seconds=exc.timeout_seconds,
        )
        raise
