"""Retry policy for upstream calls that may time out."""

from quotation.resilience.retry import DEFAULT_MAX_RETRIES, backoff, resilient_call

__all__ = [
    "DEFAULT_MAX_RETRIES",
    "backoff",
    "resilient_call",
]
