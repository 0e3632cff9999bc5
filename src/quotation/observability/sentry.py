"""Sentry error reporting, fed by structlog.

``init_sentry`` starts the SDK (no-op without a DSN) and filters out domain
errors that describe a caller mistake rather than a fault.  ERROR-level
structlog events reach Sentry through :func:`get_sentry_processor`, tagged
with the case, request and correlation identifiers found in the event.
"""

from __future__ import annotations

import logging
from typing import Any

import sentry_sdk
import structlog
from sentry_sdk.integrations.logging import LoggingIntegration
from structlog_sentry import SentryProcessor

from quotation.domain.errors import QuotationError

TAG_KEYS = ["case_id", "request_id", "correlation_id", "upstream"]


def drop_expected_errors(event: dict[str, Any], hint: dict[str, Any]) -> dict[str, Any] | None:
    """``before_send`` hook: skip non-retryable domain errors.

    Guard violations, missing entities and failed authentication are answered
    with a 4xx and need no alert.  Retryable errors (timeouts, delivery
    failures) are still reported.
    """
    exc_info = hint.get("exc_info")
    if exc_info:
        exc = exc_info[1]
        if isinstance(exc, QuotationError) and not exc.retryable:
            return None
    return event


def init_sentry(dsn: str, environment: str = "development") -> bool:
    """Initialize the Sentry SDK.

    Args:
        dsn: Sentry DSN.  Empty string disables Sentry.
        environment: Reported environment name.

    Returns:
        True if the SDK was initialized.
    """
    if not dsn:
        return False

    sentry_sdk.init(
        dsn=dsn,
        environment=environment,
        traces_sample_rate=0.1,
        send_default_pii=False,
        before_send=drop_expected_errors,
        integrations=[
            # structlog-sentry reports errors; stdlib logging capture stays off.
            LoggingIntegration(event_level=None, level=None),
        ],
    )
    return True


def get_sentry_processor() -> structlog.types.Processor:
    """Return a structlog processor forwarding ERROR events to Sentry.

    Place it after ``add_log_level`` and before the renderer.
    """
    return SentryProcessor(event_level=logging.ERROR, tag_keys=TAG_KEYS)
