"""Domain-specific exception classes for the quotation core.

Every error carries enough context (entity, invariant) for a caller to act
on it.  ``retryable`` tells the API layer whether the caller may simply try
again later.
"""

from __future__ import annotations

from typing import Any

from quotation.domain.types import CaseStatus


class QuotationError(Exception):
    """Base class for all domain errors in the quotation core."""

    code: str = "QUOTATION_ERROR"
    retryable: bool = False

    def __init__(self, message: str, **details: Any) -> None:
        self.details = details
        super().__init__(message)


class GuardViolation(QuotationError):
    """Raised when an operation is illegal in the case's current state.

    Attributes:
        current_state: The state the case was in when the operation was attempted.
        event: The event or operation that was rejected.
    """

    code = "CONFLICT_INVALID_STATE"

    def __init__(
        self,
        current_state: CaseStatus,
        event: str,
        reason: str | None = None,
        **details: Any,
    ) -> None:
        self.current_state = current_state
        self.event = event
        message = f"Cannot apply event '{event}' in state '{current_state}'"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message, current_state=str(current_state), event=event, **details)


class ConcurrentRunError(QuotationError):
    """Raised when pricing is triggered while a run is already in flight."""

    code = "CONCURRENT_RUN"
    retryable = True

    def __init__(self, case_id: str, running_run_number: int) -> None:
        self.case_id = case_id
        self.running_run_number = running_run_number
        super().__init__(
            f"Pricing run #{running_run_number} is already running for case {case_id}",
            case_id=case_id,
            running_run_number=running_run_number,
        )


class NotAuthenticated(QuotationError):
    """Raised before any state is touched when the caller has no identity."""

    code = "AUTH_INVALID_JWT"


class NotFoundError(QuotationError):
    """Raised when a referenced entity does not exist."""

    code = "NOT_FOUND"

    def __init__(self, entity: str, entity_id: str) -> None:
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"{entity} {entity_id} not found", entity=entity, entity_id=entity_id)


class InvariantViolation(QuotationError):
    """Raised when a store-level invariant would be broken by a write.

    Attributes:
        entity: The entity kind the write targeted (e.g. ``"pricing_run"``).
        invariant: Short name of the violated rule.
    """

    code = "VALIDATION_FAILED"

    def __init__(self, entity: str, invariant: str, message: str, **details: Any) -> None:
        self.entity = entity
        self.invariant = invariant
        super().__init__(message, entity=entity, invariant=invariant, **details)


class ReanalysisBlocked(QuotationError):
    """Raised when re-analysis is requested on unchanged sources without ``force``."""

    code = "REANALYSIS_UNCHANGED"

    def __init__(self, case_id: str, fingerprint: str) -> None:
        self.case_id = case_id
        self.fingerprint = fingerprint
        super().__init__(
            "No new source emails since the last analysis; pass force to re-run",
            case_id=case_id,
            fingerprint=fingerprint,
        )


class UpstreamTimeout(QuotationError):
    """Raised when the pricing engine or the delivery channel does not answer in time."""

    code = "EDGE_TIMEOUT"
    retryable = True

    def __init__(self, upstream: str, timeout_seconds: float) -> None:
        self.upstream = upstream
        self.timeout_seconds = timeout_seconds
        super().__init__(
            f"{upstream} did not respond within {timeout_seconds}s; retry later",
            upstream=upstream,
            timeout_seconds=timeout_seconds,
        )


class PricingEngineError(QuotationError):
    """Raised when the pricing engine rejects or fails a request."""

    code = "PRICING_FAILED"


class DeliveryError(QuotationError):
    """Raised when the outbound channel refuses a quotation email."""

    code = "DELIVERY_FAILED"
    retryable = True


class DocumentGenerationError(QuotationError):
    """Raised when the document service cannot render a quotation version."""

    code = "DOCUMENT_FAILED"
    retryable = True
