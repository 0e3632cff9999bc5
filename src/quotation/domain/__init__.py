"""Domain types, models, and errors for the quotation core."""

from quotation.domain.errors import (
    ConcurrentRunError,
    DeliveryError,
    DocumentGenerationError,
    GuardViolation,
    InvariantViolation,
    NotAuthenticated,
    NotFoundError,
    PricingEngineError,
    QuotationError,
    ReanalysisBlocked,
    UpstreamTimeout,
)
from quotation.domain.models import (
    AnalysisFreshness,
    Caller,
    EmailDraft,
    Gap,
    PricingFailure,
    PricingOutcome,
    PricingRun,
    PricingSuccess,
    PricingTotals,
    QuotationVersion,
    QuoteCase,
    SendResult,
)
from quotation.domain.types import (
    ActorType,
    CaseStatus,
    DeliveryStatus,
    DraftStatus,
    GapStatus,
    PricingRunStatus,
    VersionStatus,
)

__all__ = [
    "ActorType",
    "AnalysisFreshness",
    "Caller",
    "CaseStatus",
    "ConcurrentRunError",
    "DeliveryError",
    "DeliveryStatus",
    "DocumentGenerationError",
    "DraftStatus",
    "EmailDraft",
    "Gap",
    "GapStatus",
    "GuardViolation",
    "InvariantViolation",
    "NotAuthenticated",
    "NotFoundError",
    "PricingEngineError",
    "PricingFailure",
    "PricingOutcome",
    "PricingRun",
    "PricingRunStatus",
    "PricingSuccess",
    "PricingTotals",
    "QuotationError",
    "QuotationVersion",
    "QuoteCase",
    "ReanalysisBlocked",
    "SendResult",
    "UpstreamTimeout",
    "VersionStatus",
]
