"""Domain enumerations for the quotation orchestration core.

Every value here is persisted as a plain string, so members are
``StrEnum`` and their values never change once released.
"""

from enum import StrEnum


class CaseStatus(StrEnum):
    """States in the quote case lifecycle."""

    NEW_THREAD = "NEW_THREAD"
    RFQ_DETECTED = "RFQ_DETECTED"
    FACTS_PARTIAL = "FACTS_PARTIAL"
    NEED_INFO = "NEED_INFO"
    READY_TO_PRICE = "READY_TO_PRICE"
    PRICING_RUNNING = "PRICING_RUNNING"
    PRICED_DRAFT = "PRICED_DRAFT"
    HUMAN_REVIEW = "HUMAN_REVIEW"
    QUOTED_VERSIONED = "QUOTED_VERSIONED"
    SENT = "SENT"
    ARCHIVED = "ARCHIVED"


class GapStatus(StrEnum):
    """Lifecycle of a single information gap."""

    OPEN = "open"
    RESOLVED = "resolved"


class PricingRunStatus(StrEnum):
    """Outcome of one pricing engine invocation."""

    RUNNING = "running"
    SUCCESS = "success"
    FAILED = "failed"


class VersionStatus(StrEnum):
    """Editorial status of a quotation version."""

    DRAFT = "draft"
    FINAL = "final"
    SUPERSEDED = "superseded"


class DraftStatus(StrEnum):
    """Whether an outbound email draft has been claimed for sending."""

    DRAFT = "draft"
    SENT = "sent"


class DeliveryStatus(StrEnum):
    """Progress of the real delivery behind a sent draft."""

    PENDING = "pending"
    DELIVERED = "delivered"
    FAILED = "failed"


class ActorType(StrEnum):
    """Who caused a timeline event."""

    SYSTEM = "system"
    USER = "user"
    AI = "ai"
