"""Case timeline models: one append-only entry per significant case event."""

from enum import StrEnum
from typing import Any

from pydantic import BaseModel

from quotation.domain.types import ActorType


class TimelineEventType(StrEnum):
    """Types of events recorded on a case timeline."""

    CASE_CREATED = "case_created"
    STATUS_CHANGED = "status_changed"
    GAP_OPENED = "gap_opened"
    GAP_RESOLVED = "gap_resolved"
    ANALYSIS_RECORDED = "analysis_recorded"
    PRICING_STARTED = "pricing_started"
    PRICING_COMPLETED = "pricing_completed"
    PRICING_FAILED = "pricing_failed"
    VERSION_CREATED = "version_created"
    VERSION_SELECTED = "version_selected"
    VERSION_FINALIZED = "version_finalized"
    DRAFT_CREATED = "draft_created"
    QUOTATION_SENT = "quotation_sent"
    DELIVERY_FAILED = "delivery_failed"


class TimelineEvent(BaseModel):
    """A single timeline entry.

    ``previous_value``/``new_value`` carry the before and after of whatever
    changed (a status, a gap key, a version number); ``event_data`` holds any
    extra structured context.
    """

    case_id: str
    event_type: TimelineEventType
    previous_value: str | None = None
    new_value: str | None = None
    actor_type: ActorType = ActorType.SYSTEM
    actor_id: str | None = None
    event_data: dict[str, Any] | None = None
