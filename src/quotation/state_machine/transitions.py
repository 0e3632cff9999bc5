"""Transition map defining all valid (status, event) -> status mappings."""

from enum import StrEnum

from quotation.domain.types import CaseStatus


class CaseEvent(StrEnum):
    """Events that can trigger status transitions on a quote case."""

    CLASSIFY_RFQ = "classify_rfq"
    RECORD_FACTS = "record_facts"
    REACH_THRESHOLD = "reach_threshold"
    OPEN_BLOCKING_GAP = "open_blocking_gap"
    RESOLVE_BLOCKING_PARTIAL = "resolve_blocking_partial"
    RESOLVE_BLOCKING_COMPLETE = "resolve_blocking_complete"
    START_PRICING = "start_pricing"
    PRICING_SUCCEEDED = "pricing_succeeded"
    PRICING_FAILED = "pricing_failed"
    OPEN_REVIEW = "open_review"
    SELECT_VERSION = "select_version"
    SEND = "send"
    ARCHIVE = "archive"


_S = CaseStatus
_E = CaseEvent

# All valid (current_status, event) -> next_status mappings.
# Any pair not in this dict is an invalid transition.
TRANSITIONS: dict[tuple[CaseStatus, str], CaseStatus] = {
    # Intake
    (_S.NEW_THREAD, _E.CLASSIFY_RFQ): _S.RFQ_DETECTED,
    (_S.RFQ_DETECTED, _E.RECORD_FACTS): _S.FACTS_PARTIAL,
    (_S.FACTS_PARTIAL, _E.RECORD_FACTS): _S.FACTS_PARTIAL,
    (_S.RFQ_DETECTED, _E.REACH_THRESHOLD): _S.READY_TO_PRICE,
    (_S.FACTS_PARTIAL, _E.REACH_THRESHOLD): _S.READY_TO_PRICE,
    # Blocking gaps
    (_S.RFQ_DETECTED, _E.OPEN_BLOCKING_GAP): _S.NEED_INFO,
    (_S.FACTS_PARTIAL, _E.OPEN_BLOCKING_GAP): _S.NEED_INFO,
    (_S.READY_TO_PRICE, _E.OPEN_BLOCKING_GAP): _S.NEED_INFO,
    (_S.NEED_INFO, _E.OPEN_BLOCKING_GAP): _S.NEED_INFO,
    (_S.NEED_INFO, _E.RESOLVE_BLOCKING_PARTIAL): _S.FACTS_PARTIAL,
    (_S.NEED_INFO, _E.RESOLVE_BLOCKING_COMPLETE): _S.READY_TO_PRICE,
    # Pricing
    (_S.READY_TO_PRICE, _E.START_PRICING): _S.PRICING_RUNNING,
    (_S.PRICING_RUNNING, _E.PRICING_SUCCEEDED): _S.PRICED_DRAFT,
    (_S.PRICING_RUNNING, _E.PRICING_FAILED): _S.READY_TO_PRICE,
    # Corrections re-price an already priced case
    (_S.PRICED_DRAFT, _E.START_PRICING): _S.PRICING_RUNNING,
    (_S.HUMAN_REVIEW, _E.START_PRICING): _S.PRICING_RUNNING,
    (_S.QUOTED_VERSIONED, _E.START_PRICING): _S.PRICING_RUNNING,
    # Review and versioning
    (_S.PRICED_DRAFT, _E.OPEN_REVIEW): _S.HUMAN_REVIEW,
    (_S.HUMAN_REVIEW, _E.SELECT_VERSION): _S.QUOTED_VERSIONED,
    (_S.QUOTED_VERSIONED, _E.SELECT_VERSION): _S.QUOTED_VERSIONED,
    (_S.QUOTED_VERSIONED, _E.OPEN_REVIEW): _S.HUMAN_REVIEW,
    # Delivery
    (_S.QUOTED_VERSIONED, _E.SEND): _S.SENT,
    # Abandonment from every non-terminal status
    **{(status, _E.ARCHIVE): _S.ARCHIVED for status in CaseStatus if status is not _S.ARCHIVED},
}

# Statuses that reject all events -- no outgoing transitions allowed.
TERMINAL_STATES: frozenset[CaseStatus] = frozenset({CaseStatus.ARCHIVED})
