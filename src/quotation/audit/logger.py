"""Convenience class for recording case timeline entries.

Each method builds a properly structured :class:`TimelineEvent` and inserts
it via :func:`insert_timeline_event`.
"""

from __future__ import annotations

from typing import Any

from quotation.audit.models import TimelineEvent, TimelineEventType
from quotation.audit.store import insert_timeline_event
from quotation.domain.types import ActorType
from quotation.state.database import Database


class TimelineLogger:
    """Typed convenience API for inserting timeline events.

    Args:
        db: The quotation database.
    """

    def __init__(self, db: Database) -> None:
        self._db = db

    def _log(
        self,
        case_id: str,
        event_type: TimelineEventType,
        *,
        previous_value: str | None = None,
        new_value: str | None = None,
        actor_type: ActorType = ActorType.SYSTEM,
        actor_id: str | None = None,
        event_data: dict[str, Any] | None = None,
    ) -> int:
        entry = TimelineEvent(
            case_id=case_id,
            event_type=event_type,
            previous_value=previous_value,
            new_value=new_value,
            actor_type=actor_type,
            actor_id=actor_id,
            event_data=event_data,
        )
        return insert_timeline_event(self._db, entry)

    def log_case_created(self, case_id: str, thread_ref: str, actor_id: str | None = None) -> int:
        """Log the creation of a case for an email thread."""
        return self._log(
            case_id,
            TimelineEventType.CASE_CREATED,
            new_value=thread_ref,
            actor_type=ActorType.USER if actor_id else ActorType.SYSTEM,
            actor_id=actor_id,
        )

    def log_status_change(
        self,
        case_id: str,
        from_status: str,
        to_status: str,
        event: str,
        actor_type: ActorType = ActorType.SYSTEM,
        actor_id: str | None = None,
    ) -> int:
        """Log a case lifecycle transition.

        Args:
            case_id: The case that moved.
            from_status: Status before the transition.
            to_status: Status after the transition.
            event: Event that triggered the transition.
            actor_type: Who caused it.
            actor_id: Identity of the actor, if any.

        Returns:
            The row ID of the inserted event.
        """
        return self._log(
            case_id,
            TimelineEventType.STATUS_CHANGED,
            previous_value=from_status,
            new_value=to_status,
            actor_type=actor_type,
            actor_id=actor_id,
            event_data={"event": event},
        )

    def log_gap_opened(
        self,
        case_id: str,
        gap_key: str,
        is_blocking: bool,
        actor_type: ActorType = ActorType.AI,
    ) -> int:
        return self._log(
            case_id,
            TimelineEventType.GAP_OPENED,
            new_value=gap_key,
            actor_type=actor_type,
            event_data={"is_blocking": is_blocking},
        )

    def log_gap_resolved(
        self,
        case_id: str,
        gap_key: str,
        actor_type: ActorType = ActorType.USER,
        actor_id: str | None = None,
    ) -> int:
        return self._log(
            case_id,
            TimelineEventType.GAP_RESOLVED,
            previous_value=gap_key,
            actor_type=actor_type,
            actor_id=actor_id,
        )

    def log_analysis_recorded(
        self,
        case_id: str,
        sources_fingerprint: str,
        completeness: float,
        forced: bool,
        unchanged: bool,
    ) -> int:
        """Log a completed fact-extraction pass and whether its sources were new."""
        return self._log(
            case_id,
            TimelineEventType.ANALYSIS_RECORDED,
            new_value=sources_fingerprint,
            actor_type=ActorType.AI,
            event_data={"completeness": completeness, "forced": forced, "unchanged": unchanged},
        )

    def log_pricing_started(self, case_id: str, run_number: int, actor_id: str | None) -> int:
        return self._log(
            case_id,
            TimelineEventType.PRICING_STARTED,
            new_value=str(run_number),
            actor_type=ActorType.USER if actor_id else ActorType.SYSTEM,
            actor_id=actor_id,
        )

    def log_pricing_completed(
        self,
        case_id: str,
        run_number: int,
        succeeded: bool,
        error_message: str | None = None,
    ) -> int:
        """Log the terminal outcome of a pricing run (success or failure)."""
        event_type = (
            TimelineEventType.PRICING_COMPLETED if succeeded else TimelineEventType.PRICING_FAILED
        )
        event_data = {"error_message": error_message} if error_message else None
        return self._log(case_id, event_type, new_value=str(run_number), event_data=event_data)

    def log_version_created(
        self,
        case_id: str,
        version_number: int,
        run_number: int | None,
        actor_id: str | None,
    ) -> int:
        return self._log(
            case_id,
            TimelineEventType.VERSION_CREATED,
            new_value=str(version_number),
            actor_type=ActorType.USER if actor_id else ActorType.SYSTEM,
            actor_id=actor_id,
            event_data={"run_number": run_number},
        )

    def log_version_selected(
        self,
        case_id: str,
        previous_version: int | None,
        version_number: int,
        actor_id: str | None = None,
    ) -> int:
        return self._log(
            case_id,
            TimelineEventType.VERSION_SELECTED,
            previous_value=str(previous_version) if previous_version is not None else None,
            new_value=str(version_number),
            actor_type=ActorType.USER,
            actor_id=actor_id,
        )

    def log_version_finalized(self, case_id: str, version_number: int) -> int:
        return self._log(case_id, TimelineEventType.VERSION_FINALIZED, new_value=str(version_number))

    def log_draft_created(self, case_id: str, draft_id: str, owner_id: str) -> int:
        return self._log(
            case_id,
            TimelineEventType.DRAFT_CREATED,
            new_value=draft_id,
            actor_type=ActorType.USER,
            actor_id=owner_id,
        )

    def log_quotation_sent(
        self,
        case_id: str,
        draft_id: str,
        version_number: int,
        correlation_id: str,
        actor_id: str,
    ) -> int:
        """Log the single real delivery of a quotation email."""
        return self._log(
            case_id,
            TimelineEventType.QUOTATION_SENT,
            new_value=str(version_number),
            actor_type=ActorType.USER,
            actor_id=actor_id,
            event_data={"draft_id": draft_id, "correlation_id": correlation_id},
        )

    def log_delivery_failed(self, case_id: str, draft_id: str, correlation_id: str, error: str) -> int:
        return self._log(
            case_id,
            TimelineEventType.DELIVERY_FAILED,
            previous_value=draft_id,
            event_data={"correlation_id": correlation_id, "error": error},
        )
