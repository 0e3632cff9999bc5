"""SQLite-backed quote case store.

Owns the persisted case status.  Every transition is validated by
:class:`CaseStateMachine` and written as a compare-and-set
(``UPDATE ... WHERE id = ? AND status = ?``) inside a serialized
transaction, so two concurrent callers can never both move the same case.
"""

from __future__ import annotations

import sqlite3

import structlog

from quotation.audit.logger import TimelineLogger
from quotation.domain.errors import GuardViolation, NotFoundError
from quotation.domain.models import QuoteCase
from quotation.domain.types import ActorType, CaseStatus
from quotation.state.database import (
    Database,
    from_db_timestamp,
    new_id,
    to_db_timestamp,
    utcnow,
)
from quotation.state_machine.machine import CaseStateMachine

logger = structlog.get_logger()


def row_to_case(row: sqlite3.Row) -> QuoteCase:
    return QuoteCase(
        id=row["id"],
        thread_ref=row["thread_ref"],
        status=CaseStatus(row["status"]),
        request_type=row["request_type"],
        priority=row["priority"],
        completeness=row["completeness"],
        created_by=row["created_by"],
        created_at=from_db_timestamp(row["created_at"]),
        updated_at=from_db_timestamp(row["updated_at"]),
    )


def load_case(db: Database, case_id: str) -> QuoteCase:
    """Load a case or raise :class:`NotFoundError`."""
    row = db.fetchone("SELECT * FROM quote_cases WHERE id = ?", (case_id,))
    if row is None:
        raise NotFoundError("quote_case", case_id)
    return row_to_case(row)


def require_mutable_case(db: Database, case_id: str, operation: str) -> QuoteCase:
    """Load a case and reject *operation* if the case is archived.

    Raises:
        NotFoundError: If the case does not exist.
        GuardViolation: If the case is archived (read-only).
    """
    case = load_case(db, case_id)
    if case.is_archived:
        raise GuardViolation(case.status, operation, "case is archived", case_id=case_id)
    return case


class CaseStore:
    """Create, read, and transition quote cases.

    Args:
        db: The quotation database.
        timeline: Optional timeline logger; every transition is recorded
                  when one is supplied.
    """

    def __init__(self, db: Database, timeline: TimelineLogger | None = None) -> None:
        self._db = db
        self._timeline = timeline

    # ------------------------------------------------------------------
    # Write operations
    # ------------------------------------------------------------------

    def ensure_case(
        self,
        thread_ref: str,
        *,
        request_type: str | None = None,
        priority: str = "normal",
        created_by: str | None = None,
    ) -> tuple[QuoteCase, bool]:
        """Return the active case for *thread_ref*, creating it if needed.

        Args:
            thread_ref: Identifier of the inbound email thread.
            request_type: Optional classification of the request.
            priority: Case priority (default ``"normal"``).
            created_by: Identity creating the case.

        Returns:
            ``(case, created)`` where *created* is False when an active case
            already existed for the thread.
        """
        with self._db.transaction() as conn:
            existing = self.find_active_by_thread(thread_ref)
            if existing is not None:
                return existing, False

            now = to_db_timestamp(utcnow())
            case_id = new_id()
            conn.execute(
                """
                INSERT INTO quote_cases (
                    id, thread_ref, status, request_type, priority,
                    completeness, created_by, created_at, updated_at
                ) VALUES (?, ?, ?, ?, ?, 0, ?, ?, ?)
                """,
                (
                    case_id,
                    thread_ref,
                    CaseStatus.NEW_THREAD.value,
                    request_type,
                    priority,
                    created_by,
                    now,
                    now,
                ),
            )
            if self._timeline is not None:
                self._timeline.log_case_created(case_id, thread_ref, actor_id=created_by)

        logger.info("case_created", case_id=case_id, thread_ref=thread_ref)
        return self.get_case(case_id), True

    def apply_event(
        self,
        case_id: str,
        event: str,
        *,
        actor_type: ActorType = ActorType.SYSTEM,
        actor_id: str | None = None,
        strict: bool = True,
    ) -> QuoteCase:
        """Apply a lifecycle event to a case as one compare-and-set.

        Args:
            case_id: The case to transition.
            event: The event to apply (see :class:`CaseEvent`).
            actor_type: Who caused the transition.
            actor_id: Identity of the actor, if any.
            strict: When False, an event the transition map does not define
                    for the current status leaves the case unchanged instead
                    of raising.  Archived cases always raise.

        Returns:
            The case after the transition.

        Raises:
            NotFoundError: If the case does not exist.
            GuardViolation: If the transition is illegal or the status changed
                underneath the caller.
        """
        with self._db.transaction() as conn:
            case = require_mutable_case(self._db, case_id, event)
            machine = CaseStateMachine.from_snapshot(case.status)
            if not machine.can_trigger(event) and not strict:
                return case
            new_status = machine.trigger(event)

            cursor = conn.execute(
                "UPDATE quote_cases SET status = ?, updated_at = ? WHERE id = ? AND status = ?",
                (new_status.value, to_db_timestamp(utcnow()), case_id, case.status.value),
            )
            if cursor.rowcount != 1:
                raise GuardViolation(case.status, event, "case status changed concurrently")

            if self._timeline is not None:
                self._timeline.log_status_change(
                    case_id,
                    case.status.value,
                    new_status.value,
                    event,
                    actor_type=actor_type,
                    actor_id=actor_id,
                )

        logger.info(
            "case_transition",
            case_id=case_id,
            from_status=case.status.value,
            to_status=new_status.value,
            trigger=event,
        )
        return self.get_case(case_id)

    def set_completeness(self, case_id: str, completeness: float) -> QuoteCase:
        """Record the latest completeness score for a case."""
        if not 0.0 <= completeness <= 1.0:
            raise ValueError(f"completeness must be within [0, 1], got {completeness}")
        with self._db.transaction() as conn:
            require_mutable_case(self._db, case_id, "record_completeness")
            conn.execute(
                "UPDATE quote_cases SET completeness = ?, updated_at = ? WHERE id = ?",
                (completeness, to_db_timestamp(utcnow()), case_id),
            )
        return self.get_case(case_id)

    # ------------------------------------------------------------------
    # Read operations
    # ------------------------------------------------------------------

    def get_case(self, case_id: str) -> QuoteCase:
        return load_case(self._db, case_id)

    def find_active_by_thread(self, thread_ref: str) -> QuoteCase | None:
        """Return the non-archived case for *thread_ref*, if any."""
        row = self._db.fetchone(
            "SELECT * FROM quote_cases WHERE thread_ref = ? AND status != ?",
            (thread_ref, CaseStatus.ARCHIVED.value),
        )
        return row_to_case(row) if row is not None else None

    def list_cases(self, status: CaseStatus | None = None) -> list[QuoteCase]:
        """List cases, newest first, optionally filtered by status."""
        if status is None:
            rows = self._db.fetchall("SELECT * FROM quote_cases ORDER BY created_at DESC")
        else:
            rows = self._db.fetchall(
                "SELECT * FROM quote_cases WHERE status = ? ORDER BY created_at DESC",
                (status.value,),
            )
        return [row_to_case(row) for row in rows]
