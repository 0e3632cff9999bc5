"""Idempotent send pipeline for quotation emails.

The ``draft -> sent`` claim is a single compare-and-set on the draft row
(``WHERE id = ? AND status = 'draft'``), committed together with the case
transition ``QUOTED_VERSIONED -> SENT``.  Exactly one caller wins the claim
and performs the real delivery; every other caller, concurrent or later,
observes an idempotent replay carrying the original ``sent_at``.

A committed claim is never undone.  The draft row also carries a
``delivery_status`` (``pending``, ``delivered`` or ``failed``).  When the real
delivery fails the status becomes ``failed`` and the error surfaces; the next
``send`` for that draft moves it back to ``pending`` with a compare-and-set and
redelivers under the original ``correlation_id`` and ``sent_at``.
"""

from __future__ import annotations

import sqlite3
import uuid
from collections.abc import Sequence

import structlog

from quotation.audit.logger import TimelineLogger
from quotation.cases.store import CaseStore, load_case, require_mutable_case
from quotation.delivery.gateway import DeliveryGateway
from quotation.domain.errors import GuardViolation, NotAuthenticated, NotFoundError
from quotation.domain.models import Caller, EmailDraft, QuotationVersion, SendResult
from quotation.domain.types import ActorType, CaseStatus, DeliveryStatus, DraftStatus
from quotation.resilience.retry import DEFAULT_MAX_RETRIES, resilient_call
from quotation.state.database import (
    Database,
    dumps,
    from_db_timestamp,
    loads,
    new_id,
    to_db_timestamp,
    utcnow,
)
from quotation.state_machine.transitions import CaseEvent
from quotation.versions.store import VersionStore

logger = structlog.get_logger()


def _row_to_draft(row: sqlite3.Row) -> EmailDraft:
    return EmailDraft(
        id=row["id"],
        case_id=row["case_id"],
        owner_id=row["owner_id"],
        subject=row["subject"],
        recipients=loads(row["recipients"]),
        body=row["body"],
        status=DraftStatus(row["status"]),
        sent_at=from_db_timestamp(row["sent_at"]),
        quotation_version_id=row["quotation_version_id"],
        delivery_status=(
            DeliveryStatus(row["delivery_status"]) if row["delivery_status"] else None
        ),
        created_at=from_db_timestamp(row["created_at"]),
    )


class SendPipeline:
    """Create drafts and send them to the client exactly once.

    Args:
        db: The quotation database.
        cases: The case store.
        versions: The version store.
        gateway: The delivery channel.
        timeline: Optional timeline logger.
        max_retries: Automatic retries on delivery timeout.
    """

    def __init__(
        self,
        db: Database,
        cases: CaseStore,
        versions: VersionStore,
        gateway: DeliveryGateway,
        timeline: TimelineLogger | None = None,
        max_retries: int = DEFAULT_MAX_RETRIES,
    ) -> None:
        self._db = db
        self._cases = cases
        self._versions = versions
        self._gateway = gateway
        self._timeline = timeline
        self._max_retries = max_retries

    # ------------------------------------------------------------------
    # Drafts
    # ------------------------------------------------------------------

    def create_draft(
        self,
        case_id: str,
        owner: Caller,
        subject: str,
        recipients: Sequence[str],
        body: str = "",
    ) -> EmailDraft:
        """Create an unsent draft owned by *owner*.

        Raises:
            NotFoundError: If the case does not exist.
            GuardViolation: If the case is archived.
        """
        draft = EmailDraft(
            id=new_id(),
            case_id=case_id,
            owner_id=owner.user_id,
            subject=subject,
            recipients=list(recipients),
            body=body,
            status=DraftStatus.DRAFT,
            created_at=utcnow(),
        )
        with self._db.transaction() as conn:
            require_mutable_case(self._db, case_id, "create_draft")
            conn.execute(
                """
                INSERT INTO email_drafts (
                    id, case_id, owner_id, subject, recipients, body, status, created_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    draft.id,
                    case_id,
                    draft.owner_id,
                    draft.subject,
                    dumps(draft.recipients),
                    draft.body,
                    draft.status.value,
                    to_db_timestamp(draft.created_at),
                ),
            )
            if self._timeline is not None:
                self._timeline.log_draft_created(case_id, draft.id, owner.user_id)
        return self.get_draft(draft.id)

    def get_draft(self, draft_id: str) -> EmailDraft:
        row = self._db.fetchone("SELECT * FROM email_drafts WHERE id = ?", (draft_id,))
        if row is None:
            raise NotFoundError("email_draft", draft_id)
        return _row_to_draft(row)

    # ------------------------------------------------------------------
    # Send
    # ------------------------------------------------------------------

    def send(
        self,
        case_id: str,
        version_id: str,
        draft_id: str,
        caller: Caller | None,
    ) -> SendResult:
        """Send the quotation, or replay the original outcome if already sent.

        Args:
            case_id: The case being quoted.
            version_id: The version the email carries; must be selected.
            draft_id: The caller's draft.
            caller: The authenticated identity, or ``None``.

        Returns:
            A :class:`SendResult`; ``idempotent`` is True for replays.

        Raises:
            NotAuthenticated: If there is no caller.
            NotFoundError: If the draft is unknown, owned by someone else, or
                attached to another case.
            GuardViolation: If the case is not ``QUOTED_VERSIONED`` or the
                version is not the case's selected version.
            UpstreamTimeout: If delivery timed out on every attempt.
            DeliveryError: If the delivery channel refused the email.
        """
        if caller is None:
            raise NotAuthenticated("Authentication required to send a quotation")

        with self._db.transaction() as conn:
            draft = self._owned_draft(draft_id, case_id, caller)
            if draft.status is DraftStatus.SENT:
                if not self._reclaim_failed_delivery(conn, draft):
                    return self._replay(draft, version_id)
                claimed = self.get_draft(draft_id)
                version = self._versions.get_version(claimed.quotation_version_id)
                correlation_id = self._correlation_id(draft_id)
            else:
                case = load_case(self._db, case_id)
                if case.status is not CaseStatus.QUOTED_VERSIONED:
                    raise GuardViolation(case.status, CaseEvent.SEND, case_id=case_id)
                version = self._require_selected(case.status, case_id, version_id)

                correlation_id = str(uuid.uuid4())
                cursor = conn.execute(
                    """
                    UPDATE email_drafts
                    SET status = ?, sent_at = ?, quotation_version_id = ?,
                        correlation_id = ?, delivery_status = ?
                    WHERE id = ? AND status = ?
                    """,
                    (
                        DraftStatus.SENT.value,
                        to_db_timestamp(utcnow()),
                        version_id,
                        correlation_id,
                        DeliveryStatus.PENDING.value,
                        draft_id,
                        DraftStatus.DRAFT.value,
                    ),
                )
                if cursor.rowcount != 1:
                    return self._replay(self.get_draft(draft_id), version_id)

                self._cases.apply_event(
                    case_id,
                    CaseEvent.SEND,
                    actor_type=ActorType.USER,
                    actor_id=caller.user_id,
                )
                claimed = self.get_draft(draft_id)

        log = logger.bind(case_id=case_id, draft_id=draft_id, correlation_id=correlation_id)
        try:
            resilient_call(
                "delivery",
                self._gateway.deliver,
                claimed,
                version,
                correlation_id,
                max_retries=self._max_retries,
            )
        except Exception as exc:
            log.error("quotation_delivery_failed", error=str(exc))
            self._record_delivery_failure(case_id, draft_id, correlation_id, str(exc))
            raise

        with self._db.transaction() as conn:
            conn.execute(
                "UPDATE email_drafts SET delivery_status = ? WHERE id = ? AND correlation_id = ?",
                (DeliveryStatus.DELIVERED.value, draft_id, correlation_id),
            )
            if self._timeline is not None:
                self._timeline.log_quotation_sent(
                    case_id, draft_id, version.version_number, correlation_id, caller.user_id
                )
        log.info("quotation_sent", version_number=version.version_number)

        return SendResult(
            idempotent=False,
            sent_at=claimed.sent_at,
            correlation_id=correlation_id,
            case_id=case_id,
            version_id=version.id,
            draft_id=draft_id,
        )

    def _owned_draft(self, draft_id: str, case_id: str, caller: Caller) -> EmailDraft:
        draft = self.get_draft(draft_id)
        if draft.owner_id != caller.user_id or draft.case_id != case_id:
            raise NotFoundError("email_draft", draft_id)
        return draft

    def _require_selected(
        self, status: CaseStatus, case_id: str, version_id: str
    ) -> QuotationVersion:
        selected = self._versions.selected_version(case_id)
        if selected is None or selected.id != version_id:
            raise GuardViolation(
                status,
                CaseEvent.SEND,
                "version is not the case's selected version",
                case_id=case_id,
                version_id=version_id,
            )
        return selected

    def _reclaim_failed_delivery(self, conn: sqlite3.Connection, draft: EmailDraft) -> bool:
        """Take over the redelivery of a sent draft whose delivery failed.

        The draft stays ``sent`` with its original ``sent_at``; only the
        delivery status moves ``failed -> pending``, so one caller redelivers.
        """
        if draft.delivery_status is not DeliveryStatus.FAILED:
            return False
        cursor = conn.execute(
            "UPDATE email_drafts SET delivery_status = ? WHERE id = ? AND delivery_status = ?",
            (DeliveryStatus.PENDING.value, draft.id, DeliveryStatus.FAILED.value),
        )
        return cursor.rowcount == 1

    def _correlation_id(self, draft_id: str) -> str | None:
        row = self._db.fetchone(
            "SELECT correlation_id FROM email_drafts WHERE id = ?",
            (draft_id,),
        )
        return row["correlation_id"] if row is not None else None

    def _replay(self, draft: EmailDraft, version_id: str) -> SendResult:
        correlation_id = self._correlation_id(draft.id) or str(uuid.uuid4())
        logger.info(
            "quotation_send_replayed",
            case_id=draft.case_id,
            draft_id=draft.id,
            correlation_id=correlation_id,
        )
        return SendResult(
            idempotent=True,
            sent_at=draft.sent_at,
            correlation_id=correlation_id,
            case_id=draft.case_id,
            version_id=draft.quotation_version_id or version_id,
            draft_id=draft.id,
        )

    def _record_delivery_failure(
        self, case_id: str, draft_id: str, correlation_id: str, error: str
    ) -> None:
        with self._db.transaction() as conn:
            conn.execute(
                "UPDATE email_drafts SET delivery_status = ? WHERE id = ? AND correlation_id = ?",
                (DeliveryStatus.FAILED.value, draft_id, correlation_id),
            )
            if self._timeline is not None:
                self._timeline.log_delivery_failed(case_id, draft_id, correlation_id, error)
