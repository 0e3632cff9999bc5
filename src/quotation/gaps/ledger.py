"""Gap ledger: missing facts per case, readiness to price, and anti-replay.

Gaps are never deleted.  At most one *open* gap exists per
``(case_id, gap_key)``: opening a key that is already open returns the
existing row, unless a blocking report escalates a non-blocking one.  Re-opening
a resolved key starts a new row so the history of questions asked is
preserved.

The anti-replay bookkeeping fingerprints the set of source emails each
analysis was run on.  The ledger only reports whether the sources changed;
whether an unchanged re-analysis is refused is a service-level policy.
"""

from __future__ import annotations

import sqlite3
from collections.abc import Iterable

import structlog

from quotation.audit.logger import TimelineLogger
from quotation.cases.store import load_case, require_mutable_case
from quotation.domain.errors import NotFoundError
from quotation.domain.models import AnalysisFreshness, Gap
from quotation.domain.types import ActorType, GapStatus
from quotation.fingerprint import compute_canonical_hash
from quotation.state.database import (
    Database,
    dumps,
    from_db_timestamp,
    new_id,
    to_db_timestamp,
    utcnow,
)

logger = structlog.get_logger()


def sources_fingerprint(source_email_ids: Iterable[str]) -> str:
    """Fingerprint a set of source email ids, ignoring order and duplicates."""
    return compute_canonical_hash(sorted(set(source_email_ids)))


def _row_to_gap(row: sqlite3.Row) -> Gap:
    return Gap(
        id=row["id"],
        case_id=row["case_id"],
        gap_key=row["gap_key"],
        gap_category=row["gap_category"],
        question=row["question"],
        is_blocking=bool(row["is_blocking"]),
        status=GapStatus(row["status"]),
        created_at=from_db_timestamp(row["created_at"]),
        resolved_at=from_db_timestamp(row["resolved_at"]),
    )


class GapLedger:
    """Track gaps and analysis passes for quote cases.

    Args:
        db: The quotation database.
        timeline: Optional timeline logger.
    """

    def __init__(self, db: Database, timeline: TimelineLogger | None = None) -> None:
        self._db = db
        self._timeline = timeline

    # ------------------------------------------------------------------
    # Gaps
    # ------------------------------------------------------------------

    def open_gap(
        self,
        case_id: str,
        gap_key: str,
        gap_category: str,
        question: str,
        is_blocking: bool,
        *,
        actor_type: ActorType = ActorType.AI,
    ) -> Gap:
        """Open a gap, or return the already-open gap with the same key.

        A blocking report for a key that is open as non-blocking resolves the
        old row and opens a new blocking one.

        Raises:
            NotFoundError: If the case does not exist.
            GuardViolation: If the case is archived.
        """
        with self._db.transaction() as conn:
            require_mutable_case(self._db, case_id, "open_gap")
            existing = self._db.fetchone(
                "SELECT * FROM quote_gaps WHERE case_id = ? AND gap_key = ? AND status = ?",
                (case_id, gap_key, GapStatus.OPEN.value),
            )
            if existing is not None:
                current = _row_to_gap(existing)
                if current.is_blocking or not is_blocking:
                    return current
                # A blocking report supersedes the open non-blocking row.
                conn.execute(
                    "UPDATE quote_gaps SET status = ?, resolved_at = ? WHERE id = ? AND status = ?",
                    (
                        GapStatus.RESOLVED.value,
                        to_db_timestamp(utcnow()),
                        current.id,
                        GapStatus.OPEN.value,
                    ),
                )
                if self._timeline is not None:
                    self._timeline.log_gap_resolved(case_id, gap_key, actor_type=actor_type)
                logger.info("gap_escalated", case_id=case_id, gap_key=gap_key)

            gap_id = new_id()
            conn.execute(
                """
                INSERT INTO quote_gaps (
                    id, case_id, gap_key, gap_category, question,
                    is_blocking, status, created_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    gap_id,
                    case_id,
                    gap_key,
                    gap_category,
                    question,
                    int(is_blocking),
                    GapStatus.OPEN.value,
                    to_db_timestamp(utcnow()),
                ),
            )
            if self._timeline is not None:
                self._timeline.log_gap_opened(case_id, gap_key, is_blocking, actor_type=actor_type)

        logger.info("gap_opened", case_id=case_id, gap_key=gap_key, is_blocking=is_blocking)
        return self.get_gap(gap_id)

    def resolve_gap(
        self,
        gap_id: str,
        *,
        actor_type: ActorType = ActorType.USER,
        actor_id: str | None = None,
    ) -> Gap:
        """Resolve a gap.  Resolving an already-resolved gap is a no-op.

        Raises:
            NotFoundError: If the gap does not exist.
            GuardViolation: If the owning case is archived.
        """
        with self._db.transaction() as conn:
            gap = self.get_gap(gap_id)
            if gap.status is GapStatus.RESOLVED:
                return gap
            require_mutable_case(self._db, gap.case_id, "resolve_gap")
            conn.execute(
                "UPDATE quote_gaps SET status = ?, resolved_at = ? WHERE id = ? AND status = ?",
                (GapStatus.RESOLVED.value, to_db_timestamp(utcnow()), gap_id, GapStatus.OPEN.value),
            )
            if self._timeline is not None:
                self._timeline.log_gap_resolved(
                    gap.case_id, gap.gap_key, actor_type=actor_type, actor_id=actor_id
                )

        logger.info("gap_resolved", case_id=gap.case_id, gap_key=gap.gap_key)
        return self.get_gap(gap_id)

    def get_gap(self, gap_id: str) -> Gap:
        row = self._db.fetchone("SELECT * FROM quote_gaps WHERE id = ?", (gap_id,))
        if row is None:
            raise NotFoundError("gap", gap_id)
        return _row_to_gap(row)

    def list_gaps(self, case_id: str, status: GapStatus | None = None) -> list[Gap]:
        """List a case's gaps in creation order, optionally filtered by status."""
        load_case(self._db, case_id)
        if status is None:
            rows = self._db.fetchall(
                "SELECT * FROM quote_gaps WHERE case_id = ? ORDER BY created_at, rowid",
                (case_id,),
            )
        else:
            rows = self._db.fetchall(
                "SELECT * FROM quote_gaps WHERE case_id = ? AND status = ? "
                "ORDER BY created_at, rowid",
                (case_id, status.value),
            )
        return [_row_to_gap(row) for row in rows]

    def list_blocking(self, case_id: str) -> list[Gap]:
        """Return the open blocking gaps of a case."""
        return [gap for gap in self.list_gaps(case_id, GapStatus.OPEN) if gap.is_blocking]

    def is_ready_to_price(self, case_id: str) -> bool:
        """True iff the case has no open blocking gap."""
        return not self.list_blocking(case_id)

    # ------------------------------------------------------------------
    # Anti-replay
    # ------------------------------------------------------------------

    def last_analysis_fingerprint(self, case_id: str) -> str | None:
        row = self._db.fetchone(
            "SELECT sources_fingerprint FROM case_analyses WHERE case_id = ? "
            "ORDER BY id DESC LIMIT 1",
            (case_id,),
        )
        return row["sources_fingerprint"] if row is not None else None

    def analysis_freshness(self, case_id: str, source_email_ids: Iterable[str]) -> AnalysisFreshness:
        """Compare *source_email_ids* with the sources of the last analysis."""
        load_case(self._db, case_id)
        return AnalysisFreshness(
            fingerprint=sources_fingerprint(source_email_ids),
            previous_fingerprint=self.last_analysis_fingerprint(case_id),
        )

    def record_analysis(
        self,
        case_id: str,
        source_email_ids: Iterable[str],
        completeness: float,
        *,
        forced: bool = False,
    ) -> AnalysisFreshness:
        """Store one completed analysis pass.

        Returns:
            The freshness computed *before* this pass was recorded, so callers
            can tell whether it ran on unchanged sources.
        """
        ids = sorted(set(source_email_ids))
        with self._db.transaction() as conn:
            require_mutable_case(self._db, case_id, "record_analysis")
            freshness = self.analysis_freshness(case_id, ids)
            conn.execute(
                """
                INSERT INTO case_analyses (
                    case_id, sources_fingerprint, source_email_ids,
                    completeness, forced, created_at
                ) VALUES (?, ?, ?, ?, ?, ?)
                """,
                (
                    case_id,
                    freshness.fingerprint,
                    dumps(ids),
                    completeness,
                    int(forced),
                    to_db_timestamp(utcnow()),
                ),
            )
            if self._timeline is not None:
                self._timeline.log_analysis_recorded(
                    case_id,
                    freshness.fingerprint,
                    completeness,
                    forced,
                    freshness.unchanged,
                )

        if freshness.unchanged:
            logger.warning(
                "analysis_sources_unchanged",
                case_id=case_id,
                fingerprint=freshness.fingerprint,
                forced=forced,
            )
        return freshness
