"""Pricing run store: an append-only, numbered history of engine attempts.

Run numbers are claimed inside the serialized transaction as
``max(run_number) + 1`` (failed runs included), so the sequence for a case
is exactly ``1..N`` no matter how many callers race.  A partial unique index
allows a single ``running`` row per case, and terminal rows are only ever
written through ``WHERE status = 'running'``.
"""

from __future__ import annotations

import sqlite3
from decimal import Decimal
from typing import Any

import structlog

from quotation.audit.logger import TimelineLogger
from quotation.cases.store import load_case, require_mutable_case
from quotation.domain.errors import ConcurrentRunError, InvariantViolation, NotFoundError
from quotation.domain.models import (
    PricingFailure,
    PricingOutcome,
    PricingRun,
    PricingSuccess,
    PricingTotals,
)
from quotation.domain.types import PricingRunStatus
from quotation.fingerprint import compute_canonical_hash, normalize
from quotation.state.database import (
    Database,
    dumps,
    from_db_timestamp,
    loads,
    new_id,
    to_db_timestamp,
    utcnow,
)

logger = structlog.get_logger()


def _row_to_run(row: sqlite3.Row) -> PricingRun:
    totals = None
    if row["total_ht"] is not None and row["total_ttc"] is not None:
        totals = PricingTotals(ht=Decimal(row["total_ht"]), ttc=Decimal(row["total_ttc"]))
    return PricingRun(
        id=row["id"],
        case_id=row["case_id"],
        run_number=row["run_number"],
        status=PricingRunStatus(row["status"]),
        inputs=loads(row["inputs"]) or {},
        inputs_fingerprint=row["inputs_fingerprint"],
        totals=totals,
        currency=row["currency"],
        line_items=loads(row["line_items"]) or [],
        raw_response=loads(row["raw_response"]),
        error_message=row["error_message"],
        created_by=row["created_by"],
        started_at=from_db_timestamp(row["started_at"]),
        completed_at=from_db_timestamp(row["completed_at"]),
        duration_ms=row["duration_ms"],
    )


class PricingRunStore:
    """Start, complete, and query pricing runs.

    Args:
        db: The quotation database.
        timeline: Optional timeline logger.
    """

    def __init__(self, db: Database, timeline: TimelineLogger | None = None) -> None:
        self._db = db
        self._timeline = timeline

    def start_run(
        self,
        case_id: str,
        engine_input: dict[str, Any],
        created_by: str | None = None,
    ) -> PricingRun:
        """Claim the next run number and record a ``running`` run.

        Args:
            case_id: The case being priced.
            engine_input: The facts sent to the pricing engine.
            created_by: Identity that triggered the run.

        Returns:
            The new run.

        Raises:
            NotFoundError: If the case does not exist.
            GuardViolation: If the case is archived.
            ConcurrentRunError: If the case already has a running run.
        """
        inputs = normalize(engine_input) or {}
        with self._db.transaction() as conn:
            require_mutable_case(self._db, case_id, "start_pricing")

            running = self.running_run(case_id)
            if running is not None:
                raise ConcurrentRunError(case_id, running.run_number)

            row = conn.execute(
                "SELECT COALESCE(MAX(run_number), 0) + 1 AS next_number "
                "FROM pricing_runs WHERE case_id = ?",
                (case_id,),
            ).fetchone()
            run_number = row["next_number"]

            run_id = new_id()
            conn.execute(
                """
                INSERT INTO pricing_runs (
                    id, case_id, run_number, status, inputs,
                    inputs_fingerprint, created_by, started_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    run_id,
                    case_id,
                    run_number,
                    PricingRunStatus.RUNNING.value,
                    dumps(inputs),
                    compute_canonical_hash(inputs),
                    created_by,
                    to_db_timestamp(utcnow()),
                ),
            )
            if self._timeline is not None:
                self._timeline.log_pricing_started(case_id, run_number, created_by)

        logger.info("pricing_run_started", case_id=case_id, run_number=run_number)
        return self.get_run(run_id)

    def complete_run(self, run_id: str, outcome: PricingOutcome) -> PricingRun:
        """Record the terminal outcome of a running run.

        Completing a run whose case was archived meanwhile is allowed: the
        result is kept but nothing consumes it.

        Raises:
            NotFoundError: If the run does not exist.
            InvariantViolation: If the run is already terminal.
        """
        with self._db.transaction() as conn:
            run = self.get_run(run_id)
            if run.is_terminal:
                raise InvariantViolation(
                    "pricing_run",
                    "terminal_run_immutable",
                    f"Pricing run #{run.run_number} is already {run.status.value}",
                    run_id=run_id,
                    case_id=run.case_id,
                )

            completed_at = utcnow()
            duration_ms = int((completed_at - run.started_at).total_seconds() * 1000)

            if isinstance(outcome, PricingSuccess):
                cursor = conn.execute(
                    """
                    UPDATE pricing_runs SET
                        status = ?, total_ht = ?, total_ttc = ?, currency = ?,
                        line_items = ?, raw_response = ?, completed_at = ?, duration_ms = ?
                    WHERE id = ? AND status = ?
                    """,
                    (
                        PricingRunStatus.SUCCESS.value,
                        str(outcome.totals.ht),
                        str(outcome.totals.ttc),
                        outcome.currency,
                        dumps(outcome.lines),
                        dumps(outcome.raw_response),
                        to_db_timestamp(completed_at),
                        duration_ms,
                        run_id,
                        PricingRunStatus.RUNNING.value,
                    ),
                )
                error_message = None
            elif isinstance(outcome, PricingFailure):
                error_message = outcome.reason
                cursor = conn.execute(
                    """
                    UPDATE pricing_runs SET
                        status = ?, error_message = ?, completed_at = ?, duration_ms = ?
                    WHERE id = ? AND status = ?
                    """,
                    (
                        PricingRunStatus.FAILED.value,
                        error_message,
                        to_db_timestamp(completed_at),
                        duration_ms,
                        run_id,
                        PricingRunStatus.RUNNING.value,
                    ),
                )
            else:
                raise TypeError(f"Unsupported pricing outcome: {type(outcome).__name__}")

            if cursor.rowcount != 1:
                raise InvariantViolation(
                    "pricing_run",
                    "terminal_run_immutable",
                    f"Pricing run #{run.run_number} was completed concurrently",
                    run_id=run_id,
                )
            if self._timeline is not None:
                self._timeline.log_pricing_completed(
                    run.case_id,
                    run.run_number,
                    succeeded=error_message is None,
                    error_message=error_message,
                )

        logger.info(
            "pricing_run_completed",
            case_id=run.case_id,
            run_number=run.run_number,
            succeeded=error_message is None,
            duration_ms=duration_ms,
        )
        return self.get_run(run_id)

    def get_run(self, run_id: str) -> PricingRun:
        row = self._db.fetchone("SELECT * FROM pricing_runs WHERE id = ?", (run_id,))
        if row is None:
            raise NotFoundError("pricing_run", run_id)
        return _row_to_run(row)

    def running_run(self, case_id: str) -> PricingRun | None:
        row = self._db.fetchone(
            "SELECT * FROM pricing_runs WHERE case_id = ? AND status = ?",
            (case_id, PricingRunStatus.RUNNING.value),
        )
        return _row_to_run(row) if row is not None else None

    def latest_successful(self, case_id: str) -> PricingRun | None:
        """Return the highest-numbered successful run of a case, if any."""
        row = self._db.fetchone(
            "SELECT * FROM pricing_runs WHERE case_id = ? AND status = ? "
            "ORDER BY run_number DESC LIMIT 1",
            (case_id, PricingRunStatus.SUCCESS.value),
        )
        return _row_to_run(row) if row is not None else None

    def list_runs(self, case_id: str) -> list[PricingRun]:
        """Return every run of a case in run-number order."""
        load_case(self._db, case_id)
        rows = self._db.fetchall(
            "SELECT * FROM pricing_runs WHERE case_id = ? ORDER BY run_number",
            (case_id,),
        )
        return [_row_to_run(row) for row in rows]
