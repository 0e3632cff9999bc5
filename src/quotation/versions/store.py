"""Quotation version store: immutable numbered snapshots, one selected.

Versions are append-only.  ``version_number`` is claimed as
``max + 1`` inside the serialized transaction, the selection flag is moved
with a deselect-then-select pair in one transaction, and a partial unique
index on ``(case_id) WHERE is_selected = 1`` rejects any write that would
leave two versions selected.
"""

from __future__ import annotations

import sqlite3
from typing import Any

import structlog

from quotation.audit.logger import TimelineLogger
from quotation.cases.store import load_case, require_mutable_case
from quotation.domain.errors import InvariantViolation, NotFoundError
from quotation.domain.models import QuotationVersion
from quotation.domain.types import PricingRunStatus, VersionStatus
from quotation.fingerprint import compute_canonical_hash, normalize
from quotation.pricing.runs import PricingRunStore
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


def _row_to_version(row: sqlite3.Row) -> QuotationVersion:
    return QuotationVersion(
        id=row["id"],
        case_id=row["case_id"],
        pricing_run_id=row["pricing_run_id"],
        version_number=row["version_number"],
        status=VersionStatus(row["status"]),
        is_selected=bool(row["is_selected"]),
        snapshot=loads(row["snapshot"]) or {},
        snapshot_fingerprint=row["snapshot_fingerprint"],
        created_at=from_db_timestamp(row["created_at"]),
        created_by=row["created_by"],
    )


class VersionStore:
    """Create, select, finalize, and query quotation versions.

    Args:
        db: The quotation database.
        runs: The pricing run store (used to validate the source run).
        timeline: Optional timeline logger.
    """

    def __init__(
        self,
        db: Database,
        runs: PricingRunStore,
        timeline: TimelineLogger | None = None,
    ) -> None:
        self._db = db
        self._runs = runs
        self._timeline = timeline

    def create_version(
        self,
        case_id: str,
        pricing_run_id: str,
        snapshot: dict[str, Any],
        created_by: str | None = None,
    ) -> QuotationVersion:
        """Append a ``draft`` version built from a successful pricing run.

        Creating a version again from the same run with a canonically
        identical snapshot returns the existing version.

        Raises:
            NotFoundError: If the case or run does not exist.
            GuardViolation: If the case is archived.
            InvariantViolation: If the run belongs to another case or did not
                succeed.
        """
        stored_snapshot = normalize(snapshot) or {}
        fingerprint = compute_canonical_hash(stored_snapshot)

        with self._db.transaction() as conn:
            require_mutable_case(self._db, case_id, "create_version")
            run = self._runs.get_run(pricing_run_id)
            if run.case_id != case_id:
                raise InvariantViolation(
                    "quotation_version",
                    "run_belongs_to_case",
                    f"Pricing run {pricing_run_id} does not belong to case {case_id}",
                    case_id=case_id,
                    pricing_run_id=pricing_run_id,
                )
            if run.status is not PricingRunStatus.SUCCESS:
                raise InvariantViolation(
                    "quotation_version",
                    "run_succeeded",
                    f"Pricing run #{run.run_number} is {run.status.value}, not success",
                    case_id=case_id,
                    pricing_run_id=pricing_run_id,
                )

            existing = self._db.fetchone(
                "SELECT * FROM quotation_versions "
                "WHERE case_id = ? AND pricing_run_id = ? AND snapshot_fingerprint = ?",
                (case_id, pricing_run_id, fingerprint),
            )
            if existing is not None:
                logger.info(
                    "version_exists",
                    case_id=case_id,
                    version_number=existing["version_number"],
                )
                return _row_to_version(existing)

            row = conn.execute(
                "SELECT COALESCE(MAX(version_number), 0) + 1 AS next_number "
                "FROM quotation_versions WHERE case_id = ?",
                (case_id,),
            ).fetchone()
            version_number = row["next_number"]

            version_id = new_id()
            conn.execute(
                """
                INSERT INTO quotation_versions (
                    id, case_id, pricing_run_id, version_number, status,
                    is_selected, snapshot, snapshot_fingerprint, created_at, created_by
                ) VALUES (?, ?, ?, ?, ?, 0, ?, ?, ?, ?)
                """,
                (
                    version_id,
                    case_id,
                    pricing_run_id,
                    version_number,
                    VersionStatus.DRAFT.value,
                    dumps(stored_snapshot),
                    fingerprint,
                    to_db_timestamp(utcnow()),
                    created_by,
                ),
            )
            if self._timeline is not None:
                self._timeline.log_version_created(
                    case_id, version_number, run.run_number, created_by
                )

        logger.info("version_created", case_id=case_id, version_number=version_number)
        return self.get_version(version_id)

    def select_version(self, version_id: str, actor_id: str | None = None) -> QuotationVersion:
        """Make *version_id* the only selected version of its case.

        Raises:
            NotFoundError: If the version does not exist.
            GuardViolation: If the case is archived.
        """
        with self._db.transaction() as conn:
            version = self.get_version(version_id)
            require_mutable_case(self._db, version.case_id, "select_version")
            previous = self.selected_version(version.case_id)

            conn.execute(
                "UPDATE quotation_versions SET is_selected = 0 WHERE case_id = ? AND id != ?",
                (version.case_id, version_id),
            )
            conn.execute(
                "UPDATE quotation_versions SET is_selected = 1 WHERE id = ?",
                (version_id,),
            )
            if self._timeline is not None:
                self._timeline.log_version_selected(
                    version.case_id,
                    previous.version_number if previous is not None else None,
                    version.version_number,
                    actor_id=actor_id,
                )

        logger.info(
            "version_selected",
            case_id=version.case_id,
            version_number=version.version_number,
        )
        return self.get_version(version_id)

    def finalize(self, version_id: str) -> QuotationVersion:
        """Freeze a draft version; earlier final versions become superseded.

        Finalizing a ``final`` version is a no-op.

        Raises:
            NotFoundError: If the version does not exist.
            GuardViolation: If the case is archived.
            InvariantViolation: If the version is superseded.
        """
        with self._db.transaction() as conn:
            version = self.get_version(version_id)
            if version.status is VersionStatus.FINAL:
                return version
            if version.status is VersionStatus.SUPERSEDED:
                raise InvariantViolation(
                    "quotation_version",
                    "superseded_is_frozen",
                    f"Version {version.version_number} is superseded and cannot be finalized",
                    version_id=version_id,
                    case_id=version.case_id,
                )
            require_mutable_case(self._db, version.case_id, "finalize_version")

            conn.execute(
                "UPDATE quotation_versions SET status = ? WHERE case_id = ? AND status = ?",
                (VersionStatus.SUPERSEDED.value, version.case_id, VersionStatus.FINAL.value),
            )
            conn.execute(
                "UPDATE quotation_versions SET status = ? WHERE id = ? AND status = ?",
                (VersionStatus.FINAL.value, version_id, VersionStatus.DRAFT.value),
            )
            if self._timeline is not None:
                self._timeline.log_version_finalized(version.case_id, version.version_number)

        logger.info(
            "version_finalized",
            case_id=version.case_id,
            version_number=version.version_number,
        )
        return self.get_version(version_id)

    def get_version(self, version_id: str) -> QuotationVersion:
        row = self._db.fetchone("SELECT * FROM quotation_versions WHERE id = ?", (version_id,))
        if row is None:
            raise NotFoundError("quotation_version", version_id)
        return _row_to_version(row)

    def selected_version(self, case_id: str) -> QuotationVersion | None:
        row = self._db.fetchone(
            "SELECT * FROM quotation_versions WHERE case_id = ? AND is_selected = 1",
            (case_id,),
        )
        return _row_to_version(row) if row is not None else None

    def list_versions(self, case_id: str) -> list[QuotationVersion]:
        """Return every version of a case in version-number order."""
        load_case(self._db, case_id)
        rows = self._db.fetchall(
            "SELECT * FROM quotation_versions WHERE case_id = ? ORDER BY version_number",
            (case_id,),
        )
        return [_row_to_version(row) for row in rows]
