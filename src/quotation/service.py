"""Quote case orchestration: facts -> gaps -> pricing -> version -> send.

:class:`QuoteCaseService` is the single entry point used by the HTTP API.
It composes the stores inside shared transactions so that a store write and
the case transition it implies commit together, calls the slow collaborators
(pricing engine, delivery, document service) outside any transaction, and
keeps the business metrics current.
"""

from __future__ import annotations

import time
from collections.abc import Sequence
from typing import Any

import structlog

from quotation.audit.logger import TimelineLogger
from quotation.audit.store import query_timeline
from quotation.cases.store import CaseStore
from quotation.delivery.gateway import DeliveryGateway, DocumentGenerator
from quotation.delivery.pipeline import SendPipeline
from quotation.domain.errors import (
    DocumentGenerationError,
    GuardViolation,
    InvariantViolation,
    PricingEngineError,
    ReanalysisBlocked,
    UpstreamTimeout,
)
from quotation.domain.models import (
    AnalysisFreshness,
    Caller,
    EmailDraft,
    Gap,
    PricingFailure,
    PricingRun,
    QuotationVersion,
    QuoteCase,
    SendResult,
)
from quotation.domain.types import ActorType, CaseStatus, GapStatus
from quotation.gaps.ledger import GapLedger
from quotation.observability.metrics import (
    CASE_TRANSITIONS,
    IDEMPOTENT_REPLAYS,
    PRICING_RUN_DURATION,
    PRICING_RUNS,
    QUOTATIONS_SENT,
    VERSIONS_CREATED,
)
from quotation.pricing.engine import PricingEngine
from quotation.pricing.runs import PricingRunStore
from quotation.resilience.retry import DEFAULT_MAX_RETRIES, resilient_call
from quotation.state.database import Database
from quotation.state_machine.machine import CaseStateMachine
from quotation.state_machine.transitions import CaseEvent
from quotation.versions.store import VersionStore

logger = structlog.get_logger()

DEFAULT_COMPLETENESS_THRESHOLD = 0.8

_INTAKE_STATES = frozenset({CaseStatus.RFQ_DETECTED, CaseStatus.FACTS_PARTIAL})


def _actor(caller: Caller | None) -> tuple[ActorType, str | None]:
    if caller is None:
        return ActorType.SYSTEM, None
    return ActorType.USER, caller.user_id


def build_snapshot(run: PricingRun) -> dict[str, Any]:
    """Return the default version snapshot for a successful run."""
    return {
        "run_number": run.run_number,
        "lines": run.line_items,
        "totals": run.totals.model_dump(mode="json") if run.totals else None,
        "currency": run.currency,
        "inputs": run.inputs,
    }


class QuoteCaseService:
    """Drive quote cases through their lifecycle.

    Args:
        db: The quotation database (schema already initialized).
        engine: The pricing engine collaborator.
        gateway: The delivery channel.
        documents: Optional document service used by :meth:`export_version`.
        completeness_threshold: Completeness at or above which a case with no
            blocking gap is ready to price.
        block_unchanged_reanalysis: Refuse re-analysis of unchanged sources
            unless forced (advisory warning only when False).
        max_retries: Automatic retries on upstream timeouts.
    """

    def __init__(
        self,
        db: Database,
        engine: PricingEngine,
        gateway: DeliveryGateway,
        documents: DocumentGenerator | None = None,
        *,
        completeness_threshold: float = DEFAULT_COMPLETENESS_THRESHOLD,
        block_unchanged_reanalysis: bool = False,
        max_retries: int = DEFAULT_MAX_RETRIES,
    ) -> None:
        self.db = db
        self.timeline = TimelineLogger(db)
        self.cases = CaseStore(db, self.timeline)
        self.gaps = GapLedger(db, self.timeline)
        self.runs = PricingRunStore(db, self.timeline)
        self.versions = VersionStore(db, self.runs, self.timeline)
        self.pipeline = SendPipeline(
            db, self.cases, self.versions, gateway, self.timeline, max_retries=max_retries
        )
        self._engine = engine
        self._documents = documents
        self._threshold = completeness_threshold
        self._block_unchanged = block_unchanged_reanalysis
        self._max_retries = max_retries

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _apply(
        self,
        case_id: str,
        event: CaseEvent,
        caller: Caller | None = None,
        *,
        strict: bool = True,
        actor_type: ActorType | None = None,
    ) -> QuoteCase:
        before = self.cases.get_case(case_id).status
        default_actor, actor_id = _actor(caller)
        case = self.cases.apply_event(
            case_id,
            event,
            actor_type=actor_type or default_actor,
            actor_id=actor_id,
            strict=strict,
        )
        if case.status is not before:
            CASE_TRANSITIONS.labels(to_status=case.status.value).inc()
        return case

    def _settle_facts(self, case_id: str, caller: Caller | None) -> QuoteCase:
        """Move a case forward after its facts or gaps changed.

        From ``NEED_INFO`` with no blocking gap left, or from the intake
        states, the case reaches ``READY_TO_PRICE`` when completeness meets
        the threshold and otherwise records partial facts.
        """
        case = self.cases.get_case(case_id)
        ready = self.gaps.is_ready_to_price(case_id)
        complete = ready and case.completeness >= self._threshold

        if case.status is CaseStatus.NEED_INFO and ready:
            event = (
                CaseEvent.RESOLVE_BLOCKING_COMPLETE if complete else CaseEvent.RESOLVE_BLOCKING_PARTIAL
            )
            return self._apply(case_id, event, caller)
        if case.status in _INTAKE_STATES:
            event = CaseEvent.REACH_THRESHOLD if complete else CaseEvent.RECORD_FACTS
            return self._apply(case_id, event, caller, actor_type=ActorType.AI)
        return case

    # ------------------------------------------------------------------
    # Cases
    # ------------------------------------------------------------------

    def ensure_case(
        self,
        thread_ref: str,
        *,
        request_type: str | None = None,
        priority: str = "normal",
        caller: Caller | None = None,
    ) -> tuple[QuoteCase, bool]:
        """Return the active case of an email thread, creating it if needed."""
        return self.cases.ensure_case(
            thread_ref,
            request_type=request_type,
            priority=priority,
            created_by=caller.user_id if caller else None,
        )

    def get_case(self, case_id: str) -> QuoteCase:
        return self.cases.get_case(case_id)

    def case_summary(self, case_id: str) -> dict[str, Any]:
        """Return the case with a gaps summary and the events currently legal."""
        case = self.cases.get_case(case_id)
        open_gaps = self.gaps.list_gaps(case_id, GapStatus.OPEN)
        selected = self.versions.selected_version(case_id)
        return {
            **case.model_dump(mode="json"),
            "gaps": {
                "open": len(open_gaps),
                "blocking": sum(1 for gap in open_gaps if gap.is_blocking),
            },
            "is_ready_to_price": not any(gap.is_blocking for gap in open_gaps),
            "selected_version": selected.version_number if selected else None,
            "valid_events": CaseStateMachine.from_snapshot(case.status).get_valid_events(),
        }

    def classify_rfq(self, case_id: str, caller: Caller | None = None) -> QuoteCase:
        """Mark a new thread as a request for quotation."""
        return self._apply(case_id, CaseEvent.CLASSIFY_RFQ, caller)

    def open_review(self, case_id: str, caller: Caller | None = None) -> QuoteCase:
        """Hand a priced case to a human reviewer."""
        return self._apply(case_id, CaseEvent.OPEN_REVIEW, caller)

    def archive(self, case_id: str, caller: Caller | None = None) -> QuoteCase:
        """Abandon or close a case; it becomes read-only."""
        case = self._apply(case_id, CaseEvent.ARCHIVE, caller)
        logger.info("case_archived", case_id=case_id)
        return case

    def timeline_for(self, case_id: str, limit: int = 200) -> list[dict[str, Any]]:
        self.cases.get_case(case_id)
        return query_timeline(self.db, case_id=case_id, limit=limit)

    # ------------------------------------------------------------------
    # Gaps and analysis
    # ------------------------------------------------------------------

    def open_gap(
        self,
        case_id: str,
        gap_key: str,
        gap_category: str,
        question: str,
        is_blocking: bool,
        caller: Caller | None = None,
    ) -> Gap:
        """Open a gap; a blocking gap moves the case to ``NEED_INFO`` when legal.

        A gap opened in a later state (e.g. ``PRICED_DRAFT``) is recorded for
        the next pricing but does not move the case.
        """
        actor_type = ActorType.USER if caller else ActorType.AI
        with self.db.transaction():
            gap = self.gaps.open_gap(
                case_id, gap_key, gap_category, question, is_blocking, actor_type=actor_type
            )
            if gap.is_blocking:
                self._apply(
                    case_id,
                    CaseEvent.OPEN_BLOCKING_GAP,
                    caller,
                    strict=False,
                    actor_type=actor_type,
                )
        return gap

    def resolve_gap(
        self,
        gap_id: str,
        caller: Caller | None = None,
        completeness: float | None = None,
    ) -> Gap:
        """Resolve a gap, optionally updating completeness, then settle the case."""
        actor_type, actor_id = _actor(caller)
        with self.db.transaction():
            gap = self.gaps.resolve_gap(gap_id, actor_type=actor_type, actor_id=actor_id)
            if completeness is not None:
                self.cases.set_completeness(gap.case_id, completeness)
            self._settle_facts(gap.case_id, caller)
        return gap

    def list_gaps(self, case_id: str, status: GapStatus | None = None) -> list[Gap]:
        return self.gaps.list_gaps(case_id, status)

    def analysis_freshness(self, case_id: str, source_email_ids: Sequence[str]) -> AnalysisFreshness:
        return self.gaps.analysis_freshness(case_id, source_email_ids)

    def record_analysis(
        self,
        case_id: str,
        source_email_ids: Sequence[str],
        completeness: float,
        *,
        force: bool = False,
        caller: Caller | None = None,
    ) -> tuple[QuoteCase, AnalysisFreshness]:
        """Record a fact-extraction pass and move the case accordingly.

        Raises:
            ReanalysisBlocked: If blocking is enabled, the sources are
                unchanged since the last analysis, and *force* is False.
        """
        with self.db.transaction():
            freshness = self.gaps.analysis_freshness(case_id, source_email_ids)
            if freshness.unchanged and self._block_unchanged and not force:
                raise ReanalysisBlocked(case_id, freshness.fingerprint)

            self.gaps.record_analysis(case_id, source_email_ids, completeness, forced=force)
            self.cases.set_completeness(case_id, completeness)
            case = self._settle_facts(case_id, caller)
        return case, freshness

    # ------------------------------------------------------------------
    # Pricing
    # ------------------------------------------------------------------

    def start_pricing(
        self,
        case_id: str,
        engine_input: dict[str, Any],
        caller: Caller | None = None,
    ) -> PricingRun:
        """Run the pricing engine for a case and record the outcome.

        A failed engine call is recorded as a failed run and returns the case
        to ``READY_TO_PRICE``; the failed run is returned.  A timeout that
        survives the retry is recorded the same way and then raised.

        Raises:
            GuardViolation: If the case is not ready to price.
            ConcurrentRunError: If a run is already in flight.
            UpstreamTimeout: If the engine timed out on every attempt.
        """
        with self.db.transaction():
            case = self.cases.get_case(case_id)
            if not case.is_archived and not self.gaps.is_ready_to_price(case_id):
                raise GuardViolation(
                    case.status, CaseEvent.START_PRICING, "blocking gaps are open", case_id=case_id
                )
            run = self.runs.start_run(
                case_id, engine_input, created_by=caller.user_id if caller else None
            )
            self._apply(case_id, CaseEvent.START_PRICING, caller)

        log = logger.bind(case_id=case_id, run_number=run.run_number)
        started = time.monotonic()
        try:
            outcome = resilient_call(
                "pricing_engine",
                self._engine.price,
                run.inputs,
                max_retries=self._max_retries,
            )
        except (PricingEngineError, UpstreamTimeout) as exc:
            PRICING_RUN_DURATION.observe(time.monotonic() - started)
            log.warning("pricing_run_failed", error=str(exc))
            failed = self._finish_run(run, PricingFailure(reason=str(exc)), CaseEvent.PRICING_FAILED)
            if isinstance(exc, UpstreamTimeout):
                raise
            return failed
        except Exception as exc:
            log.exception("pricing_run_crashed")
            self._finish_run(run, PricingFailure(reason=str(exc)), CaseEvent.PRICING_FAILED)
            raise

        PRICING_RUN_DURATION.observe(time.monotonic() - started)
        return self._finish_run(run, outcome, CaseEvent.PRICING_SUCCEEDED)

    def _finish_run(self, run: PricingRun, outcome: Any, event: CaseEvent) -> PricingRun:
        with self.db.transaction():
            completed = self.runs.complete_run(run.id, outcome)
            if not self.cases.get_case(run.case_id).is_archived:
                self._apply(run.case_id, event)
        PRICING_RUNS.labels(outcome=completed.status.value).inc()
        return completed

    def list_runs(self, case_id: str) -> list[PricingRun]:
        return self.runs.list_runs(case_id)

    # ------------------------------------------------------------------
    # Versions
    # ------------------------------------------------------------------

    def create_version(
        self,
        case_id: str,
        pricing_run_id: str | None = None,
        snapshot: dict[str, Any] | None = None,
        caller: Caller | None = None,
    ) -> QuotationVersion:
        """Snapshot a successful run as a new draft version.

        Defaults to the latest successful run and to a snapshot of its lines
        and totals.

        Raises:
            InvariantViolation: If the case has no successful run to use.
        """
        with self.db.transaction():
            if pricing_run_id is None:
                run = self.runs.latest_successful(case_id)
                if run is None:
                    raise InvariantViolation(
                        "quotation_version",
                        "run_succeeded",
                        f"Case {case_id} has no successful pricing run",
                        case_id=case_id,
                    )
            else:
                run = self.runs.get_run(pricing_run_id)
            known = {version.id for version in self.versions.list_versions(case_id)}
            version = self.versions.create_version(
                case_id,
                run.id,
                snapshot if snapshot is not None else build_snapshot(run),
                created_by=caller.user_id if caller else None,
            )
        if version.id not in known:
            VERSIONS_CREATED.inc()
        return version

    def select_version(self, version_id: str, caller: Caller | None = None) -> QuotationVersion:
        """Select a version for delivery; the case becomes ``QUOTED_VERSIONED``."""
        with self.db.transaction():
            version = self.versions.get_version(version_id)
            self._apply(version.case_id, CaseEvent.SELECT_VERSION, caller)
            return self.versions.select_version(
                version_id, actor_id=caller.user_id if caller else None
            )

    def finalize_version(self, version_id: str) -> QuotationVersion:
        return self.versions.finalize(version_id)

    def get_version(self, version_id: str) -> QuotationVersion:
        return self.versions.get_version(version_id)

    def list_versions(self, case_id: str) -> list[QuotationVersion]:
        return self.versions.list_versions(case_id)

    def export_version(self, version_id: str) -> str:
        """Return a download URL for a rendered version.

        Raises:
            DocumentGenerationError: If no document service is configured or
                it fails.
        """
        version = self.versions.get_version(version_id)
        if self._documents is None:
            raise DocumentGenerationError(
                "No document service configured", version_id=version_id
            )
        return resilient_call(
            "document_service",
            self._documents.export,
            version,
            max_retries=self._max_retries,
        )

    # ------------------------------------------------------------------
    # Drafts and delivery
    # ------------------------------------------------------------------

    def create_draft(
        self,
        case_id: str,
        caller: Caller,
        subject: str,
        recipients: Sequence[str],
        body: str = "",
    ) -> EmailDraft:
        return self.pipeline.create_draft(case_id, caller, subject, recipients, body)

    def send(
        self,
        case_id: str,
        version_id: str,
        draft_id: str,
        caller: Caller | None,
    ) -> SendResult:
        """Send a quotation through the idempotent pipeline."""
        result = self.pipeline.send(case_id, version_id, draft_id, caller)
        if result.idempotent:
            IDEMPOTENT_REPLAYS.inc()
        else:
            QUOTATIONS_SENT.inc()
            CASE_TRANSITIONS.labels(to_status=CaseStatus.SENT.value).inc()
        return result
