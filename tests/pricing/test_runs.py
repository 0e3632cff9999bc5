"""Tests for the pricing run store."""

from __future__ import annotations

import threading
from decimal import Decimal

import pytest
from fakes import sample_success

from quotation.audit.logger import TimelineLogger
from quotation.audit.store import query_timeline
from quotation.cases.store import CaseStore
from quotation.domain.errors import ConcurrentRunError, GuardViolation, InvariantViolation
from quotation.domain.models import PricingFailure
from quotation.domain.types import PricingRunStatus
from quotation.fingerprint import compute_canonical_hash
from quotation.pricing.runs import PricingRunStore
from quotation.state import Database


@pytest.fixture
def cases(db: Database) -> CaseStore:
    return CaseStore(db)


@pytest.fixture
def runs(db: Database) -> PricingRunStore:
    return PricingRunStore(db, TimelineLogger(db))


@pytest.fixture
def case_id(cases: CaseStore) -> str:
    case, _ = cases.ensure_case("thread-1")
    return case.id


class TestStartRun:
    def test_first_run_is_number_one(self, runs: PricingRunStore, case_id: str) -> None:
        run = runs.start_run(case_id, {"origin": "Dakar"}, created_by="u1")
        assert run.run_number == 1
        assert run.status == PricingRunStatus.RUNNING
        assert run.created_by == "u1"
        assert not run.is_terminal

    def test_inputs_are_normalized_and_fingerprinted(
        self, runs: PricingRunStore, case_id: str
    ) -> None:
        run = runs.start_run(case_id, {"b": 2, "a": None, "c": "x"})
        assert run.inputs == {"b": 2, "c": "x"}
        assert run.inputs_fingerprint == compute_canonical_hash({"c": "x", "b": 2})

    def test_second_start_while_running_is_rejected(
        self, runs: PricingRunStore, case_id: str
    ) -> None:
        runs.start_run(case_id, {})
        with pytest.raises(ConcurrentRunError) as exc_info:
            runs.start_run(case_id, {})
        assert exc_info.value.running_run_number == 1
        assert exc_info.value.retryable is True

    def test_failed_runs_keep_their_number(self, runs: PricingRunStore, case_id: str) -> None:
        first = runs.start_run(case_id, {})
        runs.complete_run(first.id, PricingFailure(reason="engine down"))
        second = runs.start_run(case_id, {})
        assert second.run_number == 2

    def test_archived_case_rejected(
        self, cases: CaseStore, runs: PricingRunStore, case_id: str
    ) -> None:
        cases.apply_event(case_id, "archive")
        with pytest.raises(GuardViolation):
            runs.start_run(case_id, {})

    def test_racing_starts_number_runs_without_gaps(
        self, runs: PricingRunStore, case_id: str
    ) -> None:
        """Callers that race and then complete their run produce numbers 1..N."""
        barrier = threading.Barrier(6)
        started: list[int] = []
        lock = threading.Lock()

        def worker() -> None:
            barrier.wait()
            for _ in range(20):
                try:
                    run = runs.start_run(case_id, {})
                except ConcurrentRunError:
                    continue
                runs.complete_run(run.id, PricingFailure(reason="stop"))
                with lock:
                    started.append(run.run_number)
                return

        threads = [threading.Thread(target=worker) for _ in range(6)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        numbers = [run.run_number for run in runs.list_runs(case_id)]
        assert numbers == list(range(1, len(numbers) + 1))
        assert sorted(started) == numbers


class TestCompleteRun:
    def test_success_records_totals_and_lines(self, runs: PricingRunStore, case_id: str) -> None:
        run = runs.start_run(case_id, {})
        done = runs.complete_run(run.id, sample_success("250000.50", "295000.59"))
        assert done.status == PricingRunStatus.SUCCESS
        assert done.totals is not None
        assert done.totals.ht == Decimal("250000.50")
        assert done.totals.ttc == Decimal("295000.59")
        assert done.currency == "XOF"
        assert done.line_items[0]["code"] == "TRANSPORT"
        assert done.completed_at is not None
        assert done.duration_ms is not None and done.duration_ms >= 0

    def test_failure_records_reason(self, runs: PricingRunStore, case_id: str) -> None:
        run = runs.start_run(case_id, {})
        done = runs.complete_run(run.id, PricingFailure(reason="no tariff for lane"))
        assert done.status == PricingRunStatus.FAILED
        assert done.error_message == "no tariff for lane"
        assert done.totals is None

    def test_terminal_run_is_immutable(self, runs: PricingRunStore, case_id: str) -> None:
        run = runs.start_run(case_id, {})
        runs.complete_run(run.id, sample_success())
        with pytest.raises(InvariantViolation) as exc_info:
            runs.complete_run(run.id, PricingFailure(reason="late"))
        assert exc_info.value.invariant == "terminal_run_immutable"
        assert runs.get_run(run.id).status == PricingRunStatus.SUCCESS

    def test_unknown_outcome_type(self, runs: PricingRunStore, case_id: str) -> None:
        run = runs.start_run(case_id, {})
        with pytest.raises(TypeError):
            runs.complete_run(run.id, {"totals": 1})  # type: ignore[arg-type]

    def test_completion_is_logged(self, db: Database, runs: PricingRunStore, case_id: str) -> None:
        run = runs.start_run(case_id, {})
        runs.complete_run(run.id, PricingFailure(reason="boom"))
        events = query_timeline(db, case_id=case_id, event_type="pricing_failed")
        assert events[0]["new_value"] == "1"
        assert events[0]["event_data"] == {"error_message": "boom"}


class TestQueries:
    def test_latest_successful_skips_failures(self, runs: PricingRunStore, case_id: str) -> None:
        first = runs.start_run(case_id, {})
        runs.complete_run(first.id, sample_success())
        second = runs.start_run(case_id, {})
        runs.complete_run(second.id, PricingFailure(reason="x"))
        latest = runs.latest_successful(case_id)
        assert latest is not None
        assert latest.id == first.id

    def test_running_run(self, runs: PricingRunStore, case_id: str) -> None:
        assert runs.running_run(case_id) is None
        run = runs.start_run(case_id, {})
        running = runs.running_run(case_id)
        assert running is not None and running.id == run.id


class TestPublicView:
    def test_success_exposes_suggestions(self, runs: PricingRunStore, case_id: str) -> None:
        run = runs.start_run(case_id, {})
        public = runs.complete_run(run.id, sample_success()).to_public()
        assert public["run_number"] == 1
        assert public["status"] == "success"
        assert public["totals"] == {"ht": "100000", "ttc": "118000"}
        assert public["historical_suggestions"] == [{"code": "CUSTOMS", "amount": 25000}]
        assert "error_message" not in public

    def test_failure_exposes_error(self, runs: PricingRunStore, case_id: str) -> None:
        run = runs.start_run(case_id, {})
        public = runs.complete_run(run.id, PricingFailure(reason="x")).to_public()
        assert public["error_message"] == "x"
        assert public["totals"] is None
        assert "historical_suggestions" not in public
