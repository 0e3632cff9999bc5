"""Tests for the SQLite-backed quote case store."""

from __future__ import annotations

import threading

import pytest

from quotation.audit.logger import TimelineLogger
from quotation.audit.store import query_timeline
from quotation.cases.store import CaseStore
from quotation.domain.errors import GuardViolation, NotFoundError
from quotation.domain.types import ActorType, CaseStatus
from quotation.state import Database


@pytest.fixture
def store(db: Database) -> CaseStore:
    return CaseStore(db, TimelineLogger(db))


class TestEnsureCase:
    def test_creates_new_thread_case(self, store: CaseStore) -> None:
        case, created = store.ensure_case("thread-1", request_type="sea_freight", created_by="u1")
        assert created is True
        assert case.status == CaseStatus.NEW_THREAD
        assert case.request_type == "sea_freight"
        assert case.completeness == 0.0

    def test_returns_existing_active_case(self, store: CaseStore) -> None:
        first, _ = store.ensure_case("thread-1")
        second, created = store.ensure_case("thread-1")
        assert created is False
        assert second.id == first.id

    def test_archived_case_frees_the_thread(self, store: CaseStore) -> None:
        first, _ = store.ensure_case("thread-1")
        store.apply_event(first.id, "archive")
        second, created = store.ensure_case("thread-1")
        assert created is True
        assert second.id != first.id

    def test_logs_case_created(self, db: Database, store: CaseStore) -> None:
        case, _ = store.ensure_case("thread-1", created_by="u1")
        events = query_timeline(db, case_id=case.id)
        assert events[0]["event_type"] == "case_created"
        assert events[0]["new_value"] == "thread-1"
        assert events[0]["actor_id"] == "u1"


class TestApplyEvent:
    def test_valid_event_moves_case(self, store: CaseStore) -> None:
        case, _ = store.ensure_case("thread-1")
        updated = store.apply_event(case.id, "classify_rfq")
        assert updated.status == CaseStatus.RFQ_DETECTED
        assert store.get_case(case.id).status == CaseStatus.RFQ_DETECTED

    def test_invalid_event_raises_and_leaves_status(self, store: CaseStore) -> None:
        case, _ = store.ensure_case("thread-1")
        with pytest.raises(GuardViolation):
            store.apply_event(case.id, "send")
        assert store.get_case(case.id).status == CaseStatus.NEW_THREAD

    def test_lenient_mode_ignores_undefined_event(self, store: CaseStore) -> None:
        case, _ = store.ensure_case("thread-1")
        unchanged = store.apply_event(case.id, "open_blocking_gap", strict=False)
        assert unchanged.status == CaseStatus.NEW_THREAD

    def test_lenient_mode_still_rejects_archived(self, store: CaseStore) -> None:
        case, _ = store.ensure_case("thread-1")
        store.apply_event(case.id, "archive")
        with pytest.raises(GuardViolation, match="archived"):
            store.apply_event(case.id, "open_blocking_gap", strict=False)

    def test_unknown_case_raises_not_found(self, store: CaseStore) -> None:
        with pytest.raises(NotFoundError):
            store.apply_event("missing", "classify_rfq")

    def test_transition_is_logged(self, db: Database, store: CaseStore) -> None:
        case, _ = store.ensure_case("thread-1")
        store.apply_event(case.id, "classify_rfq", actor_type=ActorType.AI)
        events = query_timeline(db, case_id=case.id, event_type="status_changed")
        assert len(events) == 1
        assert events[0]["previous_value"] == "NEW_THREAD"
        assert events[0]["new_value"] == "RFQ_DETECTED"
        assert events[0]["actor_type"] == "ai"
        assert events[0]["event_data"] == {"event": "classify_rfq"}

    def test_concurrent_triggers_move_case_once(self, store: CaseStore) -> None:
        case, _ = store.ensure_case("thread-1")
        store.apply_event(case.id, "classify_rfq")
        outcomes: list[str] = []
        barrier = threading.Barrier(5)

        def worker() -> None:
            barrier.wait()
            try:
                store.apply_event(case.id, "reach_threshold")
                outcomes.append("moved")
            except GuardViolation:
                outcomes.append("rejected")

        threads = [threading.Thread(target=worker) for _ in range(5)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert outcomes.count("moved") == 1
        assert outcomes.count("rejected") == 4
        assert store.get_case(case.id).status == CaseStatus.READY_TO_PRICE


class TestCompleteness:
    def test_set_completeness(self, store: CaseStore) -> None:
        case, _ = store.ensure_case("thread-1")
        assert store.set_completeness(case.id, 0.75).completeness == 0.75

    def test_out_of_range_rejected(self, store: CaseStore) -> None:
        case, _ = store.ensure_case("thread-1")
        with pytest.raises(ValueError):
            store.set_completeness(case.id, 1.5)


class TestQueries:
    def test_list_cases_filters_by_status(self, store: CaseStore) -> None:
        a, _ = store.ensure_case("thread-a")
        store.ensure_case("thread-b")
        store.apply_event(a.id, "classify_rfq")
        assert [c.id for c in store.list_cases(CaseStatus.RFQ_DETECTED)] == [a.id]
        assert len(store.list_cases()) == 2

    def test_find_active_by_thread_ignores_archived(self, store: CaseStore) -> None:
        case, _ = store.ensure_case("thread-1")
        store.apply_event(case.id, "archive")
        assert store.find_active_by_thread("thread-1") is None

    def test_get_missing_case(self, store: CaseStore) -> None:
        with pytest.raises(NotFoundError):
            store.get_case("nope")
