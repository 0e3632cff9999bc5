"""Tests for the SQLite timeline store: insert, query filters, and injection safety."""

from quotation.audit.models import TimelineEvent, TimelineEventType
from quotation.audit.store import insert_timeline_event, query_timeline
from quotation.domain.types import ActorType
from quotation.state import Database


def _event(case_id: str = "case-1", **overrides) -> TimelineEvent:
    values = {
        "case_id": case_id,
        "event_type": TimelineEventType.STATUS_CHANGED,
        "previous_value": "NEW_THREAD",
        "new_value": "RFQ_DETECTED",
    }
    values.update(overrides)
    return TimelineEvent(**values)


class TestInsertTimelineEvent:
    """Tests for inserting timeline events."""

    def test_insert_returns_row_id(self, db: Database):
        assert insert_timeline_event(db, _event()) > 0

    def test_round_trips_fields(self, db: Database):
        insert_timeline_event(
            db,
            _event(
                actor_type=ActorType.USER,
                actor_id="agent-42",
                event_data={"event": "classify_rfq"},
            ),
        )
        row = query_timeline(db)[0]
        assert row["case_id"] == "case-1"
        assert row["event_type"] == "status_changed"
        assert row["previous_value"] == "NEW_THREAD"
        assert row["new_value"] == "RFQ_DETECTED"
        assert row["actor_type"] == "user"
        assert row["actor_id"] == "agent-42"
        assert row["event_data"] == {"event": "classify_rfq"}
        assert row["timestamp"]

    def test_missing_event_data_stays_none(self, db: Database):
        insert_timeline_event(db, _event())
        assert query_timeline(db)[0]["event_data"] is None

    def test_rolled_back_with_enclosing_transaction(self, db: Database):
        try:
            with db.transaction():
                insert_timeline_event(db, _event())
                raise RuntimeError("abort")
        except RuntimeError:
            pass
        assert query_timeline(db) == []


class TestQueryTimeline:
    """Tests for query filtering."""

    def test_filter_by_case(self, db: Database):
        insert_timeline_event(db, _event("case-1"))
        insert_timeline_event(db, _event("case-2"))
        results = query_timeline(db, case_id="case-2")
        assert [r["case_id"] for r in results] == ["case-2"]

    def test_filter_by_event_type(self, db: Database):
        insert_timeline_event(db, _event())
        insert_timeline_event(db, _event(event_type=TimelineEventType.GAP_OPENED, new_value="weight"))
        results = query_timeline(db, event_type="gap_opened")
        assert [r["new_value"] for r in results] == ["weight"]

    def test_filter_by_actor(self, db: Database):
        insert_timeline_event(db, _event(actor_id="agent-42"))
        insert_timeline_event(db, _event(actor_id="agent-7"))
        assert len(query_timeline(db, actor_id="agent-7")) == 1

    def test_date_range(self, db: Database):
        insert_timeline_event(db, _event())
        assert len(query_timeline(db, from_date="2000-01-01")) == 1
        assert query_timeline(db, to_date="2000-01-01") == []

    def test_oldest_first_and_limit(self, db: Database):
        for value in ("a", "b", "c"):
            insert_timeline_event(db, _event(new_value=value))
        assert [r["new_value"] for r in query_timeline(db)] == ["a", "b", "c"]
        assert [r["new_value"] for r in query_timeline(db, limit=2)] == ["a", "b"]

    def test_filter_values_are_parameterized(self, db: Database):
        insert_timeline_event(db, _event())
        results = query_timeline(db, case_id="' OR '1'='1")
        assert results == []
        assert db.fetchone("SELECT COUNT(*) AS n FROM case_timeline_events")["n"] == 1
