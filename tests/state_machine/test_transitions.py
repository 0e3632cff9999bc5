"""Tests for the quote case transition map."""

import pytest

from quotation.domain.types import CaseStatus
from quotation.state_machine.transitions import TERMINAL_STATES, TRANSITIONS, CaseEvent


class TestCaseEvent:
    """Tests for the CaseEvent enum."""

    EXPECTED_MEMBERS = {
        "CLASSIFY_RFQ": "classify_rfq",
        "RECORD_FACTS": "record_facts",
        "REACH_THRESHOLD": "reach_threshold",
        "OPEN_BLOCKING_GAP": "open_blocking_gap",
        "RESOLVE_BLOCKING_PARTIAL": "resolve_blocking_partial",
        "RESOLVE_BLOCKING_COMPLETE": "resolve_blocking_complete",
        "START_PRICING": "start_pricing",
        "PRICING_SUCCEEDED": "pricing_succeeded",
        "PRICING_FAILED": "pricing_failed",
        "OPEN_REVIEW": "open_review",
        "SELECT_VERSION": "select_version",
        "SEND": "send",
        "ARCHIVE": "archive",
    }

    def test_has_exactly_13_members(self) -> None:
        assert len(CaseEvent) == 13

    @pytest.mark.parametrize(
        ("name", "value"),
        list(EXPECTED_MEMBERS.items()),
        ids=list(EXPECTED_MEMBERS.keys()),
    )
    def test_member_name_and_value(self, name: str, value: str) -> None:
        assert CaseEvent[name].value == value

    def test_is_str_enum(self) -> None:
        assert str(CaseEvent.SEND) == "send"


class TestTransitionsMap:
    """Tests for the TRANSITIONS dict completeness."""

    def test_has_exactly_32_entries(self) -> None:
        """22 lifecycle edges plus ARCHIVE from each of the 10 live statuses."""
        assert len(TRANSITIONS) == 32

    def test_all_non_terminal_states_appear_as_source(self) -> None:
        source_states = {state for state, _event in TRANSITIONS}
        non_terminal = {s for s in CaseStatus if s not in TERMINAL_STATES}
        assert non_terminal == source_states

    def test_archived_never_appears_as_source(self) -> None:
        source_states = {state for state, _event in TRANSITIONS}
        assert CaseStatus.ARCHIVED not in source_states

    @pytest.mark.parametrize(
        "status",
        [s for s in CaseStatus if s is not CaseStatus.ARCHIVED],
        ids=lambda s: s.value,
    )
    def test_every_live_status_can_archive(self, status: CaseStatus) -> None:
        assert TRANSITIONS[(status, CaseEvent.ARCHIVE)] == CaseStatus.ARCHIVED

    def test_only_quoted_versioned_can_send(self) -> None:
        senders = {state for state, event in TRANSITIONS if event == CaseEvent.SEND}
        assert senders == {CaseStatus.QUOTED_VERSIONED}

    def test_pricing_failure_returns_to_ready(self) -> None:
        key = (CaseStatus.PRICING_RUNNING, CaseEvent.PRICING_FAILED)
        assert TRANSITIONS[key] == CaseStatus.READY_TO_PRICE

    def test_priced_states_can_reprice(self) -> None:
        sources = {state for state, event in TRANSITIONS if event == CaseEvent.START_PRICING}
        assert sources == {
            CaseStatus.READY_TO_PRICE,
            CaseStatus.PRICED_DRAFT,
            CaseStatus.HUMAN_REVIEW,
            CaseStatus.QUOTED_VERSIONED,
        }

    def test_sent_only_archives(self) -> None:
        events = {event for state, event in TRANSITIONS if state == CaseStatus.SENT}
        assert events == {CaseEvent.ARCHIVE}

    def test_terminal_states_is_frozenset(self) -> None:
        assert isinstance(TERMINAL_STATES, frozenset)
        assert TERMINAL_STATES == {CaseStatus.ARCHIVED}
