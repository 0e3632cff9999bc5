"""Tests for domain enumerations persisted as plain strings."""

import pytest

from quotation.domain.types import (
    ActorType,
    CaseStatus,
    DeliveryStatus,
    DraftStatus,
    GapStatus,
    PricingRunStatus,
    VersionStatus,
)


class TestCaseStatus:
    def test_has_eleven_states(self):
        assert len(CaseStatus) == 11

    def test_values_match_names(self):
        assert all(member.value == member.name for member in CaseStatus)

    def test_is_str(self):
        assert CaseStatus.SENT == "SENT"
        assert f"{CaseStatus.HUMAN_REVIEW}" == "HUMAN_REVIEW"


@pytest.mark.parametrize(
    ("enum_cls", "values"),
    [
        (GapStatus, {"open", "resolved"}),
        (PricingRunStatus, {"running", "success", "failed"}),
        (VersionStatus, {"draft", "final", "superseded"}),
        (DraftStatus, {"draft", "sent"}),
        (DeliveryStatus, {"pending", "delivered", "failed"}),
        (ActorType, {"system", "user", "ai"}),
    ],
)
def test_persisted_values(enum_cls, values):
    assert {member.value for member in enum_cls} == values


def test_round_trip_from_string():
    assert PricingRunStatus("failed") is PricingRunStatus.FAILED
    with pytest.raises(ValueError):
        VersionStatus("archived")
