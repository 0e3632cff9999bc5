"""Tests for Pydantic domain models: Caller, QuoteCase, PricingTotals, runs and results."""

from datetime import UTC, datetime
from decimal import Decimal

import pytest
from pydantic import ValidationError

from quotation.domain.models import (
    AnalysisFreshness,
    Caller,
    EmailDraft,
    PricingRun,
    PricingTotals,
    QuoteCase,
    SendResult,
)
from quotation.domain.types import CaseStatus, DraftStatus, PricingRunStatus

NOW = datetime(2026, 3, 10, 12, 0, tzinfo=UTC)


class TestCaller:
    def test_valid(self):
        assert Caller(user_id="agent-42").user_id == "agent-42"

    def test_rejects_blank_identity(self):
        with pytest.raises(ValidationError, match="user_id must not be empty"):
            Caller(user_id="   ")

    def test_is_frozen(self):
        caller = Caller(user_id="agent-42")
        with pytest.raises(ValidationError):
            caller.user_id = "agent-7"  # type: ignore[misc]


class TestQuoteCase:
    def _case(self, **overrides) -> QuoteCase:
        values = {
            "id": "case-1",
            "thread_ref": "thread-1",
            "status": CaseStatus.NEW_THREAD,
            "created_at": NOW,
            "updated_at": NOW,
        }
        values.update(overrides)
        return QuoteCase(**values)

    def test_defaults(self):
        case = self._case()
        assert case.priority == "normal"
        assert case.completeness == 0.0
        assert case.is_archived is False

    def test_archived_flag(self):
        assert self._case(status=CaseStatus.ARCHIVED).is_archived is True

    def test_status_from_string(self):
        assert self._case(status="HUMAN_REVIEW").status is CaseStatus.HUMAN_REVIEW

    @pytest.mark.parametrize("completeness", [-0.1, 1.01])
    def test_rejects_completeness_outside_unit_interval(self, completeness):
        with pytest.raises(ValidationError, match="completeness must be within"):
            self._case(completeness=completeness)


class TestPricingTotals:
    def test_float_goes_through_str(self):
        totals = PricingTotals(ht=0.1 + 0.2, ttc=118000.5)
        assert totals.ht == Decimal(str(0.1 + 0.2))
        assert totals.ttc == Decimal("118000.5")

    def test_string_and_int_inputs(self):
        totals = PricingTotals(ht="250000.50", ttc=295000)
        assert totals.ht == Decimal("250000.50")
        assert totals.ttc == Decimal("295000")

    def test_serializes_as_strings(self):
        dumped = PricingTotals(ht=Decimal("100000"), ttc=Decimal("118000")).model_dump(mode="json")
        assert dumped == {"ht": "100000", "ttc": "118000"}


class TestPricingRun:
    def _run(self, **overrides) -> PricingRun:
        values = {
            "id": "run-1",
            "case_id": "case-1",
            "run_number": 1,
            "status": PricingRunStatus.RUNNING,
            "inputs_fingerprint": "abc",
            "started_at": NOW,
        }
        values.update(overrides)
        return PricingRun(**values)

    def test_running_is_not_terminal(self):
        assert self._run().is_terminal is False
        assert self._run(status=PricingRunStatus.FAILED).is_terminal is True

    def test_historical_suggestions(self):
        assert self._run().historical_suggestions is None
        run = self._run(raw_response={"historical_suggestions": [{"code": "THC"}]})
        assert run.historical_suggestions == [{"code": "THC"}]

    def test_public_view_omits_internal_fields(self):
        public = self._run().to_public()
        assert "inputs_fingerprint" not in public
        assert "raw_response" not in public
        assert public["created_at"] == NOW.isoformat()
        assert public["completed_at"] is None


class TestEmailDraft:
    def test_rejects_empty_recipients(self):
        with pytest.raises(ValidationError, match="recipients must not be empty"):
            EmailDraft(
                id="draft-1",
                case_id="case-1",
                owner_id="agent-42",
                subject="Quotation",
                recipients=[],
                status=DraftStatus.DRAFT,
                created_at=NOW,
            )


class TestSendResult:
    def test_response_has_only_public_keys(self):
        result = SendResult(
            idempotent=True,
            sent_at=NOW,
            correlation_id="corr-1",
            case_id="case-1",
            version_id="v-1",
            draft_id="draft-1",
        )
        assert result.to_response() == {
            "success": True,
            "idempotent": True,
            "sent_at": NOW.isoformat(),
            "correlation_id": "corr-1",
        }


class TestAnalysisFreshness:
    def test_first_analysis_is_not_unchanged(self):
        assert AnalysisFreshness(fingerprint="a").unchanged is False

    def test_same_fingerprint_is_unchanged(self):
        assert AnalysisFreshness(fingerprint="a", previous_fingerprint="a").unchanged is True

    def test_new_fingerprint_is_changed(self):
        assert AnalysisFreshness(fingerprint="b", previous_fingerprint="a").unchanged is False
