"""Pydantic v2 models for the quotation core's entities and results.

Entities are frozen: a model instance is a snapshot of a row at read time.
State changes always go through a store, which returns a fresh snapshot.
Monetary values use Decimal; float inputs coming from JSON engine payloads
are converted through ``str`` so no binary rounding noise leaks in.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from quotation.domain.types import (
    CaseStatus,
    DeliveryStatus,
    DraftStatus,
    GapStatus,
    PricingRunStatus,
    VersionStatus,
)


class Caller(BaseModel):
    """An authenticated identity acting on the system."""

    model_config = ConfigDict(frozen=True)

    user_id: str

    @field_validator("user_id")
    @classmethod
    def user_id_must_not_be_empty(cls, v: str) -> str:
        """Ensure the identity is not blank."""
        if not v.strip():
            raise ValueError("user_id must not be empty")
        return v


class QuoteCase(BaseModel):
    """One quotation request tracked end to end, keyed by its email thread."""

    model_config = ConfigDict(frozen=True)

    id: str
    thread_ref: str
    status: CaseStatus
    request_type: str | None = None
    priority: str = "normal"
    completeness: float = 0.0
    created_by: str | None = None
    created_at: datetime
    updated_at: datetime

    @field_validator("completeness")
    @classmethod
    def completeness_in_unit_interval(cls, v: float) -> float:
        """Completeness is a fraction of required facts known."""
        if not 0.0 <= v <= 1.0:
            raise ValueError(f"completeness must be within [0, 1], got {v}")
        return v

    @property
    def is_archived(self) -> bool:
        return self.status is CaseStatus.ARCHIVED


class Gap(BaseModel):
    """A missing or ambiguous fact that may block pricing."""

    model_config = ConfigDict(frozen=True)

    id: str
    case_id: str
    gap_key: str
    gap_category: str
    question: str
    is_blocking: bool
    status: GapStatus
    created_at: datetime
    resolved_at: datetime | None = None

    def to_public(self) -> dict[str, Any]:
        """Return the fields consumed by the UI."""
        return self.model_dump(
            mode="json",
            include={"gap_key", "gap_category", "question", "is_blocking", "status", "created_at"},
        )


class PricingTotals(BaseModel):
    """Totals before (``ht``) and including (``ttc``) tax."""

    model_config = ConfigDict(frozen=True)

    ht: Decimal
    ttc: Decimal

    @field_validator("ht", "ttc", mode="before")
    @classmethod
    def coerce_float_through_str(cls, v: object) -> object:
        """Convert JSON floats via ``str`` to avoid binary precision artefacts."""
        if isinstance(v, float):
            return Decimal(str(v))
        return v


class PricingSuccess(BaseModel):
    """Successful engine outcome for ``complete_run``."""

    model_config = ConfigDict(frozen=True)

    lines: list[dict[str, Any]]
    totals: PricingTotals
    currency: str = "XOF"
    raw_response: dict[str, Any] = Field(default_factory=dict)


class PricingFailure(BaseModel):
    """Failed engine outcome for ``complete_run``."""

    model_config = ConfigDict(frozen=True)

    reason: str


PricingOutcome = PricingSuccess | PricingFailure


class PricingRun(BaseModel):
    """One recorded attempt to price a case."""

    model_config = ConfigDict(frozen=True)

    id: str
    case_id: str
    run_number: int
    status: PricingRunStatus
    inputs: dict[str, Any] = Field(default_factory=dict)
    inputs_fingerprint: str
    totals: PricingTotals | None = None
    currency: str | None = None
    line_items: list[dict[str, Any]] = Field(default_factory=list)
    raw_response: dict[str, Any] | None = None
    error_message: str | None = None
    created_by: str | None = None
    started_at: datetime
    completed_at: datetime | None = None
    duration_ms: int | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status is not PricingRunStatus.RUNNING

    @property
    def historical_suggestions(self) -> Any | None:
        """Advisory line proposals drawn from similar past cases, if the engine sent any."""
        if not self.raw_response:
            return None
        return self.raw_response.get("historical_suggestions")

    def to_public(self) -> dict[str, Any]:
        """Return the externally exposed representation of the run."""
        public: dict[str, Any] = {
            "run_number": self.run_number,
            "status": self.status.value,
            "totals": self.totals.model_dump(mode="json") if self.totals else None,
            "currency": self.currency,
            "line_items": self.line_items,
            "created_at": self.started_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
        }
        suggestions = self.historical_suggestions
        if suggestions is not None:
            public["historical_suggestions"] = suggestions
        if self.error_message is not None:
            public["error_message"] = self.error_message
        return public


class QuotationVersion(BaseModel):
    """An immutable numbered snapshot of a priced quotation."""

    model_config = ConfigDict(frozen=True)

    id: str
    case_id: str
    pricing_run_id: str | None
    version_number: int
    status: VersionStatus
    is_selected: bool
    snapshot: dict[str, Any]
    snapshot_fingerprint: str
    created_at: datetime
    created_by: str | None = None

    def to_public(self) -> dict[str, Any]:
        """Return the externally exposed representation of the version."""
        return self.model_dump(
            mode="json",
            include={
                "version_number",
                "status",
                "is_selected",
                "snapshot",
                "created_at",
                "created_by",
            },
        )


class EmailDraft(BaseModel):
    """The outbound message carrying a quotation to the client."""

    model_config = ConfigDict(frozen=True)

    id: str
    case_id: str
    owner_id: str
    subject: str
    recipients: list[str]
    body: str = ""
    status: DraftStatus
    sent_at: datetime | None = None
    quotation_version_id: str | None = None
    delivery_status: DeliveryStatus | None = None
    created_at: datetime

    @field_validator("recipients")
    @classmethod
    def recipients_must_not_be_empty(cls, v: list[str]) -> list[str]:
        """A quotation always goes to at least one address."""
        if not v:
            raise ValueError("recipients must not be empty")
        return v


class SendResult(BaseModel):
    """Successful outcome of the send pipeline, including idempotent replays."""

    model_config = ConfigDict(frozen=True)

    success: bool = True
    idempotent: bool
    sent_at: datetime
    correlation_id: str
    case_id: str
    version_id: str
    draft_id: str

    def to_response(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "idempotent": self.idempotent,
            "sent_at": self.sent_at.isoformat(),
            "correlation_id": self.correlation_id,
        }


class AnalysisFreshness(BaseModel):
    """Comparison of the current source emails against the last analysis."""

    model_config = ConfigDict(frozen=True)

    fingerprint: str
    previous_fingerprint: str | None = None

    @property
    def unchanged(self) -> bool:
        return self.previous_fingerprint is not None and self.fingerprint == self.previous_fingerprint
