"""HTTP routes for the quotation core under ``/api/v1``.

Handlers authenticate the caller first, then delegate to
:class:`QuoteCaseService`.  The service is synchronous (SQLite and blocking
httpx clients), so every call runs in a worker thread via
``asyncio.to_thread``.
"""

from __future__ import annotations

import asyncio
from typing import Any

import structlog
from fastapi import APIRouter, Depends, Query, Request, Response
from pydantic import BaseModel, Field

from quotation.api.auth import require_caller
from quotation.domain.models import Caller
from quotation.domain.types import GapStatus
from quotation.service import QuoteCaseService

logger = structlog.get_logger()

router = APIRouter(prefix="/api/v1")


def get_service(request: Request) -> QuoteCaseService:
    return request.app.state.services["quotation_service"]


# ---------------------------------------------------------------------------
# Request bodies
# ---------------------------------------------------------------------------


class CreateCaseRequest(BaseModel):
    thread_ref: str = Field(min_length=1)
    request_type: str | None = None
    priority: str = "normal"


class OpenGapRequest(BaseModel):
    gap_key: str = Field(min_length=1)
    gap_category: str = Field(min_length=1)
    question: str
    is_blocking: bool = False


class ResolveGapRequest(BaseModel):
    completeness: float | None = Field(default=None, ge=0.0, le=1.0)


class AnalysisRequest(BaseModel):
    source_email_ids: list[str]
    completeness: float = Field(ge=0.0, le=1.0)
    force: bool = False


class PricingRequest(BaseModel):
    engine_input: dict[str, Any] = Field(default_factory=dict)


class CreateVersionRequest(BaseModel):
    pricing_run_id: str | None = None
    snapshot: dict[str, Any] | None = None


class CreateDraftRequest(BaseModel):
    subject: str = Field(min_length=1)
    recipients: list[str] = Field(min_length=1)
    body: str = ""


class SendQuotationRequest(BaseModel):
    case_id: str
    version_id: str
    draft_id: str


# ---------------------------------------------------------------------------
# Cases
# ---------------------------------------------------------------------------


@router.post("/cases")
async def create_case(
    body: CreateCaseRequest,
    response: Response,
    caller: Caller = Depends(require_caller),
    service: QuoteCaseService = Depends(get_service),
) -> dict[str, Any]:
    """Return the active case of a thread, creating it (201) if needed."""
    case, created = await asyncio.to_thread(
        service.ensure_case,
        body.thread_ref,
        request_type=body.request_type,
        priority=body.priority,
        caller=caller,
    )
    response.status_code = 201 if created else 200
    return {"case": case.model_dump(mode="json"), "created": created}


@router.get("/cases/{case_id}")
async def get_case(
    case_id: str,
    caller: Caller = Depends(require_caller),
    service: QuoteCaseService = Depends(get_service),
) -> dict[str, Any]:
    return {"case": await asyncio.to_thread(service.case_summary, case_id)}


@router.post("/cases/{case_id}/classify")
async def classify_case(
    case_id: str,
    caller: Caller = Depends(require_caller),
    service: QuoteCaseService = Depends(get_service),
) -> dict[str, Any]:
    case = await asyncio.to_thread(service.classify_rfq, case_id, caller)
    return {"case": case.model_dump(mode="json")}


@router.post("/cases/{case_id}/review")
async def open_review(
    case_id: str,
    caller: Caller = Depends(require_caller),
    service: QuoteCaseService = Depends(get_service),
) -> dict[str, Any]:
    case = await asyncio.to_thread(service.open_review, case_id, caller)
    return {"case": case.model_dump(mode="json")}


@router.post("/cases/{case_id}/archive")
async def archive_case(
    case_id: str,
    caller: Caller = Depends(require_caller),
    service: QuoteCaseService = Depends(get_service),
) -> dict[str, Any]:
    case = await asyncio.to_thread(service.archive, case_id, caller)
    return {"case": case.model_dump(mode="json")}


@router.get("/cases/{case_id}/timeline")
async def case_timeline(
    case_id: str,
    caller: Caller = Depends(require_caller),
    service: QuoteCaseService = Depends(get_service),
) -> dict[str, Any]:
    return {"events": await asyncio.to_thread(service.timeline_for, case_id)}


# ---------------------------------------------------------------------------
# Gaps and analysis
# ---------------------------------------------------------------------------


@router.post("/cases/{case_id}/gaps", status_code=201)
async def open_gap(
    case_id: str,
    body: OpenGapRequest,
    caller: Caller = Depends(require_caller),
    service: QuoteCaseService = Depends(get_service),
) -> dict[str, Any]:
    gap = await asyncio.to_thread(
        service.open_gap,
        case_id,
        body.gap_key,
        body.gap_category,
        body.question,
        body.is_blocking,
        caller,
    )
    return {"gap": {"id": gap.id, **gap.to_public()}}


@router.get("/cases/{case_id}/gaps")
async def list_gaps(
    case_id: str,
    status: GapStatus | None = None,
    caller: Caller = Depends(require_caller),
    service: QuoteCaseService = Depends(get_service),
) -> dict[str, Any]:
    gaps = await asyncio.to_thread(service.list_gaps, case_id, status)
    return {"gaps": [{"id": gap.id, **gap.to_public()} for gap in gaps]}


@router.post("/gaps/{gap_id}/resolve")
async def resolve_gap(
    gap_id: str,
    body: ResolveGapRequest | None = None,
    caller: Caller = Depends(require_caller),
    service: QuoteCaseService = Depends(get_service),
) -> dict[str, Any]:
    completeness = body.completeness if body is not None else None
    gap = await asyncio.to_thread(service.resolve_gap, gap_id, caller, completeness)
    case = await asyncio.to_thread(service.get_case, gap.case_id)
    return {
        "gap": {"id": gap.id, **gap.to_public()},
        "case_status": case.status.value,
    }


@router.post("/cases/{case_id}/analysis")
async def record_analysis(
    case_id: str,
    body: AnalysisRequest,
    caller: Caller = Depends(require_caller),
    service: QuoteCaseService = Depends(get_service),
) -> dict[str, Any]:
    case, freshness = await asyncio.to_thread(
        service.record_analysis,
        case_id,
        body.source_email_ids,
        body.completeness,
        force=body.force,
        caller=caller,
    )
    return {
        "case": case.model_dump(mode="json"),
        "sources_fingerprint": freshness.fingerprint,
        "unchanged": freshness.unchanged,
    }


@router.get("/cases/{case_id}/analysis/freshness")
async def analysis_freshness(
    case_id: str,
    source_email_ids: list[str] = Query(default=[]),
    caller: Caller = Depends(require_caller),
    service: QuoteCaseService = Depends(get_service),
) -> dict[str, Any]:
    freshness = await asyncio.to_thread(service.analysis_freshness, case_id, source_email_ids)
    return {
        "fingerprint": freshness.fingerprint,
        "previous_fingerprint": freshness.previous_fingerprint,
        "unchanged": freshness.unchanged,
    }


# ---------------------------------------------------------------------------
# Pricing
# ---------------------------------------------------------------------------


@router.post("/cases/{case_id}/pricing-runs", status_code=201)
async def start_pricing(
    case_id: str,
    body: PricingRequest,
    caller: Caller = Depends(require_caller),
    service: QuoteCaseService = Depends(get_service),
) -> dict[str, Any]:
    run = await asyncio.to_thread(service.start_pricing, case_id, body.engine_input, caller)
    return {"run": {"id": run.id, **run.to_public()}}


@router.get("/cases/{case_id}/pricing-runs")
async def list_pricing_runs(
    case_id: str,
    caller: Caller = Depends(require_caller),
    service: QuoteCaseService = Depends(get_service),
) -> dict[str, Any]:
    runs = await asyncio.to_thread(service.list_runs, case_id)
    return {"runs": [{"id": run.id, **run.to_public()} for run in runs]}


# ---------------------------------------------------------------------------
# Versions
# ---------------------------------------------------------------------------


@router.post("/cases/{case_id}/versions", status_code=201)
async def create_version(
    case_id: str,
    body: CreateVersionRequest,
    caller: Caller = Depends(require_caller),
    service: QuoteCaseService = Depends(get_service),
) -> dict[str, Any]:
    version = await asyncio.to_thread(
        service.create_version, case_id, body.pricing_run_id, body.snapshot, caller
    )
    return {"version": {"id": version.id, **version.to_public()}}


@router.get("/cases/{case_id}/versions")
async def list_versions(
    case_id: str,
    caller: Caller = Depends(require_caller),
    service: QuoteCaseService = Depends(get_service),
) -> dict[str, Any]:
    versions = await asyncio.to_thread(service.list_versions, case_id)
    return {"versions": [{"id": v.id, **v.to_public()} for v in versions]}


@router.post("/versions/{version_id}/select")
async def select_version(
    version_id: str,
    caller: Caller = Depends(require_caller),
    service: QuoteCaseService = Depends(get_service),
) -> dict[str, Any]:
    version = await asyncio.to_thread(service.select_version, version_id, caller)
    return {"version": {"id": version.id, **version.to_public()}}


@router.post("/versions/{version_id}/finalize")
async def finalize_version(
    version_id: str,
    caller: Caller = Depends(require_caller),
    service: QuoteCaseService = Depends(get_service),
) -> dict[str, Any]:
    version = await asyncio.to_thread(service.finalize_version, version_id)
    return {"version": {"id": version.id, **version.to_public()}}


@router.get("/versions/{version_id}/export")
async def export_version(
    version_id: str,
    caller: Caller = Depends(require_caller),
    service: QuoteCaseService = Depends(get_service),
) -> dict[str, str]:
    return {"url": await asyncio.to_thread(service.export_version, version_id)}


# ---------------------------------------------------------------------------
# Drafts and send
# ---------------------------------------------------------------------------


@router.post("/cases/{case_id}/drafts", status_code=201)
async def create_draft(
    case_id: str,
    body: CreateDraftRequest,
    caller: Caller = Depends(require_caller),
    service: QuoteCaseService = Depends(get_service),
) -> dict[str, Any]:
    draft = await asyncio.to_thread(
        service.create_draft, case_id, caller, body.subject, body.recipients, body.body
    )
    return {"draft": draft.model_dump(mode="json")}


@router.post("/send-quotation")
async def send_quotation(
    body: SendQuotationRequest,
    caller: Caller = Depends(require_caller),
    service: QuoteCaseService = Depends(get_service),
) -> dict[str, Any]:
    """Send a quotation; repeated calls for a sent draft replay the first result."""
    result = await asyncio.to_thread(
        service.send, body.case_id, body.version_id, body.draft_id, caller
    )
    structlog.contextvars.bind_contextvars(correlation_id=result.correlation_id)
    logger.info("send_quotation_handled", idempotent=result.idempotent)
    return result.to_response()
