"""Map domain errors to HTTP responses.

Every :class:`QuotationError` becomes ``{success: false, error, code,
retryable}`` with a status code chosen by error type.
"""

from __future__ import annotations

import structlog
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from quotation.domain.errors import (
    ConcurrentRunError,
    DeliveryError,
    DocumentGenerationError,
    GuardViolation,
    InvariantViolation,
    NotAuthenticated,
    NotFoundError,
    PricingEngineError,
    QuotationError,
    ReanalysisBlocked,
    UpstreamTimeout,
)

logger = structlog.get_logger()

STATUS_CODES: dict[type[QuotationError], int] = {
    NotAuthenticated: 401,
    NotFoundError: 404,
    GuardViolation: 409,
    ConcurrentRunError: 409,
    InvariantViolation: 409,
    ReanalysisBlocked: 409,
    PricingEngineError: 502,
    DeliveryError: 502,
    DocumentGenerationError: 502,
    UpstreamTimeout: 504,
}


def status_code_for(exc: QuotationError) -> int:
    for error_type in type(exc).__mro__:
        if error_type in STATUS_CODES:
            return STATUS_CODES[error_type]  # type: ignore[index]
    return 400


def error_payload(exc: QuotationError) -> dict[str, object]:
    return {
        "success": False,
        "error": str(exc),
        "code": exc.code,
        "retryable": exc.retryable,
        "details": exc.details,
    }


async def quotation_error_handler(request: Request, exc: QuotationError) -> JSONResponse:
    """Render a :class:`QuotationError` as JSON."""
    status_code = status_code_for(exc)
    log = logger.warning if status_code < 500 else logger.error
    log(
        "request_rejected",
        path=request.url.path,
        code=exc.code,
        status_code=status_code,
        error=str(exc),
    )
    return JSONResponse(status_code=status_code, content=error_payload(exc))


def register_error_handlers(app: FastAPI) -> None:
    """Install the domain error handler on *app*."""
    app.add_exception_handler(QuotationError, quotation_error_handler)  # type: ignore[arg-type]
