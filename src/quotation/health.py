"""Liveness and readiness probes.

- ``GET /health`` answers as long as the process serves requests.
- ``GET /ready`` answers 200 only when the database responds, every
  quotation table exists, and the quotation service is wired; otherwise 503
  with the failing checks.
"""

from __future__ import annotations

import asyncio
from typing import Any

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from quotation.observability.middleware import SERVICE_NAME
from quotation.state import Database
from quotation.state.schema import missing_tables


def _database_checks(db: Database | None) -> dict[str, str]:
    if db is None or not db.ping():
        return {"database": "fail", "schema": "fail"}
    return {"database": "ok", "schema": "fail" if missing_tables(db) else "ok"}


def register_health_routes(app: FastAPI) -> None:
    """Register ``/health`` and ``/ready`` on *app*."""

    @app.get("/health")
    async def health() -> dict[str, str]:
        return {"status": "healthy", "service": SERVICE_NAME}

    @app.get("/ready")
    async def ready(request: Request) -> JSONResponse:
        services: dict[str, Any] = request.app.state.services
        checks = await asyncio.to_thread(_database_checks, services.get("db"))
        checks["quotation_service"] = "ok" if services.get("quotation_service") else "fail"

        ok = all(value == "ok" for value in checks.values())
        return JSONResponse(
            content={"status": "ready" if ok else "not_ready", "checks": checks},
            status_code=200 if ok else 503,
        )
