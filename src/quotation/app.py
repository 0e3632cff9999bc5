"""Application entry point serving the quotation core over HTTP.

Configures:
- **structlog** with JSON rendering (production) or colored console (development)
- **Sentry** error reporting through the structlog processor chain (when a DSN is set)
- **Quotation services** on one shared SQLite database
- **Prometheus** HTTP and business metrics on ``/metrics``
- **Health probes** on ``/health`` and ``/ready``
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Any

import structlog
import uvicorn
from fastapi import FastAPI

from quotation.api import register_error_handlers, router
from quotation.config import Settings, get_settings, validate_settings
from quotation.delivery.gateway import HttpDeliveryGateway, HttpDocumentGenerator
from quotation.health import register_health_routes
from quotation.observability.metrics import setup_metrics
from quotation.observability.middleware import SERVICE_NAME, RequestIdMiddleware
from quotation.observability.sentry import get_sentry_processor, init_sentry
from quotation.pricing.engine import HttpPricingEngine
from quotation.service import QuoteCaseService
from quotation.state import Database, init_quotation_db

logger = structlog.get_logger()


def configure_logging(production: bool = False, sentry_enabled: bool = False) -> None:
    """Configure structlog for production (JSON) or development (console).

    Production mode (*production=True*): JSON rendering at INFO level.
    Development mode: colored console rendering at DEBUG level.

    Args:
        production: Enable production mode if ``True``.
        sentry_enabled: Forward ERROR events to Sentry.
    """
    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]
    if sentry_enabled:
        shared_processors.append(get_sentry_processor())

    if production:
        renderer: structlog.types.Processor = structlog.processors.JSONRenderer()
        log_level = logging.INFO
    else:
        renderer = structlog.dev.ConsoleRenderer()
        log_level = logging.DEBUG

    structlog.configure(
        processors=[*shared_processors, renderer],
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )

    structlog.contextvars.bind_contextvars(service=SERVICE_NAME)


def initialize_services(settings: Settings | None = None) -> dict[str, Any]:
    """Set up all shared services for the application.

    Opens the quotation database, creates the schema, builds the HTTP
    collaborators (pricing engine, delivery relay, and the document service
    when configured) and the :class:`QuoteCaseService` that composes them.

    Args:
        settings: Application settings.  If ``None``, ``get_settings()`` is used.

    Returns:
        A dict of initialized service instances keyed by name.
    """
    if settings is None:
        settings = get_settings()

    services: dict[str, Any] = {}

    db = Database.connect(settings.db_path)
    init_quotation_db(db)
    services["db"] = db
    logger.info("quotation_db_ready", path=str(settings.db_path))

    timeout = settings.upstream_timeout_seconds
    engine = HttpPricingEngine(settings.pricing_engine_url, timeout_seconds=timeout)
    gateway = HttpDeliveryGateway(settings.delivery_url, timeout_seconds=timeout)
    documents = None
    if settings.document_service_url:
        documents = HttpDocumentGenerator(settings.document_service_url, timeout_seconds=timeout)
    else:
        logger.info("document_service_disabled")
    services["http_clients"] = [c for c in (engine, gateway, documents) if c is not None]

    services["quotation_service"] = QuoteCaseService(
        db,
        engine,
        gateway,
        documents,
        completeness_threshold=settings.pricing_completeness_threshold,
        block_unchanged_reanalysis=settings.block_unchanged_reanalysis,
        max_retries=settings.upstream_max_retries,
    )
    services["_settings"] = settings
    return services


def close_services(services: dict[str, Any]) -> None:
    """Close HTTP clients and the database connection."""
    for client in services.pop("http_clients", []):
        client.close()
    db = services.get("db")
    if db is not None:
        db.close()
        logger.info("quotation_db_closed")


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None]:
    """Lifespan context manager for FastAPI startup and shutdown.

    On shutdown: closes the HTTP clients and the database connection.
    """
    logger.info("fastapi_app_starting")
    yield
    close_services(app.state.services)


def create_app(services: dict[str, Any]) -> FastAPI:
    """Create the FastAPI app with middleware, API routes, probes and metrics.

    Args:
        services: The initialized services dict from ``initialize_services``.

    Returns:
        The configured FastAPI application.
    """
    fastapi_app = FastAPI(title="Quotation Core", lifespan=lifespan)
    fastapi_app.state.services = services
    fastapi_app.state.settings = services.get("_settings") or get_settings()
    fastapi_app.add_middleware(RequestIdMiddleware)
    register_error_handlers(fastapi_app)
    fastapi_app.include_router(router)
    register_health_routes(fastapi_app)
    setup_metrics(fastapi_app)
    return fastapi_app


async def main() -> None:
    """Main entry point: configure, wire services and serve with uvicorn."""
    settings = get_settings()
    sentry_enabled = init_sentry(
        settings.sentry_dsn,
        environment="production" if settings.production else "development",
    )
    configure_logging(production=settings.production, sentry_enabled=sentry_enabled)
    logger.info("application_starting")

    validate_settings(settings)

    services = initialize_services(settings)
    fastapi_app = create_app(services)

    config = uvicorn.Config(
        fastapi_app,
        host="0.0.0.0",
        port=settings.port,
        log_level="info",
    )
    server = uvicorn.Server(config)
    await server.serve()


if __name__ == "__main__":
    asyncio.run(main())
