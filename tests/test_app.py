"""Tests for application entry point: structlog config, service initialization, and app creation."""

from __future__ import annotations

import inspect
from pathlib import Path

import structlog
from fastapi import FastAPI
from structlog_sentry import SentryProcessor

from quotation.app import close_services, configure_logging, create_app, initialize_services
from quotation.config import Settings
from quotation.delivery.gateway import HttpDocumentGenerator
from quotation.service import QuoteCaseService


def _reset_structlog() -> None:
    """Reset structlog so cached loggers don't leak between tests."""
    structlog.reset_defaults()


def _base_settings(tmp_path: Path, **overrides) -> Settings:
    """Build a Settings instance pointing db_path to tmp_path.

    Collaborator URLs point at unroutable test hosts; nothing is called
    during initialization.
    """
    defaults = {
        "db_path": tmp_path / "quotation.db",
        "pricing_engine_url": "https://pricing.example.test/v1/price",
        "delivery_url": "https://relay.example.test/send",
    }
    defaults.update(overrides)
    return Settings(_env_file=None, **defaults)  # type: ignore[call-arg]


class TestConfigureLogging:
    """Tests for structlog configuration in dev and production modes."""

    def test_development_mode_uses_console_renderer(self) -> None:
        _reset_structlog()
        configure_logging(production=False)
        processors = structlog.get_config()["processors"]
        assert any(isinstance(p, structlog.dev.ConsoleRenderer) for p in processors)

    def test_production_mode_uses_json_renderer(self) -> None:
        _reset_structlog()
        configure_logging(production=True)
        processors = structlog.get_config()["processors"]
        assert any(isinstance(p, structlog.processors.JSONRenderer) for p in processors)

    def test_sentry_processor_only_when_enabled(self) -> None:
        _reset_structlog()
        configure_logging()
        assert not any(isinstance(p, SentryProcessor) for p in structlog.get_config()["processors"])

        configure_logging(sentry_enabled=True)
        processors = structlog.get_config()["processors"]
        sentry_index = next(i for i, p in enumerate(processors) if isinstance(p, SentryProcessor))
        assert sentry_index < len(processors) - 1

    def test_service_name_bound(self) -> None:
        _reset_structlog()
        configure_logging()
        assert structlog.contextvars.get_contextvars()["service"] == "quotation-core"


class TestInitializeServices:
    """Tests for service initialization."""

    def test_creates_database(self, tmp_path: Path) -> None:
        settings = _base_settings(tmp_path, db_path=tmp_path / "nested" / "quotation.db")

        services = initialize_services(settings)

        assert settings.db_path.exists()
        assert services["db"].ping() is True
        assert isinstance(services["quotation_service"], QuoteCaseService)
        assert services["_settings"] is settings
        close_services(services)

    def test_document_service_disabled_without_url(self, tmp_path: Path) -> None:
        services = initialize_services(_base_settings(tmp_path))

        assert len(services["http_clients"]) == 2
        assert services["quotation_service"]._documents is None
        close_services(services)

    def test_document_service_enabled_with_url(self, tmp_path: Path) -> None:
        settings = _base_settings(tmp_path, document_service_url="https://docs.example.test/render")

        services = initialize_services(settings)

        assert isinstance(services["quotation_service"]._documents, HttpDocumentGenerator)
        assert len(services["http_clients"]) == 3
        close_services(services)

    def test_lifecycle_policy_passed_through(self, tmp_path: Path) -> None:
        settings = _base_settings(
            tmp_path,
            pricing_completeness_threshold=0.6,
            block_unchanged_reanalysis=True,
            upstream_max_retries=3,
        )

        services = initialize_services(settings)
        service = services["quotation_service"]

        assert service._threshold == 0.6
        assert service._block_unchanged is True
        assert service._max_retries == 3
        close_services(services)

    def test_close_services_closes_database(self, tmp_path: Path) -> None:
        services = initialize_services(_base_settings(tmp_path))
        db = services["db"]

        close_services(services)

        assert db.ping() is False
        assert "http_clients" not in services


class TestCreateApp:
    """Tests for FastAPI app creation."""

    def test_returns_fastapi_instance(self, tmp_path: Path) -> None:
        services = initialize_services(_base_settings(tmp_path))
        app = create_app(services)

        assert isinstance(app, FastAPI)
        assert app.router.lifespan_context is not None
        close_services(services)

    def test_no_deprecated_on_event(self) -> None:
        """Verify deprecated on_event pattern is not used in create_app."""
        source = inspect.getsource(create_app)
        assert "on_event" not in source

    def test_routes_registered(self, tmp_path: Path) -> None:
        services = initialize_services(_base_settings(tmp_path))
        app = create_app(services)

        route_paths = {route.path for route in app.routes}
        assert {"/health", "/ready", "/metrics", "/api/v1/send-quotation"} <= route_paths
        assert "/api/v1/cases/{case_id}/pricing-runs" in route_paths
        close_services(services)

    def test_settings_stored_on_app_state(self, tmp_path: Path) -> None:
        settings = _base_settings(tmp_path)
        services = initialize_services(settings)
        app = create_app(services)

        assert app.state.settings is settings
        assert app.state.services is services
        close_services(services)


class TestMainImport:
    """Test that main() can be imported without side effects."""

    def test_main_importable(self) -> None:
        from quotation.app import main

        assert callable(main)
