"""Centralized, typed configuration using pydantic-settings.

Provides a single ``Settings`` class backed by ``.env`` file and environment
variables, a cached ``get_settings()`` accessor, and a ``validate_settings()``
startup gate that enforces collaborator configuration in production mode.

This module has no imports from the rest of the ``quotation`` package so
that anything may import it.
"""

from __future__ import annotations

import json
import sys
from functools import lru_cache
from pathlib import Path
from typing import Any

import structlog
from pydantic import Field, SecretStr, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = structlog.get_logger()


class Settings(BaseSettings):
    """Application settings loaded from environment variables and ``.env`` file.

    ``SecretStr`` fields prevent accidental leaks in logs or error output.
    ``API_TOKENS`` is a JSON object mapping bearer tokens to user ids, held
    whole as one secret; read it through :meth:`token_map`.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        hide_input_in_errors=True,
    )

    # -- General ---------------------------------------------------------------
    production: bool = False
    port: int = 8000

    # -- Persistence -----------------------------------------------------------
    db_path: Path = Path("data/quotation.db")

    # -- Lifecycle policy ------------------------------------------------------
    pricing_completeness_threshold: float = Field(default=0.8, ge=0.0, le=1.0)
    block_unchanged_reanalysis: bool = False

    # -- Upstream collaborators ------------------------------------------------
    upstream_timeout_seconds: float = Field(default=15.0, gt=0)
    upstream_max_retries: int = Field(default=1, ge=0)
    pricing_engine_url: str = ""
    delivery_url: str = ""
    document_service_url: str = ""

    # -- Authentication (secrets) ----------------------------------------------
    api_tokens: SecretStr = SecretStr("")

    # -- Observability ---------------------------------------------------------
    sentry_dsn: str = ""

    @field_validator("pricing_engine_url", "delivery_url", "document_service_url")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        return v.rstrip("/")

    @field_validator("api_tokens", mode="before")
    @classmethod
    def encode_token_map(cls, v: Any) -> Any:
        if isinstance(v, dict):
            return json.dumps(v)
        return v

    @field_validator("api_tokens")
    @classmethod
    def token_map_must_be_an_object(cls, v: SecretStr) -> SecretStr:
        """Reject anything but a ``{token: user_id}`` object of strings."""
        raw = v.get_secret_value().strip()
        if not raw:
            return v
        try:
            parsed = json.loads(raw)
        except json.JSONDecodeError:
            raise ValueError("API_TOKENS must be a JSON object") from None
        if not isinstance(parsed, dict) or not all(
            isinstance(token, str) and isinstance(user_id, str)
            for token, user_id in parsed.items()
        ):
            raise ValueError("API_TOKENS must map string tokens to string user ids")
        return v

    def token_map(self) -> dict[str, str]:
        """Return the configured ``{token: user_id}`` mapping."""
        raw = self.api_tokens.get_secret_value().strip()
        return json.loads(raw) if raw else {}


@lru_cache
def get_settings() -> Settings:
    """Return a cached ``Settings`` instance.

    Call ``get_settings.cache_clear()`` in tests to reset.
    """
    try:
        return Settings()
    except ValidationError as exc:
        # Log only the structured errors list, never the raw exception.
        logger.error("settings_validation_failed", errors=exc.errors(include_input=False))
        sys.exit(1)


def validate_settings(settings: Settings) -> None:
    """Enforce collaborator configuration at startup.

    In **production** mode the application exits with a clear error block if
    any required setting is missing.  In **development** mode each problem is
    logged as a warning and the application continues to start.

    Args:
        settings: The loaded application settings.
    """
    errors: list[str] = []

    if not settings.pricing_engine_url:
        errors.append("PRICING_ENGINE_URL is empty or not set")

    if not settings.delivery_url:
        errors.append("DELIVERY_URL is empty or not set")

    if not settings.document_service_url:
        errors.append("DOCUMENT_SERVICE_URL is empty or not set")

    if not settings.token_map():
        errors.append("API_TOKENS is empty or not set; every API call will be rejected")

    if not errors:
        logger.info("settings_validation_passed")
        return

    if settings.production:
        for err in errors:
            logger.error("setting_missing", detail=err)
        print("\n=== STARTUP FAILED ===", file=sys.stderr)
        print("Missing required settings for production mode:", file=sys.stderr)
        for err in errors:
            print(f"  - {err}", file=sys.stderr)
        print("======================\n", file=sys.stderr)
        sys.exit(1)
    else:
        for err in errors:
            logger.warning("setting_missing_dev", detail=err)
