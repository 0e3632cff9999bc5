"""Pricing engine collaborator contract and its HTTP client.

The engine is opaque: it receives the case facts and answers with line
items and totals, or fails.  Tariff arithmetic never happens here.
"""

from __future__ import annotations

from typing import Any, Protocol

import httpx
import structlog
from pydantic import ValidationError

from quotation.domain.errors import PricingEngineError, UpstreamTimeout
from quotation.domain.models import PricingSuccess
from quotation.fingerprint import normalize

logger = structlog.get_logger()

DEFAULT_CURRENCY = "XOF"


class PricingEngine(Protocol):
    """Anything that can price a set of case facts."""

    def price(self, engine_input: dict[str, Any]) -> PricingSuccess:
        """Return the engine's result or raise ``PricingEngineError``/``UpstreamTimeout``."""
        ...


def parse_engine_response(payload: Any) -> PricingSuccess:
    """Build a :class:`PricingSuccess` from an engine JSON body.

    Accepts ``{"lines": [...], "totals": {"ht": .., "ttc": ..}, "currency": ..}``
    and keeps the whole body as ``raw_response`` (it may carry
    ``historical_suggestions``).

    Raises:
        PricingEngineError: If the body does not have that shape or the
            engine reported ``success: false``.
    """
    if not isinstance(payload, dict):
        raise PricingEngineError("Pricing engine returned a non-object body")
    if payload.get("success") is False:
        raise PricingEngineError(str(payload.get("error") or "Pricing engine reported a failure"))
    try:
        return PricingSuccess(
            lines=payload.get("lines") or [],
            totals=payload["totals"],
            currency=payload.get("currency") or DEFAULT_CURRENCY,
            raw_response=payload,
        )
    except (KeyError, ValidationError) as exc:
        raise PricingEngineError(f"Malformed pricing engine response: {exc}") from exc


class HttpPricingEngine:
    """Call a pricing engine over HTTP.

    Args:
        url: Endpoint accepting ``POST`` with the engine input as JSON.
        timeout_seconds: Client-side timeout for one attempt.
        client: Optional pre-built ``httpx.Client`` (tests inject a
                ``MockTransport``-backed client here).
    """

    upstream = "pricing_engine"

    def __init__(
        self,
        url: str,
        timeout_seconds: float = 15.0,
        client: httpx.Client | None = None,
    ) -> None:
        self._url = url
        self._timeout_seconds = timeout_seconds
        self._client = client or httpx.Client(timeout=timeout_seconds)

    def price(self, engine_input: dict[str, Any]) -> PricingSuccess:
        try:
            response = self._client.post(
                self._url,
                json=normalize(engine_input),
                timeout=self._timeout_seconds,
            )
            response.raise_for_status()
        except httpx.TimeoutException as exc:
            raise UpstreamTimeout(self.upstream, self._timeout_seconds) from exc
        except httpx.HTTPStatusError as exc:
            logger.warning(
                "pricing_engine_rejected",
                status_code=exc.response.status_code,
                body=exc.response.text[:200],
            )
            raise PricingEngineError(
                f"Pricing engine answered HTTP {exc.response.status_code}",
                status_code=exc.response.status_code,
            ) from exc
        except httpx.HTTPError as exc:
            raise PricingEngineError(f"Pricing engine unreachable: {exc}") from exc

        try:
            payload = response.json()
        except ValueError as exc:
            raise PricingEngineError("Pricing engine returned invalid JSON") from exc
        return parse_engine_response(payload)

    def close(self) -> None:
        self._client.close()
