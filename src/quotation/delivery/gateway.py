"""Outbound collaborators: the email delivery channel and the document service.

Both are reached over HTTP with httpx under the configured client timeout;
a timeout surfaces as :class:`UpstreamTimeout` so the caller's retry policy
can decide whether to try again.
"""

from __future__ import annotations

from typing import Any, Protocol

import httpx
import structlog

from quotation.domain.errors import DeliveryError, DocumentGenerationError, UpstreamTimeout
from quotation.domain.models import EmailDraft, QuotationVersion

logger = structlog.get_logger()


class DeliveryGateway(Protocol):
    """Sends a quotation email to the client."""

    def deliver(self, draft: EmailDraft, version: QuotationVersion, correlation_id: str) -> None:
        """Deliver *draft* carrying *version*; raise on failure."""
        ...


class DocumentGenerator(Protocol):
    """Renders a quotation version as a downloadable artifact."""

    def export(self, version: QuotationVersion) -> str:
        """Return the URL of the generated document."""
        ...


def build_delivery_payload(
    draft: EmailDraft,
    version: QuotationVersion,
    correlation_id: str,
) -> dict[str, Any]:
    """Return the JSON body sent to the delivery channel."""
    return {
        "draft_id": draft.id,
        "case_id": draft.case_id,
        "to": draft.recipients,
        "subject": draft.subject,
        "body": draft.body,
        "quotation": {
            "version_number": version.version_number,
            "snapshot": version.snapshot,
        },
        "correlation_id": correlation_id,
    }


class HttpDeliveryGateway:
    """Deliver quotation emails through an HTTP mail relay.

    Args:
        url: Relay endpoint accepting ``POST`` with the delivery payload.
        timeout_seconds: Client-side timeout for one attempt.
        client: Optional pre-built ``httpx.Client``.
    """

    upstream = "delivery"

    def __init__(
        self,
        url: str,
        timeout_seconds: float = 15.0,
        client: httpx.Client | None = None,
    ) -> None:
        self._url = url
        self._timeout_seconds = timeout_seconds
        self._client = client or httpx.Client(timeout=timeout_seconds)

    def deliver(self, draft: EmailDraft, version: QuotationVersion, correlation_id: str) -> None:
        try:
            response = self._client.post(
                self._url,
                json=build_delivery_payload(draft, version, correlation_id),
                headers={"X-Correlation-ID": correlation_id},
                timeout=self._timeout_seconds,
            )
            response.raise_for_status()
        except httpx.TimeoutException as exc:
            raise UpstreamTimeout(self.upstream, self._timeout_seconds) from exc
        except httpx.HTTPStatusError as exc:
            raise DeliveryError(
                f"Delivery channel answered HTTP {exc.response.status_code}",
                status_code=exc.response.status_code,
                draft_id=draft.id,
            ) from exc
        except httpx.HTTPError as exc:
            raise DeliveryError(f"Delivery channel unreachable: {exc}", draft_id=draft.id) from exc

        logger.info("quotation_delivered", draft_id=draft.id, correlation_id=correlation_id)

    def close(self) -> None:
        self._client.close()


class HttpDocumentGenerator:
    """Request a PDF rendering of a version from the document service.

    Args:
        url: Service endpoint accepting ``POST`` with the version snapshot and
             answering ``{"url": ...}``.
        timeout_seconds: Client-side timeout for one attempt.
        client: Optional pre-built ``httpx.Client``.
    """

    upstream = "document_service"

    def __init__(
        self,
        url: str,
        timeout_seconds: float = 15.0,
        client: httpx.Client | None = None,
    ) -> None:
        self._url = url
        self._timeout_seconds = timeout_seconds
        self._client = client or httpx.Client(timeout=timeout_seconds)

    def export(self, version: QuotationVersion) -> str:
        try:
            response = self._client.post(
                self._url,
                json={
                    "case_id": version.case_id,
                    "version_id": version.id,
                    "version_number": version.version_number,
                    "snapshot": version.snapshot,
                },
                timeout=self._timeout_seconds,
            )
            response.raise_for_status()
            url = response.json()["url"]
        except httpx.TimeoutException as exc:
            raise UpstreamTimeout(self.upstream, self._timeout_seconds) from exc
        except (httpx.HTTPError, ValueError, KeyError) as exc:
            raise DocumentGenerationError(
                f"Document service failed for version {version.version_number}: {exc}",
                version_id=version.id,
            ) from exc
        return str(url)

    def close(self) -> None:
        self._client.close()
