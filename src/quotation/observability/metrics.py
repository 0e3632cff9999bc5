"""Prometheus metrics instrumentation for the quotation service.

Provides:
- ``setup_metrics(app)``: Attach prometheus-fastapi-instrumentator to a FastAPI app,
  exposing ``/metrics`` with HTTP request duration/count plus business metrics.
- ``PRICING_RUNS``: Counter of completed pricing runs by outcome.
- ``PRICING_RUN_DURATION``: Histogram of pricing engine round-trip time.
- ``VERSIONS_CREATED``: Counter of quotation versions created.
- ``QUOTATIONS_SENT``: Counter of quotations delivered (first sends only).
- ``IDEMPOTENT_REPLAYS``: Counter of send calls answered as replays.
- ``CASE_TRANSITIONS``: Counter of case status transitions by target status.

Business metrics are updated where the events happen (not by polling the database).
"""

from __future__ import annotations

from fastapi import FastAPI
from prometheus_client import Counter, Histogram
from prometheus_fastapi_instrumentator import Instrumentator

PRICING_RUNS: Counter = Counter(
    "quotation_pricing_runs_total",
    "Completed pricing runs by outcome",
    ["outcome"],
)

PRICING_RUN_DURATION: Histogram = Histogram(
    "quotation_pricing_run_duration_seconds",
    "Wall-clock time of pricing engine calls",
    buckets=(0.5, 1, 2.5, 5, 10, 15, 30, 60),
)

VERSIONS_CREATED: Counter = Counter(
    "quotation_versions_created_total",
    "Quotation versions created",
)

QUOTATIONS_SENT: Counter = Counter(
    "quotation_sent_total",
    "Quotations delivered to clients",
)

IDEMPOTENT_REPLAYS: Counter = Counter(
    "quotation_send_replays_total",
    "Send calls answered as idempotent replays",
)

CASE_TRANSITIONS: Counter = Counter(
    "quotation_case_transitions_total",
    "Case status transitions by target status",
    ["to_status"],
)


def setup_metrics(app: FastAPI) -> None:
    """Instrument *app* with Prometheus HTTP metrics and expose ``/metrics``.

    Excludes health/ready/metrics endpoints from instrumentation to avoid
    noise in dashboards.

    Args:
        app: The FastAPI application to instrument.
    """
    Instrumentator(
        should_group_status_codes=True,
        should_ignore_untemplated=True,
        excluded_handlers=["/health", "/ready", "/metrics"],
    ).instrument(app).expose(app, include_in_schema=False, should_gzip=True)
