"""Observability: request IDs, Prometheus metrics, and Sentry."""
