"""Gap ledger with readiness checks and analysis anti-replay."""

from quotation.gaps.ledger import GapLedger, sources_fingerprint

__all__ = [
    "GapLedger",
    "sources_fingerprint",
]
