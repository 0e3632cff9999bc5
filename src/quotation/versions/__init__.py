"""Quotation version store with single-selection semantics."""

from quotation.versions.store import VersionStore

__all__ = [
    "VersionStore",
]
