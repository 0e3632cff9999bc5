"""Quote case persistence and status compare-and-set."""

from quotation.cases.store import CaseStore, load_case, require_mutable_case

__all__ = [
    "CaseStore",
    "load_case",
    "require_mutable_case",
]
