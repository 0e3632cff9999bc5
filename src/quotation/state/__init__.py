"""SQLite persistence: connection wrapper, transactions, and schema."""

from quotation.state.database import Database
from quotation.state.schema import init_quotation_db

__all__ = [
    "Database",
    "init_quotation_db",
]
