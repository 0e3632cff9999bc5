"""SQLite schema for quote cases and everything a case owns.

Unique and partial-unique indexes back the store-level invariants:

- one non-archived case per email thread,
- one open gap per ``(case_id, gap_key)``,
- one running pricing run per case and unique run numbers,
- unique version numbers and at most one selected version per case.
"""

from __future__ import annotations

from quotation.state.database import Database

_DDL: tuple[str, ...] = (
    """
    CREATE TABLE IF NOT EXISTS quote_cases (
        id TEXT PRIMARY KEY,
        thread_ref TEXT NOT NULL,
        status TEXT NOT NULL,
        request_type TEXT,
        priority TEXT NOT NULL DEFAULT 'normal',
        completeness REAL NOT NULL DEFAULT 0,
        created_by TEXT,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL
    )
    """,
    """
    CREATE UNIQUE INDEX IF NOT EXISTS uq_quote_cases_active_thread
        ON quote_cases (thread_ref) WHERE status != 'ARCHIVED'
    """,
    "CREATE INDEX IF NOT EXISTS idx_quote_cases_status ON quote_cases (status)",
    """
    CREATE TABLE IF NOT EXISTS quote_gaps (
        id TEXT PRIMARY KEY,
        case_id TEXT NOT NULL REFERENCES quote_cases (id),
        gap_key TEXT NOT NULL,
        gap_category TEXT NOT NULL,
        question TEXT NOT NULL,
        is_blocking INTEGER NOT NULL,
        status TEXT NOT NULL,
        created_at TEXT NOT NULL,
        resolved_at TEXT
    )
    """,
    """
    CREATE UNIQUE INDEX IF NOT EXISTS uq_quote_gaps_open_key
        ON quote_gaps (case_id, gap_key) WHERE status = 'open'
    """,
    "CREATE INDEX IF NOT EXISTS idx_quote_gaps_case ON quote_gaps (case_id)",
    """
    CREATE TABLE IF NOT EXISTS pricing_runs (
        id TEXT PRIMARY KEY,
        case_id TEXT NOT NULL REFERENCES quote_cases (id),
        run_number INTEGER NOT NULL,
        status TEXT NOT NULL,
        inputs TEXT NOT NULL,
        inputs_fingerprint TEXT NOT NULL,
        total_ht TEXT,
        total_ttc TEXT,
        currency TEXT,
        line_items TEXT NOT NULL DEFAULT '[]',
        raw_response TEXT,
        error_message TEXT,
        created_by TEXT,
        started_at TEXT NOT NULL,
        completed_at TEXT,
        duration_ms INTEGER,
        UNIQUE (case_id, run_number)
    )
    """,
    """
    CREATE UNIQUE INDEX IF NOT EXISTS uq_pricing_runs_running
        ON pricing_runs (case_id) WHERE status = 'running'
    """,
    """
    CREATE TABLE IF NOT EXISTS quotation_versions (
        id TEXT PRIMARY KEY,
        case_id TEXT NOT NULL REFERENCES quote_cases (id),
        pricing_run_id TEXT REFERENCES pricing_runs (id),
        version_number INTEGER NOT NULL,
        status TEXT NOT NULL,
        is_selected INTEGER NOT NULL DEFAULT 0,
        snapshot TEXT NOT NULL,
        snapshot_fingerprint TEXT NOT NULL,
        created_at TEXT NOT NULL,
        created_by TEXT,
        UNIQUE (case_id, version_number)
    )
    """,
    """
    CREATE UNIQUE INDEX IF NOT EXISTS uq_quotation_versions_selected
        ON quotation_versions (case_id) WHERE is_selected = 1
    """,
    """
    CREATE TABLE IF NOT EXISTS email_drafts (
        id TEXT PRIMARY KEY,
        case_id TEXT NOT NULL REFERENCES quote_cases (id),
        owner_id TEXT NOT NULL,
        subject TEXT NOT NULL,
        recipients TEXT NOT NULL,
        body TEXT NOT NULL DEFAULT '',
        status TEXT NOT NULL,
        sent_at TEXT,
        quotation_version_id TEXT REFERENCES quotation_versions (id),
        correlation_id TEXT,
        delivery_status TEXT,
        created_at TEXT NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_email_drafts_case ON email_drafts (case_id)",
    """
    CREATE TABLE IF NOT EXISTS case_analyses (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        case_id TEXT NOT NULL REFERENCES quote_cases (id),
        sources_fingerprint TEXT NOT NULL,
        source_email_ids TEXT NOT NULL,
        completeness REAL NOT NULL,
        forced INTEGER NOT NULL DEFAULT 0,
        created_at TEXT NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_case_analyses_case ON case_analyses (case_id, id)",
    """
    CREATE TABLE IF NOT EXISTS case_timeline_events (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        case_id TEXT NOT NULL,
        event_type TEXT NOT NULL,
        previous_value TEXT,
        new_value TEXT,
        actor_type TEXT NOT NULL,
        actor_id TEXT,
        event_data TEXT,
        timestamp TEXT NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_timeline_case ON case_timeline_events (case_id)",
    "CREATE INDEX IF NOT EXISTS idx_timeline_timestamp ON case_timeline_events (timestamp)",
)


def init_quotation_db(db: Database) -> None:
    """Create every quotation table and index if they do not already exist.

    Args:
        db: An open :class:`Database`.
    """
    with db.transaction() as conn:
        for statement in _DDL:
            conn.execute(statement)


TABLES: tuple[str, ...] = (
    "quote_cases",
    "quote_gaps",
    "pricing_runs",
    "quotation_versions",
    "email_drafts",
    "case_analyses",
    "case_timeline_events",
)


def missing_tables(db: Database) -> list[str]:
    """Return the quotation tables absent from *db* (empty when the schema is complete)."""
    rows = db.fetchall("SELECT name FROM sqlite_master WHERE type = 'table'")
    present = {row["name"] for row in rows}
    return [table for table in TABLES if table not in present]
