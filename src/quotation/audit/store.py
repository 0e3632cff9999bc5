"""SQLite-backed case timeline store.

Provides functions to insert timeline events and query them with flexible
filtering.  Uses parameterized queries exclusively.  Inserts join the
caller's transaction when there is one, so a status change and its timeline
entry commit or roll back together.
"""

from __future__ import annotations

from typing import Any

from quotation.audit.models import TimelineEvent
from quotation.state.database import Database, dumps, loads, to_db_timestamp, utcnow


def insert_timeline_event(db: Database, event: TimelineEvent) -> int:
    """Insert a timeline event.

    Args:
        db: The quotation database.
        event: The event to record.

    Returns:
        The row ID of the inserted event.
    """
    event_data = dumps(event.event_data) if event.event_data is not None else None

    with db.transaction() as conn:
        cursor = conn.execute(
            """
            INSERT INTO case_timeline_events (
                case_id, event_type, previous_value, new_value,
                actor_type, actor_id, event_data, timestamp
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                event.case_id,
                event.event_type.value,
                event.previous_value,
                event.new_value,
                event.actor_type.value,
                event.actor_id,
                event_data,
                to_db_timestamp(utcnow()),
            ),
        )
    return cursor.lastrowid or 0


def query_timeline(
    db: Database,
    *,
    case_id: str | None = None,
    event_type: str | None = None,
    actor_id: str | None = None,
    from_date: str | None = None,
    to_date: str | None = None,
    limit: int = 50,
) -> list[dict[str, Any]]:
    """Query timeline events with optional filters, oldest first.

    Args:
        db: The quotation database.
        case_id: Filter by case (exact match).
        event_type: Filter by event type (exact match).
        actor_id: Filter by acting identity (exact match).
        from_date: Only events at or after this ISO 8601 timestamp.
        to_date: Only events at or before this ISO 8601 timestamp.
        limit: Maximum number of rows (default 50).

    Returns:
        A list of dicts, one per event, with ``event_data`` decoded.
    """
    conditions: list[str] = []
    params: list[str | int] = []

    if case_id is not None:
        conditions.append("case_id = ?")
        params.append(case_id)

    if event_type is not None:
        conditions.append("event_type = ?")
        params.append(event_type)

    if actor_id is not None:
        conditions.append("actor_id = ?")
        params.append(actor_id)

    if from_date is not None:
        conditions.append("timestamp >= ?")
        params.append(from_date)

    if to_date is not None:
        conditions.append("timestamp <= ?")
        params.append(to_date)

    where_clause = ""
    if conditions:
        where_clause = "WHERE " + " AND ".join(conditions)

    query = f"SELECT * FROM case_timeline_events {where_clause} ORDER BY id ASC LIMIT ?"
    params.append(limit)

    results: list[dict[str, Any]] = []
    for row in db.fetchall(query, params):
        row_dict = dict(row)
        row_dict["event_data"] = loads(row_dict.get("event_data"))
        results.append(row_dict)
    return results
