"""Command-line access to the case timeline.

Lists timeline events filtered by case, event type, actor, date range or a
``--since`` window, as an aligned table, JSON, or a per-event-type count.

Usage::

    quotation-audit --case 3f2b... --since 7d
    quotation-audit --event-type quotation_sent --format json
    quotation-audit --since 24h --format summary
"""

from __future__ import annotations

import argparse
import json
import sys
from collections import Counter
from collections.abc import Sequence
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Any

from quotation.audit.models import TimelineEventType
from quotation.audit.store import query_timeline
from quotation.state import Database, init_quotation_db

# (header, row key, width)
COLUMNS: tuple[tuple[str, str, int], ...] = (
    ("Timestamp", "timestamp", 32),
    ("Case", "case_id", 12),
    ("Event", "event_type", 20),
    ("From", "previous_value", 18),
    ("To", "new_value", 18),
    ("Actor", "actor", 16),
)

_WINDOW_UNITS = {"m": "minutes", "h": "hours", "d": "days", "w": "weeks"}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="quotation-audit",
        description="List quote case timeline events",
    )
    parser.add_argument("--case", dest="case_id", help="Only events of this case")
    parser.add_argument(
        "--event-type",
        choices=[event.value for event in TimelineEventType],
        help="Only events of this type",
    )
    parser.add_argument("--actor", help="Only events caused by this identity")
    parser.add_argument("--from-date", help="Earliest timestamp (ISO 8601)")
    parser.add_argument("--to-date", help="Latest timestamp (ISO 8601)")
    parser.add_argument(
        "--since",
        help="Relative window such as 30m, 24h, 7d or 2w (overrides --from-date)",
    )
    parser.add_argument(
        "--format",
        dest="output_format",
        choices=["table", "json", "summary"],
        default="table",
    )
    parser.add_argument("--limit", type=int, default=50, help="Maximum events (default: 50)")
    parser.add_argument(
        "--db",
        type=Path,
        default=Path("data/quotation.db"),
        help="Quotation database (default: data/quotation.db)",
    )
    return parser


def window_start(window: str, now: datetime | None = None) -> str:
    """Return the ISO 8601 timestamp *window* before *now*.

    ``window`` is a positive integer followed by ``m``, ``h``, ``d`` or ``w``.

    Raises:
        ValueError: If *window* does not have that shape.
    """
    amount, unit = window[:-1], window[-1:]
    if unit not in _WINDOW_UNITS or not amount.isdigit():
        raise ValueError(
            f"Invalid window {window!r}: expected a number followed by one of "
            f"{', '.join(_WINDOW_UNITS)}"
        )
    now = now or datetime.now(tz=UTC)
    start = now - timedelta(**{_WINDOW_UNITS[unit]: int(amount)})
    return start.isoformat(timespec="microseconds")


def _cell(value: Any, width: int) -> str:
    text = "" if value is None else str(value)
    if len(text) > width:
        text = text[: width - 1] + "…"
    return text.ljust(width)


def format_table(events: Sequence[dict[str, Any]]) -> str:
    if not events:
        return "No results found."

    header = "  ".join(title.ljust(width) for title, _, width in COLUMNS).rstrip()
    lines = [header, "=" * len(header)]
    for event in events:
        row = {**event, "actor": event.get("actor_id") or event.get("actor_type")}
        lines.append("  ".join(_cell(row.get(key), width) for _, key, width in COLUMNS).rstrip())
    return "\n".join(lines)


def format_json(events: Sequence[dict[str, Any]]) -> str:
    return json.dumps(list(events), indent=2, default=str)


def format_summary(events: Sequence[dict[str, Any]]) -> str:
    """Count events per type, most frequent first."""
    if not events:
        return "No results found."
    counts = Counter(event["event_type"] for event in events)
    width = max(len(event_type) for event_type in counts)
    return "\n".join(f"{event_type.ljust(width)}  {n}" for event_type, n in counts.most_common())


FORMATTERS = {"table": format_table, "json": format_json, "summary": format_summary}


def main(argv: Sequence[str] | None = None) -> int:
    """Entry point for ``quotation-audit``; returns the process exit code."""
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        from_date = window_start(args.since) if args.since else args.from_date
    except ValueError as exc:
        parser.error(str(exc))

    db = Database.connect(args.db)
    try:
        init_quotation_db(db)
        events = query_timeline(
            db,
            case_id=args.case_id,
            event_type=args.event_type,
            actor_id=args.actor,
            from_date=from_date,
            to_date=args.to_date,
            limit=args.limit,
        )
    finally:
        db.close()

    print(FORMATTERS[args.output_format](events))
    return 0


if __name__ == "__main__":
    sys.exit(main())
