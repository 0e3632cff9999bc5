"""Case timeline: models, storage, logger, and CLI for event tracking."""

from quotation.audit.cli import build_parser
from quotation.audit.logger import TimelineLogger
from quotation.audit.models import TimelineEvent, TimelineEventType
from quotation.audit.store import insert_timeline_event, query_timeline

__all__ = [
    "TimelineEvent",
    "TimelineEventType",
    "TimelineLogger",
    "build_parser",
    "insert_timeline_event",
    "query_timeline",
]
