"""
core/clock.py -- UTC timestamp helpers shared by the store and the orchestrator.

Timestamps are persisted as ISO 8601 strings. timespec="microseconds" keeps
every value the same width so string comparison in SQL (expires_at > :now)
matches chronological order.
"""

from datetime import datetime, timezone


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_iso(moment: datetime) -> str:
    return moment.astimezone(timezone.utc).isoformat(timespec="microseconds")


def from_iso(value: str) -> datetime:
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed
