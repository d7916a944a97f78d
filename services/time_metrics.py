"""Plant Maintenance — Time Metrics.

Pure timestamp and duration helpers shared by the breakdown ledger and
the PM lifecycle. All timestamps are timezone-aware; naive values are
rejected rather than guessed.
"""

from __future__ import annotations

from datetime import date, datetime, timedelta, timezone
from typing import Iterable, Optional, Union

from core.exceptions import ValidationError


def utcnow() -> datetime:
    """Default clock for the services."""
    return datetime.now(timezone.utc)


def ensure_aware(ts: datetime, field: str = "timestamp") -> datetime:
    """Return ``ts`` unchanged if it carries a timezone.

    Raises:
        ValidationError: If ``ts`` is naive.
    """
    if ts.tzinfo is None or ts.tzinfo.utcoffset(ts) is None:
        raise ValidationError(field, "timestamp must include a timezone offset")
    return ts


def time_since(ts: datetime, now: datetime) -> timedelta:
    return now - ts


def duration_between(start: datetime, end: datetime) -> timedelta:
    """Elapsed time from start to end.

    Raises:
        ValidationError: If end precedes start.
    """
    if end < start:
        raise ValidationError("end", f"end {end.isoformat()} precedes start {start.isoformat()}")
    return end - start


def is_overdue(due: datetime, now: datetime) -> bool:
    # Strictly before: a task due exactly now is not yet overdue.
    return due < now


def utc_day(value: Union[datetime, date]) -> date:
    """Calendar day of a timestamp in UTC. Plain dates pass through."""
    if isinstance(value, datetime):
        return value.astimezone(timezone.utc).date()
    return value


def same_calendar_day(a: Union[datetime, date], b: Union[datetime, date]) -> bool:
    return utc_day(a) == utc_day(b)


def mean_duration(durations: Iterable[timedelta]) -> Optional[timedelta]:
    """Arithmetic mean, or None for an empty input."""
    items = list(durations)
    if not items:
        return None
    return sum(items, timedelta()) / len(items)


def to_hours(td: Optional[timedelta]) -> Optional[float]:
    if td is None:
        return None
    return td.total_seconds() / 3600.0


def format_duration(td: Optional[timedelta]) -> str:
    """Dashboard rendering of a duration: ``"2.8h"``, or ``"N/A"`` when undefined."""
    hours = to_hours(td)
    if hours is None:
        return "N/A"
    return f"{hours:.1f}h"
