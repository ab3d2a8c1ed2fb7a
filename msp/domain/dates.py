from __future__ import annotations

from datetime import UTC, date, datetime
from typing import Any


def as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes; every stored timestamp is UTC.
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def today_utc() -> date:
    return datetime.now(UTC).date()


def to_iso_strings(value: Any) -> Any:
    """Recursively replace dates and datetimes with ISO-8601 strings.

    Dicts, lists and tuples are walked; any other value is returned untouched.
    """
    if isinstance(value, datetime):
        return as_utc(value).isoformat()
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, dict):
        return {key: to_iso_strings(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_iso_strings(item) for item in value]
    return value
