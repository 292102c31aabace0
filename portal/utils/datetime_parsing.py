"""Datetime helpers for integrations (HighLevel, Mailgun) and stored timestamps."""

from __future__ import annotations

import re
from datetime import datetime, timezone


def ensure_utc(value: datetime | None) -> datetime | None:
    """Attach UTC to naive datetimes (SQLite drops tzinfo); convert aware ones to UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def parse_iso_datetime(raw_value: str | None) -> datetime | None:
    """
    Parse an ISO 8601 timestamp as sent by HighLevel ("2024-05-01T12:00:00.000Z").

    Returns None for empty or unparseable values instead of raising.
    """
    if not raw_value:
        return None
    value = raw_value.strip()
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    try:
        return ensure_utc(datetime.fromisoformat(value))
    except ValueError:
        return None


def parse_epoch(raw_value: object) -> datetime | None:
    """Parse epoch seconds (Mailgun event timestamps, may be float or string)."""
    if raw_value is None or raw_value == "":
        return None
    text = str(raw_value).strip()
    if not re.fullmatch(r"\d+(\.\d+)?", text):
        return None
    return datetime.fromtimestamp(float(text), tz=timezone.utc)
