from __future__ import annotations

import datetime as dt
import os
from functools import lru_cache
from typing import Any
from zoneinfo import ZoneInfo

UTC = dt.timezone.utc
DEFAULT_UI_TIMEZONE = "Europe/Rome"


def utcnow() -> dt.datetime:
    return dt.datetime.now(UTC)


def utcnow_ms() -> dt.datetime:
    """Current UTC instant truncated to the millisecond precision used by persisted reports."""
    now = utcnow()
    return now.replace(microsecond=now.microsecond // 1000 * 1000)


def midnight_utc(value: dt.date) -> dt.datetime:
    return dt.datetime(value.year, value.month, value.day, tzinfo=UTC)


@lru_cache(maxsize=32)
def _zone(name: str) -> ZoneInfo:
    return ZoneInfo(name)


def ui_timezone_name() -> str:
    return os.environ.get("UI_TIMEZONE", DEFAULT_UI_TIMEZONE).strip() or DEFAULT_UI_TIMEZONE


def ensure_utc(value: dt.datetime) -> dt.datetime:
    # Naive values are taken as UTC, never as local time.
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def parse_datetime(value: Any) -> dt.datetime | None:
    """ISO-8601 text (with or without a trailing "Z") or a datetime; None when unparsable."""
    if isinstance(value, dt.datetime):
        return value
    if not isinstance(value, str) or not value.strip():
        return None
    text = value.strip()
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    try:
        return dt.datetime.fromisoformat(text)
    except ValueError:
        return None


def isoformat_z(value: dt.datetime) -> str:
    """UTC ISO-8601 with millisecond precision and a trailing "Z" (e.g. 2024-03-05T00:00:00.000Z)."""
    return ensure_utc(value).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def format_day(value: dt.date) -> str:
    """dd/mm/yyyy; datetimes are read in UTC."""
    d = ensure_utc(value) if isinstance(value, dt.datetime) else value
    return f"{d.day:02d}/{d.month:02d}/{d.year:04d}"


def format_local(value: Any, fmt: str = "%d/%m/%Y %H:%M:%S", tz_name: str | None = None) -> str:
    """Render an instant in the UI timezone (UI_TIMEZONE, default Europe/Rome)."""
    if value is None:
        return "-"
    d = parse_datetime(value)
    if d is None:
        return str(value)
    return ensure_utc(d).astimezone(_zone(tz_name or ui_timezone_name())).strftime(fmt)
