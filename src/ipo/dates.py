"""Calendar helpers for the catalog.

Catalog dates are compared as strings, so every date handled by the
rotation goes through ``normalize_date`` first: ``YYYY-MM-DD``, zero padded,
already converted to the market timezone.
"""
from datetime import date, datetime, timedelta
from typing import Union
from zoneinfo import ZoneInfo

IST = ZoneInfo("Asia/Kolkata")

DateLike = Union[str, date, datetime]


def today_ist(tz: ZoneInfo = IST) -> str:
    return datetime.now(tz).date().isoformat()


def normalize_date(value: DateLike, tz: ZoneInfo = IST) -> str:
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            value = value.astimezone(tz)
        return value.date().isoformat()
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, str):
        # strptime accepts "2024-1-5"; isoformat() pads it
        return datetime.strptime(value.strip()[:10], "%Y-%m-%d").date().isoformat()
    raise TypeError(f"Unsupported date value: {value!r}")


def add_days(value: DateLike, days: int) -> str:
    return (date.fromisoformat(normalize_date(value)) + timedelta(days=days)).isoformat()


def is_weekend(value: DateLike) -> bool:
    return date.fromisoformat(normalize_date(value)).weekday() >= 5


def next_monday(value: DateLike) -> str:
    d = date.fromisoformat(normalize_date(value))
    return (d + timedelta(days=7 - d.weekday())).isoformat()
