"""Datetime helpers: all persisted timestamps are ISO-8601 UTC strings."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pendulum


def parse_datetime(value: str | datetime, default_tz: str = "UTC") -> datetime:
    """Parse a lax datetime string into a timezone-aware datetime.

    Accepts ISO 8601 variants (``T`` or space separator, with or without
    fractional seconds and offset) and date-only strings. Missing timezone
    defaults to ``default_tz``.
    """
    if isinstance(value, datetime):
        if value.tzinfo is None:
            tz = pendulum.timezone(default_tz)
            value = value.replace(tzinfo=tz)  # type: ignore[arg-type]
        return value

    parsed = pendulum.parse(value.strip(), tz=default_tz, strict=False)
    if not isinstance(parsed, pendulum.DateTime):
        # pendulum.parse returns Date for date-only strings
        parsed = pendulum.datetime(
            parsed.year, parsed.month, parsed.day, tz=default_tz  # type: ignore[union-attr]
        )
    return parsed  # type: ignore[return-value]


def now_utc() -> datetime:
    """Return the current UTC datetime."""
    return datetime.now(timezone.utc)


def format_iso(dt: datetime) -> str:
    """Format datetime as ISO 8601 for storage and JSON serialization."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).isoformat()


def now_iso() -> str:
    return format_iso(now_utc())


def expires_at_from_now(seconds: int) -> str:
    """ISO timestamp ``seconds`` after the current time."""
    return format_iso(now_utc() + timedelta(seconds=seconds))


def is_expired(expires_at: str | None, leeway_seconds: int = 0) -> bool:
    """True when ``expires_at`` is missing, unparseable, or within the leeway of now."""
    if not expires_at:
        return True
    try:
        expires = parse_datetime(expires_at)
    except (ValueError, TypeError):
        return True
    return expires <= now_utc() + timedelta(seconds=leeway_seconds)
