from __future__ import annotations

from datetime import datetime, timezone


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def utc_day_key(now: datetime | None = None) -> str:
    """Calendar day (UTC) used to key daily counters, e.g. '2026-10-18'."""
    d = now or utc_now()
    return d.astimezone(timezone.utc).strftime("%Y-%m-%d")


def parse_iso(value: str) -> datetime | None:
    try:
        dt = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except (AttributeError, ValueError):
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt
