"""UTC helpers shared by the API, the dispatcher and the sweeps."""

from __future__ import annotations

from datetime import datetime, timezone


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(dt: datetime | None) -> datetime | None:
    """Normalise a timestamp to UTC-aware.

    SQLite hands back naive datetimes even for ``DateTime(timezone=True)``
    columns and drops the offset when storing; everything is written in UTC
    so naive values get the zone attached and aware ones are converted.
    """
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def isoformat(dt: datetime | None) -> str | None:
    dt = ensure_utc(dt)
    return dt.isoformat() if dt is not None else None
