"""Prediction activation window.

Activation is decided on UTC instants only. The local-day check is a coarse
pre-filter; it is derived from the same window so it never rejects an event
that ``is_active`` accepts, including around local midnight.
"""

from __future__ import annotations

from datetime import date, datetime, timedelta, timezone, tzinfo

DEFAULT_LEAD_TIME = timedelta(hours=1)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def is_active(
    now: datetime,
    start_utc: datetime,
    end_utc: datetime,
    lead_time: timedelta = DEFAULT_LEAD_TIME,
) -> bool:
    """Return True if ``now`` lies in ``[start_utc - lead_time, end_utc]``.

    Both bounds are inclusive. An event ending before it starts is malformed
    and is never active.
    """
    if end_utc < start_utc:
        return False
    return start_utc - lead_time <= now <= end_utc


def local_date(instant: datetime, tz: tzinfo) -> date:
    return instant.astimezone(tz).date()


def overlaps_local_day(
    now: datetime,
    start_utc: datetime,
    end_utc: datetime,
    tz: tzinfo,
    lead_time: timedelta = DEFAULT_LEAD_TIME,
) -> bool:
    """Return True if today's local date falls within the event's local window dates."""
    if end_utc < start_utc:
        return False
    today = local_date(now, tz)
    return local_date(start_utc - lead_time, tz) <= today <= local_date(end_utc, tz)


def ensure_utc(value: datetime | str, default_tz: tzinfo) -> datetime:
    """Convert a timestamp to an aware UTC datetime.

    Values without an offset (``"2025-10-09 13:30:00"``) are wall-clock times
    in ``default_tz``.
    """
    if isinstance(value, str):
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            value = datetime.fromisoformat(text)
        except ValueError as e:
            raise ValueError(f"Invalid timestamp: {value!r}") from e

    if value.tzinfo is None:
        value = value.replace(tzinfo=default_tz)
    return value.astimezone(timezone.utc)
