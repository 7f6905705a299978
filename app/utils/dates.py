"""UTC calendar-day helpers used for duplicate detection."""

from datetime import UTC, date, datetime, time, timedelta


def ensure_utc(value: datetime) -> datetime:
    """Return ``value`` as an aware UTC datetime; naive values are taken as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def utc_day(value: datetime) -> date:
    """Calendar day of ``value`` in UTC."""
    return ensure_utc(value).date()


def utc_day_bounds(value: datetime) -> tuple[datetime, datetime]:
    """
    Half-open ``[start, end)`` range covering the UTC day of ``value``.

    ``start`` is 00:00:00.000 of that day and ``end`` is 00:00:00.000 of the next.
    """
    start = datetime.combine(utc_day(value), time.min, tzinfo=UTC)
    return start, start + timedelta(days=1)


def round_to_minute(value: datetime) -> datetime:
    """Truncate ``value`` to whole minutes in UTC."""
    return ensure_utc(value).replace(second=0, microsecond=0)
