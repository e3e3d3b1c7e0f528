from datetime import date, datetime, timezone


def utc_now() -> datetime:
    """Server wall-clock time used for every audit timestamp."""
    return datetime.now(timezone.utc)


def hours_between(dt1: datetime, dt2: datetime) -> float:
    """Calculate absolute number of hours between two datetimes."""
    diff = abs((dt2 - dt1).total_seconds())
    return diff / 3600


def within_period(value: date | datetime, start: date, end: date) -> bool:
    """True when value falls on or between the period's start and end dates."""
    if isinstance(value, datetime):
        value = value.date()
    return start <= value <= end
