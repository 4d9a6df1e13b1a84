from datetime import date, datetime, time, timedelta
from typing import Callable, Tuple

from models import RecurrenceKind

# Business hours: Monday-Friday, 09:00 to 18:00 (18:00 is a valid end)
OPENING_TIME = time(9, 0)
CLOSING_TIME = time(18, 0)

# Zero-argument callable returning the current naive local time
Clock = Callable[[], datetime]


def system_clock() -> datetime:
    return datetime.now()


def is_weekday(day: date) -> bool:
    return day.weekday() < 5


def business_window(day: date) -> Tuple[datetime, datetime]:
    """Opening and closing timestamps for the given calendar day."""
    return datetime.combine(day, OPENING_TIME), datetime.combine(day, CLOSING_TIME)


def within_business_hours(starts_at: datetime, ends_at: datetime) -> bool:
    if not (is_weekday(starts_at.date()) and is_weekday(ends_at.date())):
        return False
    opens_at, _ = business_window(starts_at.date())
    _, closes_at = business_window(ends_at.date())
    return starts_at >= opens_at and ends_at <= closes_at


def recurrence_step(kind: RecurrenceKind) -> timedelta:
    if kind == RecurrenceKind.DAILY:
        return timedelta(days=1)
    return timedelta(weeks=1)
