from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import List

from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import col, select

from business_calendar import business_window, is_weekday
from errors import InputFormatError, NotFound
from models import Reservation, Room

INVALID_DATE = "Invalid date format. Use YYYY-MM-DD"


@dataclass
class TimeSlot:
    starts_at: datetime
    ends_at: datetime


@dataclass
class Availability:
    room_id: int
    date: date
    slots: List[TimeSlot] = field(default_factory=list)
    reservations: List[Reservation] = field(default_factory=list)


def parse_day(value) -> date:
    if not value:
        raise InputFormatError([INVALID_DATE])
    try:
        return date.fromisoformat(value)
    except (TypeError, ValueError):
        raise InputFormatError([INVALID_DATE])


def free_slots(day: date, reservations: List[Reservation]) -> List[TimeSlot]:
    """Gaps between the day's reservations, clipped to business hours.

    `reservations` must be active and ordered by starts_at.
    """
    if not is_weekday(day):
        return []

    opens_at, closes_at = business_window(day)
    slots = []
    cursor = opens_at
    for reservation in reservations:
        gap_end = min(reservation.starts_at, closes_at)
        if cursor < gap_end:
            slots.append(TimeSlot(starts_at=cursor, ends_at=gap_end))
        cursor = max(cursor, reservation.ends_at)

    if cursor < closes_at:
        slots.append(TimeSlot(starts_at=cursor, ends_at=closes_at))
    return slots


async def room_availability(session: AsyncSession, room_id: int, day: date) -> Availability:
    """Read-only snapshot; takes no locks."""
    room = await session.get(Room, room_id)
    if room is None:
        raise NotFound("Room", room_id)

    day_start = datetime.combine(day, datetime.min.time())
    statement = (
        select(Reservation)
        .where(
            Reservation.room_id == room_id,
            col(Reservation.cancelled_at).is_(None),
            col(Reservation.starts_at) >= day_start,
            col(Reservation.starts_at) < day_start + timedelta(days=1),
        )
        .order_by(col(Reservation.starts_at))
    )
    reservations = list((await session.execute(statement)).scalars().all())

    return Availability(
        room_id=room_id,
        date=day,
        slots=free_slots(day, reservations),
        reservations=reservations,
    )
