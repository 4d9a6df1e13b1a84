import logging
from datetime import datetime, timedelta
from typing import List, Optional

from sqlalchemy import func
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import col, select

from business_calendar import within_business_hours
from models import Reservation, Room, User

logger = logging.getLogger(__name__)

MAX_DURATION = timedelta(hours=4)
MAX_ACTIVE_RESERVATIONS = 3

TITLE_BLANK = "Title can't be blank"
STARTS_AT_BLANK = "Starts at can't be blank"
ENDS_AT_BLANK = "Ends at can't be blank"
ENDS_BEFORE_START = "Ends at must be after starts at"
OVERLAP = "Room already has an overlapping reservation for this time period"
TOO_LONG = "Reservation cannot last more than 4 hours"
OUTSIDE_BUSINESS_HOURS = "Reservations must be within business hours (9:00-18:00, Monday-Friday)"
CAPACITY_EXCEEDED = "Room capacity exceeds your maximum allowed capacity"
ACTIVE_LIMIT = f"Cannot have more than {MAX_ACTIVE_RESERVATIONS} active reservations"


# --- Queries ---
def overlapping_query(room_id: int, starts_at: datetime, ends_at: datetime, exclude_id: Optional[int] = None):
    # Half-open intervals: back-to-back reservations do not intersect
    statement = select(Reservation).where(
        Reservation.room_id == room_id,
        col(Reservation.cancelled_at).is_(None),
        col(Reservation.starts_at) < ends_at,
        col(Reservation.ends_at) > starts_at,
    )
    if exclude_id is not None:
        statement = statement.where(Reservation.id != exclude_id)
    return statement


async def count_active_future(
    session: AsyncSession, user_id: int, now: datetime, exclude_id: Optional[int] = None
) -> int:
    statement = (
        select(func.count())
        .select_from(Reservation)
        .where(
            Reservation.user_id == user_id,
            col(Reservation.cancelled_at).is_(None),
            col(Reservation.starts_at) > now,
        )
    )
    if exclude_id is not None:
        statement = statement.where(Reservation.id != exclude_id)
    return (await session.execute(statement)).scalar_one()


# --- Rules ---
def check_presence(candidate: Reservation) -> List[str]:
    violations = []
    if not candidate.title or not candidate.title.strip():
        violations.append(TITLE_BLANK)
    if candidate.starts_at is None:
        violations.append(STARTS_AT_BLANK)
    if candidate.ends_at is None:
        violations.append(ENDS_AT_BLANK)
    return violations


def _has_interval(candidate: Reservation) -> bool:
    return candidate.starts_at is not None and candidate.ends_at is not None


def check_ordering(candidate: Reservation) -> Optional[str]:
    if _has_interval(candidate) and candidate.ends_at <= candidate.starts_at:
        return ENDS_BEFORE_START
    return None


async def check_overlap(session: AsyncSession, candidate: Reservation) -> Optional[str]:
    if candidate.room_id is None or not _has_interval(candidate):
        return None

    statement = overlapping_query(
        candidate.room_id, candidate.starts_at, candidate.ends_at, exclude_id=candidate.id
    )
    result = await session.execute(statement.limit(1))
    if result.scalars().first() is not None:
        return OVERLAP
    return None


def check_duration(candidate: Reservation) -> Optional[str]:
    if _has_interval(candidate) and candidate.ends_at - candidate.starts_at > MAX_DURATION:
        return TOO_LONG
    return None


def check_business_hours(candidate: Reservation) -> Optional[str]:
    if _has_interval(candidate) and not within_business_hours(candidate.starts_at, candidate.ends_at):
        return OUTSIDE_BUSINESS_HOURS
    return None


def check_capacity(room: Optional[Room], user: Optional[User]) -> Optional[str]:
    if room is None or user is None:
        return None
    if user.is_admin:
        return None
    if room.capacity > user.max_capacity_allowed:
        return CAPACITY_EXCEEDED
    return None


async def check_active_limit(
    session: AsyncSession, candidate: Reservation, user: Optional[User], now: datetime
) -> Optional[str]:
    if user is None or user.is_admin:
        return None

    active = await count_active_future(session, user.id, now, exclude_id=candidate.id)
    if active >= MAX_ACTIVE_RESERVATIONS:
        return ACTIVE_LIMIT
    return None


async def evaluate(
    session: AsyncSession,
    candidate: Reservation,
    *,
    room: Optional[Room],
    user: Optional[User],
    now: datetime,
) -> List[str]:
    """Run every rule and collect all violations; empty means admissible.

    Rules that need a missing field are skipped, the presence rule reports it.
    """
    violations = check_presence(candidate)
    for violation in (
        check_ordering(candidate),
        await check_overlap(session, candidate),
        check_duration(candidate),
        check_business_hours(candidate),
        check_capacity(room, user),
        await check_active_limit(session, candidate, user, now),
    ):
        if violation:
            violations.append(violation)

    if violations:
        logger.debug("Reservation %r rejected: %s", candidate.title, violations)
    return violations
