import logging
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import List, Optional, Tuple

from sqlalchemy.ext.asyncio import AsyncSession

from business_calendar import Clock, is_weekday, recurrence_step, system_clock
from errors import ConcurrencyConflict, NotFound, ValidationFailure
from locking import room_and_user_lock
from models import RecurrenceKind, Reservation, Room, User
from rules import ENDS_AT_BLANK, MAX_ACTIVE_RESERVATIONS, STARTS_AT_BLANK, count_active_future, evaluate

logger = logging.getLogger(__name__)

INVALID_KIND = "recurring must be daily or weekly"
UNTIL_REQUIRED = "recurring_until is required for recurring reservations"
UNTIL_BEFORE_START = "recurring_until must be on or after the start date"
UNTIL_OUT_OF_RANGE = "recurring_until is beyond the supported date range"


@dataclass
class RecurringRequest:
    room_id: Optional[int]
    user_id: Optional[int]
    title: Optional[str]
    starts_at: Optional[datetime]
    ends_at: Optional[datetime]
    recurring: Optional[str]
    recurring_until: Optional[date]

    @property
    def kind(self) -> Optional[RecurrenceKind]:
        try:
            return RecurrenceKind(self.recurring)
        except ValueError:
            return None


def check_request(request: RecurringRequest) -> List[str]:
    if request.kind is None:
        return [INVALID_KIND]
    if request.recurring_until is None:
        return [UNTIL_REQUIRED]

    violations = []
    if request.starts_at is None:
        violations.append(STARTS_AT_BLANK)
    if request.ends_at is None:
        violations.append(ENDS_AT_BLANK)
    if request.starts_at is not None and request.recurring_until < request.starts_at.date():
        violations.append(UNTIL_BEFORE_START)
    return violations


def _occurrence(request: RecurringRequest, starts_at: datetime, duration: timedelta) -> Reservation:
    return Reservation(
        room_id=request.room_id,
        user_id=request.user_id,
        title=request.title,
        starts_at=starts_at,
        ends_at=starts_at + duration,
        recurring=request.kind.value,
        recurring_until=request.recurring_until,
    )


def expand_occurrences(request: RecurringRequest) -> List[Reservation]:
    """Materialize every occurrence from the seed up to recurring_until.

    The seed is always the first occurrence. Daily steps that land on a
    weekend are skipped; weekly steps keep the seed's weekday.
    """
    kind = request.kind
    step = recurrence_step(kind)
    duration = request.ends_at - request.starts_at

    try:
        occurrences = [_occurrence(request, request.starts_at, duration)]
        current = request.starts_at + step
        while current.date() <= request.recurring_until:
            if kind == RecurrenceKind.WEEKLY or is_weekday(current.date()):
                occurrences.append(_occurrence(request, current, duration))
            current += step
    except OverflowError:
        # Stepping past the last representable date
        raise ValidationFailure([UNTIL_OUT_OF_RANGE])
    return occurrences


def overlapping_pairs(occurrences: List[Reservation]) -> List[Tuple[int, int]]:
    order = sorted(range(len(occurrences)), key=lambda k: occurrences[k].starts_at)
    pairs = []
    for pos, i in enumerate(order):
        a = occurrences[i]
        for j in order[pos + 1:]:
            b = occurrences[j]
            if b.starts_at >= a.ends_at:
                break
            if a.room_id == b.room_id:
                pairs.append((min(i, j), max(i, j)))
    return sorted(pairs)


async def cumulative_violation(
    session: AsyncSession, occurrences: List[Reservation], user: Optional[User], now: datetime
) -> Optional[str]:
    if not occurrences or user is None or user.is_admin:
        return None
    existing = await count_active_future(session, user.id, now)
    if existing + len(occurrences) <= MAX_ACTIVE_RESERVATIONS:
        return None
    return (
        f"Total recurring occurrences ({len(occurrences)}) plus existing active "
        f"reservations ({existing}) would exceed the limit of "
        f"{MAX_ACTIVE_RESERVATIONS} active reservations"
    )


async def validate_batch(
    session: AsyncSession,
    occurrences: List[Reservation],
    *,
    room: Optional[Room],
    user: Optional[User],
    now: datetime,
) -> List[str]:
    # A series over the limit is rejected whatever else is wrong with it
    over_limit = await cumulative_violation(session, occurrences, user, now)
    if over_limit:
        return [over_limit]

    violations = []
    for index, occurrence in enumerate(occurrences, start=1):
        for message in await evaluate(session, occurrence, room=room, user=user, now=now):
            violations.append(f"Occurrence #{index}: {message}")

    # Occurrences of one series cannot see each other in persisted state
    for i, j in overlapping_pairs(occurrences):
        violations.append(f"Occurrences #{i + 1} and #{j + 1} overlap with each other")

    return violations


def _require(room: Optional[Room], user: Optional[User], request: RecurringRequest) -> None:
    if room is None:
        raise NotFound("Room", request.room_id)
    if user is None:
        raise NotFound("User", request.user_id)


async def create_recurring(
    session: AsyncSession, request: RecurringRequest, clock: Clock = system_clock
) -> List[Reservation]:
    # 1. Input checks and expansion
    violations = check_request(request)
    if violations:
        raise ValidationFailure(violations)

    occurrences = expand_occurrences(request)

    # 2. Validate against persisted state without locks
    async with session.begin():
        room = await session.get(Room, request.room_id) if request.room_id is not None else None
        user = await session.get(User, request.user_id) if request.user_id is not None else None
        _require(room, user, request)
        violations = await validate_batch(session, occurrences, room=room, user=user, now=clock())
    if violations:
        logger.info(
            "Rejected %s series of %d occurrences for room %s: %s",
            request.recurring, len(occurrences), request.room_id, violations,
        )
        raise ValidationFailure(violations)

    # 3. Lock, validate again, write the whole series or nothing
    async with room_and_user_lock(session, request.room_id, request.user_id) as (room, user):
        _require(room, user, request)
        violations = await validate_batch(session, occurrences, room=room, user=user, now=clock())
        if violations:
            logger.warning(
                "Series for room %s lost a race while locked, rolling back: %s",
                request.room_id, violations,
            )
            raise ConcurrencyConflict(violations)

        session.add_all(occurrences)
        await session.flush()

    logger.info(
        "Created %s series of %d occurrences for room %s by user %s",
        request.recurring, len(occurrences), request.room_id, request.user_id,
    )
    return occurrences
