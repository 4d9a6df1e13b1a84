import logging
from datetime import timedelta

from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from business_calendar import Clock, system_clock
from errors import AlreadyCancelled, NotFound, TooLateToCancel, ValidationFailure
from locking import room_and_user_lock
from models import Reservation
from rules import evaluate

logger = logging.getLogger(__name__)

CANCELLATION_CUTOFF_MINUTES = 60
CANCELLATION_CUTOFF = timedelta(minutes=CANCELLATION_CUTOFF_MINUTES)


async def create_reservation(
    session: AsyncSession, candidate: Reservation, clock: Clock = system_clock
) -> Reservation:
    async with room_and_user_lock(session, candidate.room_id, candidate.user_id) as (room, user):
        if room is None:
            raise NotFound("Room", candidate.room_id)
        if user is None:
            raise NotFound("User", candidate.user_id)

        violations = await evaluate(session, candidate, room=room, user=user, now=clock())
        if violations:
            logger.info(
                "Rejected reservation for room %s by user %s: %s",
                room.id, user.id, violations,
            )
            raise ValidationFailure(violations)

        session.add(candidate)
        await session.flush()

    logger.info(
        "Reservation %s created for room %s by user %s (%s - %s)",
        candidate.id, candidate.room_id, candidate.user_id,
        candidate.starts_at, candidate.ends_at,
    )
    return candidate


async def cancel_reservation(
    session: AsyncSession, reservation_id: int, clock: Clock = system_clock
) -> Reservation:
    async with session.begin():
        statement = (
            select(Reservation)
            .where(Reservation.id == reservation_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        reservation = (await session.execute(statement)).scalars().first()
        if reservation is None:
            raise NotFound("Reservation", reservation_id)

        if not reservation.is_active:
            raise AlreadyCancelled()

        now = clock()
        if now >= reservation.starts_at - CANCELLATION_CUTOFF:
            raise TooLateToCancel(CANCELLATION_CUTOFF_MINUTES)

        reservation.cancelled_at = now

    logger.info("Reservation %s cancelled at %s", reservation.id, reservation.cancelled_at)
    return reservation
