import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, List, Optional, Tuple

from sqlalchemy import or_
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import col, select

from models import Reservation, Room, User

logger = logging.getLogger(__name__)


def lock_room(room_id: int):
    return select(Room).where(Room.id == room_id).with_for_update().execution_options(populate_existing=True)


def lock_user(user_id: int):
    return select(User).where(User.id == user_id).with_for_update().execution_options(populate_existing=True)


def lock_active_reservations(room_id: Optional[int] = None, user_id: Optional[int] = None):
    statement = select(Reservation).where(col(Reservation.cancelled_at).is_(None))
    owners = []
    if room_id is not None:
        owners.append(Reservation.room_id == room_id)
    if user_id is not None:
        owners.append(Reservation.user_id == user_id)
    return statement.where(or_(*owners)).order_by(col(Reservation.id)).with_for_update()


def lock_statements(room_id: Optional[int], user_id: Optional[int]) -> List:
    """SELECT ... FOR UPDATE statements in acquisition order.

    Room row, user row, then the room's and the user's active reservations
    in one statement ordered by id. A writer waits on a parent row only
    while holding parent rows of an earlier kind, and reservation rows are
    always taken in id order, so no two writers can wait on each other in
    a cycle.
    """
    statements = []
    if room_id is not None:
        statements.append(lock_room(room_id))
    if user_id is not None:
        statements.append(lock_user(user_id))
    if room_id is not None or user_id is not None:
        statements.append(lock_active_reservations(room_id=room_id, user_id=user_id))
    return statements


@asynccontextmanager
async def room_and_user_lock(
    session: AsyncSession, room_id: Optional[int], user_id: Optional[int]
) -> AsyncIterator[Tuple[Optional[Room], Optional[User]]]:
    """Open a transaction holding the room and user locks.

    Yields the locked (room, user) rows, None for an identity that does not
    exist. Commits on normal exit; any exception rolls back and propagates.
    """
    async with session.begin():
        room: Optional[Room] = None
        user: Optional[User] = None

        for statement in lock_statements(room_id, user_id):
            rows = (await session.execute(statement)).scalars().all()
            locked = rows[0] if rows else None
            if isinstance(locked, Room):
                room = locked
            elif isinstance(locked, User):
                user = locked

        logger.debug("Acquired booking locks for room=%s user=%s", room_id, user_id)
        yield room, user
