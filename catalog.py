"""
Rooms and users, plus the plain reservation reads.

Room creation is gated on the acting user being an administrator; that
flag is the only authorization the booking engine knows about.
"""

import logging
from typing import List

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload
from sqlmodel import col, select

from errors import AdminRequired, NotFound, ValidationFailure
from models import Reservation, Room, RoomCreate, User, UserCreate

logger = logging.getLogger(__name__)


def _blank(value) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def _positive(violations: List[str], label: str, value) -> None:
    if value is None:
        violations.append(f"{label} can't be blank")
    elif value <= 0:
        violations.append(f"{label} must be greater than 0")


def validate_user(data: UserCreate) -> List[str]:
    violations = []
    if _blank(data.name):
        violations.append("Name can't be blank")
    if _blank(data.email):
        violations.append("Email can't be blank")
    _positive(violations, "Max capacity allowed", data.max_capacity_allowed)
    return violations


def validate_room(data: RoomCreate) -> List[str]:
    violations = []
    if _blank(data.name):
        violations.append("Name can't be blank")
    _positive(violations, "Capacity", data.capacity)
    if data.floor is None:
        violations.append("Floor can't be blank")
    return violations


async def create_user(session: AsyncSession, data: UserCreate) -> User:
    violations = validate_user(data)
    if violations:
        raise ValidationFailure(violations)

    user = User.model_validate(data)
    async with session.begin():
        session.add(user)
        try:
            await session.flush()
        except IntegrityError:
            # Unique constraint on users.email
            raise ValidationFailure(["Email has already been taken"])

    logger.info("User %s created (admin=%s)", user.id, user.is_admin)
    return user


async def create_room(session: AsyncSession, acting_user_id: int, data: RoomCreate) -> Room:
    async with session.begin():
        acting_user = await session.get(User, acting_user_id)
        if acting_user is None:
            raise NotFound("User", acting_user_id)
        if not acting_user.is_admin:
            raise AdminRequired("create rooms")

        violations = validate_room(data)
        if violations:
            raise ValidationFailure(violations)

        room = Room.model_validate(data)
        session.add(room)
        try:
            await session.flush()
        except IntegrityError:
            # Unique constraint on rooms.name
            raise ValidationFailure(["Name has already been taken"])

    logger.info("Room %s (%s) created by user %s", room.id, room.name, acting_user_id)
    return room


# --- Plain reads ---
async def list_rooms(session: AsyncSession) -> List[Room]:
    result = await session.execute(select(Room).order_by(col(Room.id)))
    return list(result.scalars().all())


async def get_room(session: AsyncSession, room_id: int) -> Room:
    room = await session.get(Room, room_id)
    if room is None:
        raise NotFound("Room", room_id)
    return room


async def list_users(session: AsyncSession) -> List[User]:
    result = await session.execute(select(User).order_by(col(User.id)))
    return list(result.scalars().all())


async def get_user(session: AsyncSession, user_id: int) -> User:
    user = await session.get(User, user_id)
    if user is None:
        raise NotFound("User", user_id)
    return user


def _with_parties(statement):
    return statement.options(selectinload(Reservation.room), selectinload(Reservation.user))


async def list_reservations(session: AsyncSession) -> List[Reservation]:
    statement = _with_parties(select(Reservation)).order_by(col(Reservation.starts_at))
    result = await session.execute(statement)
    return list(result.scalars().all())


async def get_reservation(session: AsyncSession, reservation_id: int) -> Reservation:
    statement = _with_parties(select(Reservation).where(Reservation.id == reservation_id))
    reservation = (await session.execute(statement)).scalars().first()
    if reservation is None:
        raise NotFound("Reservation", reservation_id)
    return reservation
