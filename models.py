from typing import List, Optional
from datetime import date, datetime
from enum import Enum
from pydantic import EmailStr
from sqlmodel import SQLModel, Field, Relationship
from sqlalchemy import DateTime, Index, UniqueConstraint


class RecurrenceKind(str, Enum):
    DAILY = "daily"
    WEEKLY = "weekly"


# --- Rooms ---
class RoomBase(SQLModel):
    name: Optional[str] = None
    capacity: Optional[int] = None
    has_projector: bool = False
    has_video_conference: bool = False
    floor: Optional[int] = None


class Room(RoomBase, table=True):
    __tablename__ = "rooms"
    __table_args__ = (UniqueConstraint("name", name="uq_rooms_name"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    name: Optional[str] = Field(default=None, nullable=False)
    capacity: Optional[int] = Field(default=None, nullable=False)
    floor: Optional[int] = Field(default=None, nullable=False)

    reservations: List["Reservation"] = Relationship(back_populates="room")


class RoomCreate(RoomBase):
    pass


class RoomRead(RoomBase):
    id: int


# --- Users ---
class UserBase(SQLModel):
    name: Optional[str] = None
    email: Optional[EmailStr] = None
    department: Optional[str] = None
    max_capacity_allowed: Optional[int] = None
    is_admin: bool = False


class User(UserBase, table=True):
    __tablename__ = "users"
    __table_args__ = (UniqueConstraint("email", name="uq_users_email"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    name: Optional[str] = Field(default=None, nullable=False)
    email: Optional[str] = Field(default=None, nullable=False)
    max_capacity_allowed: Optional[int] = Field(default=None, nullable=False)

    reservations: List["Reservation"] = Relationship(back_populates="user")


class UserCreate(UserBase):
    pass


class UserRead(UserBase):
    id: int


# --- Reservations ---
class ReservationBase(SQLModel):
    room_id: Optional[int] = None
    user_id: Optional[int] = None
    title: Optional[str] = None
    starts_at: Optional[datetime] = None
    ends_at: Optional[datetime] = None
    recurring: Optional[str] = None
    recurring_until: Optional[date] = None


class Reservation(ReservationBase, table=True):
    __tablename__ = "reservations"
    __table_args__ = (
        # Overlap lookups: active reservations of a room intersecting a range
        Index("ix_reservations_room_time", "room_id", "starts_at", "ends_at"),
        # Active-limit lookups: a user's uncancelled reservations in the future
        Index("ix_reservations_user_active_future", "user_id", "cancelled_at", "starts_at"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    room_id: Optional[int] = Field(default=None, foreign_key="rooms.id", nullable=False)
    user_id: Optional[int] = Field(default=None, foreign_key="users.id", nullable=False)
    title: Optional[str] = Field(default=None, nullable=False)
    # Naive local wall-clock time
    starts_at: Optional[datetime] = Field(default=None, sa_type=DateTime, nullable=False)
    ends_at: Optional[datetime] = Field(default=None, sa_type=DateTime, nullable=False)
    recurring: Optional[str] = Field(default=None, max_length=10)
    cancelled_at: Optional[datetime] = Field(default=None, sa_type=DateTime)

    room: Optional[Room] = Relationship(back_populates="reservations")
    user: Optional[User] = Relationship(back_populates="reservations")

    @property
    def is_active(self) -> bool:
        return self.cancelled_at is None


class ReservationRead(ReservationBase):
    id: int
    cancelled_at: Optional[datetime] = None


class ReservationDetail(ReservationRead):
    room: Optional[RoomRead] = None
    user: Optional[UserRead] = None
