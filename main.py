import logging
import os
from fastapi import FastAPI, Depends, Query, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession
from datetime import date, datetime
from typing import List, Optional, Union

from database import init_db, get_session
from models import (
    Reservation,
    ReservationDetail,
    ReservationRead,
    RoomCreate,
    RoomRead,
    UserCreate,
    UserRead,
)
from pydantic import BaseModel, field_validator

import admission
import availability
import catalog
import recurring
from business_calendar import Clock, system_clock
from errors import AdminRequired, BookingError, InputFormatError, NotFound

logging.basicConfig(
    level=os.environ.get("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(title="Meeting Room Booking System")


# Pydantic Schemas for Request/Response
class RoomCreateRequest(RoomCreate):
    user_id: int


class ReservationCreate(BaseModel):
    room_id: int
    user_id: int
    title: Optional[str] = None
    starts_at: Optional[datetime] = None
    ends_at: Optional[datetime] = None
    recurring: Optional[str] = None
    recurring_until: Optional[date] = None

    @field_validator("starts_at", "ends_at")
    @classmethod
    def to_local_time(cls, value: Optional[datetime]) -> Optional[datetime]:
        # Business hours are wall-clock rules; store naive local time
        if value is not None and value.tzinfo is not None:
            return value.astimezone().replace(tzinfo=None)
        return value


class SlotRead(BaseModel):
    starts_at: datetime
    ends_at: datetime


class AvailabilityRead(BaseModel):
    room_id: int
    date: str
    slots: List[SlotRead]
    reservations: List[ReservationRead]


def get_clock() -> Clock:
    return system_clock


@app.on_event("startup")
async def on_startup():
    await init_db()
    logger.info("Booking database ready")


# --- Error mapping: every failure body is {"errors": [...]} ---
def _status_for(exc: BookingError) -> int:
    if isinstance(exc, NotFound):
        return status.HTTP_404_NOT_FOUND
    if isinstance(exc, AdminRequired):
        return status.HTTP_403_FORBIDDEN
    if isinstance(exc, InputFormatError):
        return status.HTTP_400_BAD_REQUEST
    return status.HTTP_422_UNPROCESSABLE_ENTITY


@app.exception_handler(BookingError)
async def booking_error_handler(request: Request, exc: BookingError):
    return JSONResponse(status_code=_status_for(exc), content={"errors": exc.violations})


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    errors = []
    for error in exc.errors():
        location = ".".join(str(part) for part in error["loc"][1:])
        errors.append(f"{location}: {error['msg']}" if location else error["msg"])
    return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content={"errors": errors})


# --- Rooms ---
@app.get("/api/v1/rooms", response_model=List[RoomRead])
async def list_rooms(session: AsyncSession = Depends(get_session)):
    return await catalog.list_rooms(session)


@app.get("/api/v1/rooms/{room_id}", response_model=RoomRead)
async def get_room(room_id: int, session: AsyncSession = Depends(get_session)):
    return await catalog.get_room(session, room_id)


@app.post("/api/v1/rooms", response_model=RoomRead, status_code=status.HTTP_201_CREATED)
async def create_room(payload: RoomCreateRequest, session: AsyncSession = Depends(get_session)):
    data = RoomCreate.model_validate(payload.model_dump(exclude={"user_id"}))
    return await catalog.create_room(session, payload.user_id, data)


@app.get("/api/v1/rooms/{room_id}/availability", response_model=AvailabilityRead)
async def room_availability(
    room_id: int,
    day: Optional[str] = Query(None, alias="date"),
    session: AsyncSession = Depends(get_session),
):
    parsed = availability.parse_day(day)
    result = await availability.room_availability(session, room_id, parsed)
    return AvailabilityRead(
        room_id=result.room_id,
        date=result.date.isoformat(),
        slots=[SlotRead(starts_at=s.starts_at, ends_at=s.ends_at) for s in result.slots],
        reservations=[ReservationRead.model_validate(r) for r in result.reservations],
    )


# --- Users ---
@app.get("/api/v1/users", response_model=List[UserRead])
async def list_users(session: AsyncSession = Depends(get_session)):
    return await catalog.list_users(session)


@app.get("/api/v1/users/{user_id}", response_model=UserRead)
async def get_user(user_id: int, session: AsyncSession = Depends(get_session)):
    return await catalog.get_user(session, user_id)


@app.post("/api/v1/users", response_model=UserRead, status_code=status.HTTP_201_CREATED)
async def create_user(payload: UserCreate, session: AsyncSession = Depends(get_session)):
    return await catalog.create_user(session, payload)


# --- Reservations ---
@app.get("/api/v1/reservations", response_model=List[ReservationDetail])
async def list_reservations(session: AsyncSession = Depends(get_session)):
    return await catalog.list_reservations(session)


@app.get("/api/v1/reservations/{reservation_id}", response_model=ReservationDetail)
async def get_reservation(reservation_id: int, session: AsyncSession = Depends(get_session)):
    return await catalog.get_reservation(session, reservation_id)


@app.post(
    "/api/v1/reservations",
    response_model=Union[List[ReservationRead], ReservationRead],
    status_code=status.HTTP_201_CREATED,
)
async def create_reservation(
    payload: ReservationCreate,
    session: AsyncSession = Depends(get_session),
    clock: Clock = Depends(get_clock),
):
    if payload.recurring:
        occurrences = await recurring.create_recurring(
            session, recurring.RecurringRequest(**payload.model_dump()), clock=clock
        )
        return [ReservationRead.model_validate(r) for r in occurrences]

    candidate = Reservation(**payload.model_dump(exclude={"recurring", "recurring_until"}))
    reservation = await admission.create_reservation(session, candidate, clock=clock)
    return ReservationRead.model_validate(reservation)


@app.patch("/api/v1/reservations/{reservation_id}/cancel", response_model=ReservationRead)
async def cancel_reservation(
    reservation_id: int,
    session: AsyncSession = Depends(get_session),
    clock: Clock = Depends(get_clock),
):
    return await admission.cancel_reservation(session, reservation_id, clock=clock)
