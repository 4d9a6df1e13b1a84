from datetime import timedelta

import pytest

from admission import cancel_reservation, create_reservation
from errors import AlreadyCancelled, NotFound, TooLateToCancel, ValidationFailure
from models import Reservation
from rules import ACTIVE_LIMIT, OVERLAP, TOO_LONG
from tests.conftest import NOW, at

pytestmark = pytest.mark.asyncio


def candidate_for(room, user, starts_at, ends_at, title="Planning"):
    return Reservation(room_id=room.id, user_id=user.id, title=title, starts_at=starts_at, ends_at=ends_at)


class TestCreateReservation:
    async def test_overlap_then_adjacent_booking(self, db, clock, make_room, make_user, make_reservation, count_reservations):
        room = await make_room(capacity=10)
        user = await make_user(max_capacity_allowed=10)
        await make_reservation(room, user, at(0, 10), at(0, 12))

        async with db() as session:
            with pytest.raises(ValidationFailure) as exc_info:
                await create_reservation(session, candidate_for(room, user, at(0, 11), at(0, 13)), clock=clock)
        assert exc_info.value.violations == [OVERLAP]
        assert await count_reservations() == 1

        async with db() as session:
            reservation = await create_reservation(
                session, candidate_for(room, user, at(0, 12), at(0, 13)), clock=clock
            )
        assert reservation.id is not None
        assert reservation.cancelled_at is None
        assert await count_reservations() == 2

    async def test_rejection_persists_nothing(self, db, clock, make_room, make_user, count_reservations):
        room, user = await make_room(), await make_user()
        async with db() as session:
            with pytest.raises(ValidationFailure) as exc_info:
                await create_reservation(session, candidate_for(room, user, at(0, 9), at(0, 13, 30)), clock=clock)
        assert exc_info.value.violations == [TOO_LONG]
        assert await count_reservations() == 0

    async def test_unknown_room_or_user(self, db, clock, make_room, make_user):
        room, user = await make_room(), await make_user()
        async with db() as session:
            with pytest.raises(NotFound) as exc_info:
                await create_reservation(
                    session,
                    Reservation(room_id=999, user_id=user.id, title="x", starts_at=at(0, 10), ends_at=at(0, 11)),
                    clock=clock,
                )
        assert exc_info.value.violations == ["Room not found"]

        async with db() as session:
            with pytest.raises(NotFound):
                await create_reservation(
                    session,
                    Reservation(room_id=room.id, user_id=999, title="x", starts_at=at(0, 10), ends_at=at(0, 11)),
                    clock=clock,
                )

    async def test_cancelling_frees_an_active_slot(self, db, clock, make_room, make_user, make_reservation):
        room, user = await make_room(), await make_user()
        booked = [await make_reservation(room, user, at(day, 10), at(day, 11)) for day in range(1, 4)]

        async with db() as session:
            with pytest.raises(ValidationFailure) as exc_info:
                await create_reservation(session, candidate_for(room, user, at(4, 10), at(4, 11)), clock=clock)
        assert exc_info.value.violations == [ACTIVE_LIMIT]

        async with db() as session:
            await cancel_reservation(session, booked[0].id, clock=clock)

        async with db() as session:
            reservation = await create_reservation(
                session, candidate_for(room, user, at(4, 10), at(4, 11)), clock=clock
            )
        assert reservation.id is not None

    async def test_admin_is_not_limited(self, db, clock, make_room, make_user):
        room = await make_room(capacity=50)
        admin = await make_user(is_admin=True, max_capacity_allowed=1)
        for day in range(5):
            async with db() as session:
                await create_reservation(session, candidate_for(room, admin, at(day, 10), at(day, 11)), clock=clock)


class TestCancelReservation:
    async def test_cancel_sets_cancelled_at(self, db, make_room, make_user, make_reservation):
        room, user = await make_room(), await make_user()
        reservation = await make_reservation(room, user, at(0, 10), at(0, 11))
        cancel_time = reservation.starts_at - timedelta(minutes=61)

        async with db() as session:
            cancelled = await cancel_reservation(session, reservation.id, clock=lambda: cancel_time)
        assert cancelled.cancelled_at == cancel_time

        async with db() as session:
            stored = await session.get(Reservation, reservation.id)
            assert stored.cancelled_at == cancel_time

    async def test_cutoff_is_exclusive_at_sixty_minutes(self, db, make_room, make_user, make_reservation, count_reservations):
        room, user = await make_room(), await make_user()
        reservation = await make_reservation(room, user, at(0, 10), at(0, 11))

        async with db() as session:
            with pytest.raises(TooLateToCancel) as exc_info:
                await cancel_reservation(
                    session, reservation.id, clock=lambda: reservation.starts_at - timedelta(minutes=60)
                )
        assert exc_info.value.violations == ["Cannot cancel less than 60 minutes before start time"]
        assert await count_reservations(cancelled_at=None) == 1

    async def test_cancelling_twice_fails(self, db, clock, make_room, make_user, make_reservation):
        room, user = await make_room(), await make_user()
        reservation = await make_reservation(room, user, at(1, 10), at(1, 11))

        async with db() as session:
            await cancel_reservation(session, reservation.id, clock=clock)
        async with db() as session:
            with pytest.raises(AlreadyCancelled) as exc_info:
                await cancel_reservation(session, reservation.id, clock=clock)
        assert exc_info.value.violations == ["Reservation is already cancelled"]

    async def test_unknown_reservation(self, db, clock):
        async with db() as session:
            with pytest.raises(NotFound):
                await cancel_reservation(session, 12345, clock=clock)

    async def test_cancelled_reservation_no_longer_blocks_the_room(self, db, clock, make_room, make_user, make_reservation):
        room, user = await make_room(), await make_user()
        reservation = await make_reservation(room, user, at(1, 10), at(1, 11))
        async with db() as session:
            await cancel_reservation(session, reservation.id, clock=clock)

        async with db() as session:
            replacement = await create_reservation(
                session, candidate_for(room, user, at(1, 10), at(1, 11)), clock=clock
            )
        assert replacement.id != reservation.id
