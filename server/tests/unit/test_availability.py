"""Unit tests for vehicle availability checks."""

from datetime import date, timedelta
from uuid import uuid4

import pytest

from reservation_api.core.exceptions import NotFoundError
from reservation_api.models.booking import Booking, BookingPaymentStatus, BookingStatus
from reservation_api.services.availability_service import (
    AvailabilityChecker,
    AvailabilityConflictError,
    Interval,
    VehicleUnavailableError,
    intervals_overlap,
)

D = date(2026, 11, 1)


def day(n: int) -> date:
    return D + timedelta(days=n)


@pytest.mark.parametrize("a,b,expected", [
    ((0, 3), (3, 5), False),
    ((3, 5), (0, 3), False),
    ((0, 3), (2, 5), True),
    ((0, 5), (1, 2), True),
    ((1, 2), (0, 5), True),
    ((0, 3), (0, 3), True),
    ((0, 1), (5, 6), False),
])
def test_intervals_overlap_is_half_open(a, b, expected):
    assert intervals_overlap(day(a[0]), day(a[1]), day(b[0]), day(b[1])) is expected
    assert Interval(day(a[0]), day(a[1])).overlaps(Interval(day(b[0]), day(b[1]))) is expected


def test_interval_days():
    assert Interval(day(0), day(3)).days == 3


async def add_booking(storage, vehicle, start: int, end: int, status=BookingStatus.PENDING) -> Booking:
    async with storage.transaction(f"vehicle:{vehicle.id}") as session:
        booking = Booking(
            booking_number=f"BK-{uuid4().hex[:6].upper()}-261101",
            vehicle_id=vehicle.id,
            customer_id="user-1",
            start_date=day(start),
            end_date=day(end),
            status=status,
            payment_status=BookingPaymentStatus.UNPAID,
            total_amount=0,
        )
        session.add(booking)
        await session.flush()
    return booking


@pytest.fixture
def checker(storage) -> AvailabilityChecker:
    return AvailabilityChecker(storage)


async def test_free_vehicle_is_available(checker, vehicle):
    assert await checker.check(vehicle.id, Interval(day(0), day(3)))


async def test_touching_intervals_do_not_conflict(checker, storage, vehicle):
    await add_booking(storage, vehicle, 0, 3)

    assert await checker.check(vehicle.id, Interval(day(3), day(5)))
    assert not await checker.check(vehicle.id, Interval(day(2), day(4)))


async def test_inactive_bookings_do_not_occupy(checker, storage, vehicle):
    await add_booking(storage, vehicle, 0, 3, status=BookingStatus.CANCELLED)
    await add_booking(storage, vehicle, 0, 3, status=BookingStatus.REJECTED)

    assert await checker.check(vehicle.id, Interval(day(0), day(3)))


@pytest.mark.parametrize("status", [BookingStatus.CONFIRMED, BookingStatus.ONGOING, BookingStatus.COMPLETED])
async def test_active_statuses_occupy(checker, storage, vehicle, status):
    await add_booking(storage, vehicle, 0, 3, status=status)

    assert not await checker.check(vehicle.id, Interval(day(1), day(2)))


async def test_disabled_vehicle_is_unavailable(checker, disabled_vehicle):
    assert not await checker.check(disabled_vehicle.id, Interval(day(0), day(3)))

    async with checker.storage.session() as session:
        with pytest.raises(VehicleUnavailableError) as exc_info:
            await checker.ensure_available(session, disabled_vehicle.id, Interval(day(0), day(3)))
    assert exc_info.value.code == "VEHICLE_UNAVAILABLE"


async def test_unknown_vehicle(checker):
    with pytest.raises(NotFoundError):
        await checker.check(uuid4(), Interval(day(0), day(3)))


async def test_ensure_available_names_conflicting_booking(checker, storage, vehicle):
    existing = await add_booking(storage, vehicle, 0, 3)

    async with storage.session() as session:
        with pytest.raises(AvailabilityConflictError) as exc_info:
            await checker.ensure_available(session, vehicle.id, Interval(day(1), day(4)))

    problem = exc_info.value.problem_details
    assert exc_info.value.status_code == 409
    assert problem["code"] == "AVAILABILITY_CONFLICT"
    assert problem["conflicting_resource"]["booking_number"] == existing.booking_number


async def test_excluding_a_booking_ignores_it(checker, storage, vehicle):
    existing = await add_booking(storage, vehicle, 0, 3)

    async with storage.session() as session:
        assert await checker.is_available(session, vehicle.id, Interval(day(1), day(4)), exclude_booking_id=existing.id)
