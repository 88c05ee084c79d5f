"""Vehicle availability checks over half-open day intervals."""

import logging
from dataclasses import dataclass
from datetime import date
from typing import Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.exceptions import ConflictError, NotFoundError
from ..core.storage import Storage
from ..models.booking import INACTIVE_STATUSES, Booking
from ..models.vehicle import Vehicle

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Interval:
    """Rental interval ``[start, end)``; ``end`` is the return day."""

    start: date
    end: date

    @property
    def days(self) -> int:
        return (self.end - self.start).days

    def overlaps(self, other: "Interval") -> bool:
        return intervals_overlap(self.start, self.end, other.start, other.end)


def intervals_overlap(start1: date, end1: date, start2: date, end2: date) -> bool:
    """Half-open overlap test; intervals that only touch do not overlap."""
    return start1 < end2 and start2 < end1


class AvailabilityConflictError(ConflictError):
    """Exception when the vehicle is already reserved for part of the interval."""

    def __init__(self, vehicle_id: str, interval: Interval, conflicting_booking: Optional[str] = None):
        conflicting = {
            "vehicle_id": vehicle_id,
            "start_date": interval.start.isoformat(),
            "end_date": interval.end.isoformat(),
        }
        if conflicting_booking:
            conflicting["booking_number"] = conflicting_booking

        super().__init__(
            detail=f"Vehicle {vehicle_id} is not available from {interval.start} to {interval.end}",
            conflicting_resource=conflicting
        )
        self.problem_details.update({
            "code": "AVAILABILITY_CONFLICT",
            "retryable": False
        })


class VehicleUnavailableError(AvailabilityConflictError):
    """Exception when the vehicle is administratively disabled."""

    def __init__(self, vehicle_id: str, interval: Interval):
        super().__init__(vehicle_id, interval)
        self.problem_details["detail"] = f"Vehicle {vehicle_id} is not available for booking"
        self.problem_details["code"] = "VEHICLE_UNAVAILABLE"


class AvailabilityChecker:
    """
    Decides whether a vehicle is free for an interval.

    ``is_available`` and ``ensure_available`` read inside the caller's session,
    which must hold the vehicle's serialization key for the answer to stay
    true until commit. ``check`` opens its own session and is advisory only.
    """

    def __init__(self, storage: Storage):
        self.storage = storage

    async def find_conflict(
        self,
        session: AsyncSession,
        vehicle_id: UUID,
        interval: Interval,
        exclude_booking_id: Optional[UUID] = None,
    ) -> Optional[Booking]:
        """Return one active booking overlapping ``interval``, if any."""
        stmt = (
            select(Booking)
            .where(
                Booking.vehicle_id == vehicle_id,
                Booking.status.not_in(list(INACTIVE_STATUSES)),
                Booking.start_date < interval.end,
                Booking.end_date > interval.start,
            )
            .order_by(Booking.start_date)
            .limit(1)
        )
        if exclude_booking_id is not None:
            stmt = stmt.where(Booking.id != exclude_booking_id)

        result = await session.execute(stmt)
        return result.scalar_one_or_none()

    async def is_available(
        self,
        session: AsyncSession,
        vehicle_id: UUID,
        interval: Interval,
        exclude_booking_id: Optional[UUID] = None,
    ) -> bool:
        """
        Check whether the vehicle can take a booking over ``interval``.

        Raises:
            NotFoundError: If the vehicle does not exist
        """
        vehicle = await session.get(Vehicle, vehicle_id)
        if vehicle is None:
            raise NotFoundError(resource_type="vehicle", resource_id=str(vehicle_id))
        if not vehicle.is_available:
            return False

        conflict = await self.find_conflict(session, vehicle_id, interval, exclude_booking_id)
        return conflict is None

    async def ensure_available(
        self,
        session: AsyncSession,
        vehicle_id: UUID,
        interval: Interval,
        exclude_booking_id: Optional[UUID] = None,
    ) -> Vehicle:
        """
        Assert availability and return the vehicle.

        Raises:
            NotFoundError: If the vehicle does not exist
            VehicleUnavailableError: If the vehicle is disabled
            AvailabilityConflictError: If an active booking overlaps
        """
        vehicle = await session.get(Vehicle, vehicle_id)
        if vehicle is None:
            raise NotFoundError(resource_type="vehicle", resource_id=str(vehicle_id))
        if not vehicle.is_available:
            raise VehicleUnavailableError(str(vehicle_id), interval)

        conflict = await self.find_conflict(session, vehicle_id, interval, exclude_booking_id)
        if conflict is not None:
            logger.info(
                "Availability conflict",
                extra={
                    "vehicle_id": str(vehicle_id),
                    "start_date": interval.start.isoformat(),
                    "end_date": interval.end.isoformat(),
                    "conflicting_booking": conflict.booking_number,
                }
            )
            raise AvailabilityConflictError(str(vehicle_id), interval, conflict.booking_number)

        return vehicle

    async def check(self, vehicle_id: UUID, interval: Interval) -> bool:
        """Advisory read; the answer may be stale by the time the caller acts on it."""
        async with self.storage.session() as session:
            return await self.is_available(session, vehicle_id, interval)
