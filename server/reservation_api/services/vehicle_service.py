"""Vehicle lookups and seeding helpers."""

import logging
from typing import Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.exceptions import NotFoundError
from ..core.storage import Storage
from ..models.vehicle import Vehicle

logger = logging.getLogger(__name__)


class VehicleService:
    """Service for the few vehicle operations reservations depend on."""

    def __init__(self, storage: Storage):
        self.storage = storage

    async def create_vehicle(
        self,
        make: str,
        model: str,
        license_plate: str,
        daily_rate: int,
        with_driver_rate: int = 0,
        is_available: bool = True,
    ) -> Vehicle:
        """
        Register a vehicle. Used by seeding scripts and tests.

        Args:
            make: Manufacturer
            model: Model name
            license_plate: Unique plate number
            daily_rate: Rental price per day in minor units
            with_driver_rate: Surcharge per day for a driver, in minor units
            is_available: Whether the vehicle accepts bookings

        Returns:
            Created vehicle entity
        """
        async with self.storage.transaction(f"vehicle-plate:{license_plate}") as session:
            vehicle = Vehicle(
                make=make,
                model=model,
                license_plate=license_plate,
                daily_rate=daily_rate,
                with_driver_rate=with_driver_rate,
                is_available=is_available,
            )
            session.add(vehicle)
            await session.flush()

        logger.info(
            "Vehicle created",
            extra={"vehicle_id": str(vehicle.id), "license_plate": license_plate, "daily_rate": daily_rate}
        )
        return vehicle

    async def get_by_plate(self, license_plate: str) -> Optional[Vehicle]:
        async with self.storage.session() as session:
            result = await session.execute(select(Vehicle).where(Vehicle.license_plate == license_plate))
            return result.scalar_one_or_none()

    @staticmethod
    async def get_or_raise(session: AsyncSession, vehicle_id: UUID) -> Vehicle:
        vehicle = await session.get(Vehicle, vehicle_id)
        if vehicle is None:
            raise NotFoundError(resource_type="vehicle", resource_id=str(vehicle_id))
        return vehicle
