"""Vehicle availability router."""

from datetime import date
from uuid import UUID

from fastapi import APIRouter, Query

from ..core.dependencies import ReservationServiceDependency
from ..schemas.common import PROBLEM_RESPONSES
from ..schemas.vehicle import AvailabilityResponse
from ..services.reservation_service import ReservationService

router = APIRouter(prefix="/v1/vehicles", tags=["vehicles"], responses=PROBLEM_RESPONSES)


@router.get("/availability", response_model=AvailabilityResponse)
async def check_availability(
    vehicle_id: UUID = Query(..., description="Vehicle to check"),
    start: date = Query(..., description="First rental day"),
    end: date = Query(..., description="Return day (exclusive)"),
    service: ReservationService = ReservationServiceDependency
) -> AvailabilityResponse:
    """
    Advisory availability check.

    The answer may be stale by the time a booking is attempted; only
    booking creation decides.
    """
    available = await service.check_availability(vehicle_id, start, end)
    return AvailabilityResponse(
        vehicle_id=str(vehicle_id),
        start_date=start,
        end_date=end,
        available=available
    )
