"""Vehicle availability schemas."""

from datetime import date

from pydantic import BaseModel, Field


class AvailabilityResponse(BaseModel):
    """Advisory availability answer; may be stale by the time a booking is attempted."""

    vehicle_id: str
    start_date: date
    end_date: date
    available: bool
    advisory: bool = Field(True, description="Always true; only booking creation is authoritative")
