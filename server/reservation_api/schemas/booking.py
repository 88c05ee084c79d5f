"""Booking-related Pydantic schemas."""

from datetime import date, datetime
from typing import List, Optional

from pydantic import BaseModel, Field, model_validator

from ..models.booking import BookingPaymentStatus, BookingStatus


class CreateBookingRequest(BaseModel):
    """Request schema for creating a booking."""

    vehicle_id: str = Field(..., description="Vehicle to reserve")
    start_date: date = Field(..., description="First rental day")
    end_date: date = Field(..., description="Return day (exclusive)")
    pickup_location: Optional[str] = Field(None, max_length=255, description="Pickup location")
    return_location: Optional[str] = Field(None, max_length=255, description="Return location")
    with_driver: bool = Field(False, description="Whether a driver is included")
    notes: Optional[str] = Field(None, max_length=2000, description="Customer notes")
    customer_id: Optional[str] = Field(
        None,
        max_length=128,
        description="Customer the booking is for; staff only, defaults to the caller"
    )


class UpdateBookingRequest(BaseModel):
    """Request schema for updating a booking. Omitted fields are unchanged; null clears the optional text fields."""

    start_date: Optional[date] = Field(None, description="New first rental day")
    end_date: Optional[date] = Field(None, description="New return day (exclusive)")
    pickup_location: Optional[str] = Field(None, max_length=255)
    return_location: Optional[str] = Field(None, max_length=255)
    with_driver: Optional[bool] = Field(None)
    notes: Optional[str] = Field(None, max_length=2000)

    @model_validator(mode="after")
    def check_not_empty(self) -> "UpdateBookingRequest":
        if not self.model_fields_set:
            raise ValueError("At least one field must be provided")
        return self


class ChangeStatusRequest(BaseModel):
    """Request schema for a staff status change."""

    status: BookingStatus = Field(..., description="Target status")
    reason: Optional[str] = Field(None, max_length=2000, description="Reason, stored for cancellations")


class ListBookingsRequest(BaseModel):
    """Filters for listing bookings."""

    status: Optional[BookingStatus] = Field(None, description="Filter by status")
    vehicle_id: Optional[str] = Field(None, description="Filter by vehicle")
    from_date: Optional[date] = Field(None, description="Bookings ending after this day")
    to_date: Optional[date] = Field(None, description="Bookings starting before this day")
    page: int = Field(1, ge=1, description="Page number")
    limit: int = Field(10, ge=1, le=100, description="Page size")


class Booking(BaseModel):
    """Booking response schema."""

    id: str = Field(..., description="Unique booking ID")
    booking_number: str = Field(..., description="Human readable booking reference")
    vehicle_id: str = Field(..., description="Reserved vehicle ID")
    customer_id: str = Field(..., description="Customer the booking belongs to")
    start_date: date = Field(..., description="First rental day")
    end_date: date = Field(..., description="Return day (exclusive)")
    pickup_location: Optional[str] = None
    return_location: Optional[str] = None
    with_driver: bool = False
    notes: Optional[str] = None
    status: BookingStatus = Field(..., description="Booking status")
    payment_status: BookingPaymentStatus = Field(..., description="Settlement status")
    total_amount: int = Field(..., ge=0, description="Rental total in minor units")
    cancellation_reason: Optional[str] = None
    created_at: datetime = Field(..., description="Booking creation time (ISO 8601)")
    updated_at: datetime = Field(..., description="Last update time (ISO 8601)")


class BookingList(BaseModel):
    """Paginated booking list."""

    items: List[Booking] = Field(..., description="Bookings on this page")
    total: int = Field(..., ge=0, description="Bookings matching the filters")
    page: int = Field(..., ge=1)
    limit: int = Field(..., ge=1)
    pages: int = Field(..., ge=0, description="Total number of pages")
