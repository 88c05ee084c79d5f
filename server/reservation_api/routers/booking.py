"""Booking router for reservation operations."""

import logging
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status

from ..core.auth import Claim
from ..core.dependencies import RequiredCustomer, RequiredStaff, ReservationServiceDependency
from ..models.booking import Booking as BookingModel
from ..schemas.booking import (
    Booking,
    BookingList,
    ChangeStatusRequest,
    CreateBookingRequest,
    ListBookingsRequest,
    UpdateBookingRequest,
)
from ..schemas.common import PROBLEM_RESPONSES
from ..services.reservation_service import ReservationService, page_count

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/bookings", tags=["bookings"], responses=PROBLEM_RESPONSES)

LIST_FILTERS_DEPENDENCY = Depends()


def _convert_booking_to_schema(booking_model: BookingModel) -> Booking:
    """Convert booking model to schema."""
    return Booking(
        id=str(booking_model.id),
        booking_number=booking_model.booking_number,
        vehicle_id=str(booking_model.vehicle_id),
        customer_id=booking_model.customer_id,
        start_date=booking_model.start_date,
        end_date=booking_model.end_date,
        pickup_location=booking_model.pickup_location,
        return_location=booking_model.return_location,
        with_driver=booking_model.with_driver,
        notes=booking_model.notes,
        status=booking_model.status,
        payment_status=booking_model.payment_status,
        total_amount=booking_model.total_amount,
        cancellation_reason=booking_model.cancellation_reason,
        created_at=booking_model.created_at,
        updated_at=booking_model.updated_at
    )


@router.post("", response_model=Booking, status_code=status.HTTP_201_CREATED)
async def create_booking(
    request: CreateBookingRequest,
    claim: Claim = RequiredCustomer,
    service: ReservationService = ReservationServiceDependency
) -> Booking:
    """
    Reserve a vehicle for ``[start_date, end_date)``.

    Fails with 409 when any active booking of the vehicle overlaps.
    """
    booking = await service.create_booking(claim, request)
    return _convert_booking_to_schema(booking)


@router.get("", response_model=BookingList)
async def list_bookings(
    filters: ListBookingsRequest = LIST_FILTERS_DEPENDENCY,
    claim: Claim = RequiredCustomer,
    service: ReservationService = ReservationServiceDependency
) -> BookingList:
    """List bookings visible to the caller, newest first."""
    bookings, total = await service.list_bookings(claim, filters)
    return BookingList(
        items=[_convert_booking_to_schema(booking) for booking in bookings],
        total=total,
        page=filters.page,
        limit=filters.limit,
        pages=page_count(total, filters.limit)
    )


@router.get("/{booking_id}", response_model=Booking)
async def get_booking(
    booking_id: UUID,
    claim: Claim = RequiredCustomer,
    service: ReservationService = ReservationServiceDependency
) -> Booking:
    """Fetch one booking."""
    booking = await service.get_booking(claim, booking_id)
    return _convert_booking_to_schema(booking)


@router.put("/{booking_id}", response_model=Booking)
async def update_booking(
    booking_id: UUID,
    request: UpdateBookingRequest,
    claim: Claim = RequiredCustomer,
    service: ReservationService = ReservationServiceDependency
) -> Booking:
    """Change dates or details of a pending or confirmed booking."""
    booking = await service.update_booking(claim, booking_id, request)
    return _convert_booking_to_schema(booking)


@router.put("/{booking_id}/status", response_model=Booking)
async def change_booking_status(
    booking_id: UUID,
    request: ChangeStatusRequest,
    claim: Claim = RequiredStaff,
    service: ReservationService = ReservationServiceDependency
) -> Booking:
    """
    Staff status change along the booking lifecycle.

    ``cancelled`` goes through the cancellation policy like a customer cancel.
    """
    booking = await service.change_status(claim, booking_id, request.status, request.reason)
    return _convert_booking_to_schema(booking)


@router.delete("/{booking_id}", response_model=Booking)
async def cancel_booking(
    booking_id: UUID,
    reason: Optional[str] = Query(None, max_length=2000, description="Cancellation reason"),
    claim: Claim = RequiredCustomer,
    service: ReservationService = ReservationServiceDependency
) -> Booking:
    """Cancel a booking; bookings are never deleted."""
    booking = await service.cancel_booking(claim, booking_id, reason)
    return _convert_booking_to_schema(booking)
