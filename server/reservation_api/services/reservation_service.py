"""Reservation use cases: bookings, cancellations, status changes and payments."""

import logging
import math
from datetime import date, datetime, timezone
from typing import Awaitable, Callable, Optional, TypeVar
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from ..core.auth import Claim
from ..core.exceptions import AuthorizationError, ConflictError, NotFoundError, ValidationError
from ..core.observability import metrics_collector
from ..core.storage import EXCLUSION_VIOLATION_SQLSTATE, Storage, sqlstate_of, unique_value
from ..models.booking import Booking, BookingPaymentStatus, BookingStatus
from ..models.payment import Payment
from ..models.vehicle import Vehicle
from ..schemas.booking import CreateBookingRequest, ListBookingsRequest, UpdateBookingRequest
from ..schemas.payment import CreatePaymentRequest
from .availability_service import AvailabilityChecker, AvailabilityConflictError, Interval
from .booking_state import CANCELLABLE_STATUSES, BookingStateMachine, generate_booking_number
from .payment_service import CaptureResult, PaymentLedger
from .vehicle_service import VehicleService

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Optional text an explicit null clears
CLEARABLE_FIELDS = ("pickup_location", "return_location", "notes")


class BookingPaidError(ConflictError):
    """Exception when a paid booking's dates are changed."""

    def __init__(self, booking_id: str):
        super().__init__(
            detail="Dates of a paid booking cannot be changed; refund it first",
            conflicting_resource={"booking_id": booking_id}
        )
        self.problem_details.update({
            "code": "BOOKING_PAID",
            "retryable": False
        })


class PaymentRequiredError(ConflictError):
    """Exception when staff try to confirm a booking that has not been paid."""

    def __init__(self, booking_id: str):
        super().__init__(
            detail="Only a completed payment confirms a booking",
            conflicting_resource={"booking_id": booking_id}
        )
        self.problem_details.update({
            "code": "PAYMENT_REQUIRED",
            "retryable": False
        })


class BookingLockedError(ConflictError):
    """Exception when a booking can no longer be modified."""

    def __init__(self, booking_id: str, status: str):
        super().__init__(
            detail=f"Booking in status '{status}' can no longer be modified",
            conflicting_resource={"booking_id": booking_id, "current_status": status}
        )
        self.problem_details.update({
            "code": "BOOKING_NOT_MODIFIABLE",
            "retryable": False
        })


class StaleBookingError(ConflictError):
    """Exception when a booking changed underneath a write."""

    def __init__(self):
        super().__init__(detail="The booking was modified concurrently; reload and retry")
        self.problem_details.update({
            "code": "STALE_BOOKING",
            "retryable": True
        })


def parse_id(value: str, field: str) -> UUID:
    """Parse an identifier from a request body."""
    try:
        return UUID(str(value))
    except ValueError:
        raise ValidationError(violations=[{"path": field, "message": "Must be a valid UUID"}])


def rental_total(vehicle: Vehicle, interval: Interval, with_driver: bool) -> int:
    """Days times the daily rate, plus the driver surcharge per day."""
    per_day = vehicle.daily_rate + (vehicle.with_driver_rate if with_driver else 0)
    return interval.days * per_day


class ReservationService:
    """
    Orchestrates reservation use cases on behalf of an authenticated caller.

    Writes that can change a vehicle's occupancy serialize on ``vehicle:<id>``;
    writes to one booking serialize on ``booking:<id>``, the same key the
    payment ledger takes.
    """

    def __init__(
        self,
        storage: Storage,
        availability: AvailabilityChecker,
        state_machine: BookingStateMachine,
        ledger: PaymentLedger,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self.storage = storage
        self.availability = availability
        self.state_machine = state_machine
        self.ledger = ledger
        self.clock = clock

    def today(self) -> date:
        return self.clock().date()

    async def create_booking(self, claim: Claim, request: CreateBookingRequest) -> Booking:
        """
        Reserve a vehicle for ``[start_date, end_date)``.

        Args:
            claim: Authenticated caller
            request: Booking creation request

        Returns:
            Created booking in ``pending`` status

        Raises:
            ValidationError: If the interval breaks the booking rules
            AuthorizationError: If a non-staff caller books for someone else
            NotFoundError: If the vehicle does not exist
            AvailabilityConflictError: If the vehicle is taken for part of the interval
        """
        vehicle_id = parse_id(request.vehicle_id, "vehicle_id")
        interval = Interval(request.start_date, request.end_date)
        self.state_machine.validate_interval(interval, self.today())
        customer_id = self._customer_for(claim, request.customer_id)

        async def operation(session: AsyncSession) -> Booking:
            vehicle = await self.availability.ensure_available(session, vehicle_id, interval)
            booking = Booking(
                booking_number=await unique_value(
                    session, Booking.booking_number, lambda: generate_booking_number(self.today())
                ),
                vehicle_id=vehicle_id,
                customer_id=customer_id,
                start_date=interval.start,
                end_date=interval.end,
                pickup_location=request.pickup_location,
                return_location=request.return_location,
                with_driver=request.with_driver,
                notes=request.notes,
                status=BookingStatus.PENDING,
                payment_status=BookingPaymentStatus.UNPAID,
                total_amount=rental_total(vehicle, interval, request.with_driver),
            )
            session.add(booking)
            await session.flush()
            return booking

        booking = await self._write(operation, vehicle_id, interval, f"vehicle:{vehicle_id}")

        metrics_collector.record_booking_created(str(vehicle_id))
        logger.info(
            "Booking created",
            extra={
                "booking_id": str(booking.id),
                "booking_number": booking.booking_number,
                "vehicle_id": str(vehicle_id),
                "customer_id": customer_id,
                "start_date": interval.start.isoformat(),
                "end_date": interval.end.isoformat(),
                "total_amount": booking.total_amount,
            }
        )
        return booking

    async def get_booking(self, claim: Claim, booking_id: UUID) -> Booking:
        """
        Fetch one booking visible to the caller.

        Raises:
            NotFoundError: If the booking does not exist
            AuthorizationError: If the booking belongs to someone else
        """
        async with self.storage.session() as session:
            booking = await self._get_booking(session, booking_id)
        self._ensure_access(claim, booking)
        return booking

    async def list_bookings(self, claim: Claim, filters: ListBookingsRequest) -> tuple[list[Booking], int]:
        """
        List bookings, newest first. Non-staff callers only see their own.

        Returns:
            The requested page and the total number of matches
        """
        conditions = []
        if not claim.is_staff:
            conditions.append(Booking.customer_id == claim.subject_id)
        if filters.status is not None:
            conditions.append(Booking.status == filters.status)
        if filters.vehicle_id is not None:
            conditions.append(Booking.vehicle_id == parse_id(filters.vehicle_id, "vehicle_id"))
        if filters.from_date is not None:
            conditions.append(Booking.end_date > filters.from_date)
        if filters.to_date is not None:
            conditions.append(Booking.start_date < filters.to_date)

        async with self.storage.session() as session:
            total = await session.scalar(select(func.count()).select_from(Booking).where(*conditions))
            result = await session.execute(
                select(Booking)
                .where(*conditions)
                .order_by(Booking.created_at.desc(), Booking.booking_number)
                .offset((filters.page - 1) * filters.limit)
                .limit(filters.limit)
            )
            return list(result.scalars().all()), total or 0

    async def update_booking(self, claim: Claim, booking_id: UUID, request: UpdateBookingRequest) -> Booking:
        """
        Change dates or details of a pending or confirmed booking.

        Availability is re-checked excluding the booking itself. The total is
        recomputed while the booking is unpaid; date changes on a paid booking
        are refused.

        Raises:
            NotFoundError: If the booking does not exist
            AuthorizationError: If the booking belongs to someone else
            InvalidTransitionError: If the booking is no longer modifiable
            BookingPaidError: If dates change on a paid booking
            ValidationError: If the new interval breaks the booking rules
            AvailabilityConflictError: If the new interval is taken
        """
        async with self.storage.session() as session:
            located = await self._get_booking(session, booking_id)
        self._ensure_access(claim, located)

        changes = request.model_dump(exclude_unset=True)
        requested = Interval(
            changes.get("start_date") or located.start_date,
            changes.get("end_date") or located.end_date,
        )

        async def operation(session: AsyncSession) -> Booking:
            booking = await self._get_booking(session, booking_id)
            if BookingStatus(booking.status) not in CANCELLABLE_STATUSES:
                raise BookingLockedError(str(booking.id), booking.status.value)

            interval = Interval(
                changes.get("start_date") or booking.start_date,
                changes.get("end_date") or booking.end_date,
            )

            dates_changed = (interval.start, interval.end) != (booking.start_date, booking.end_date)
            if dates_changed:
                if booking.payment_status == BookingPaymentStatus.PAID:
                    raise BookingPaidError(str(booking.id))
                self.state_machine.validate_interval(interval, self.today())
                vehicle = await self.availability.ensure_available(
                    session, booking.vehicle_id, interval, exclude_booking_id=booking.id
                )
            else:
                vehicle = await VehicleService.get_or_raise(session, booking.vehicle_id)

            for name in CLEARABLE_FIELDS:
                if name in changes:
                    setattr(booking, name, changes[name])
            if changes.get("with_driver") is not None:
                booking.with_driver = changes["with_driver"]
            booking.start_date = interval.start
            booking.end_date = interval.end

            if booking.payment_status == BookingPaymentStatus.UNPAID:
                booking.total_amount = rental_total(vehicle, interval, booking.with_driver)

            await session.flush()
            return booking

        booking = await self._write(
            operation, located.vehicle_id, requested, f"vehicle:{located.vehicle_id}", f"booking:{booking_id}"
        )

        logger.info(
            "Booking updated",
            extra={"booking_id": str(booking_id), "fields": sorted(changes), "total_amount": booking.total_amount}
        )
        return booking

    async def cancel_booking(self, claim: Claim, booking_id: UUID, reason: Optional[str] = None) -> Booking:
        """
        Cancel a booking at least the cancellation window before it starts.

        Raises:
            NotFoundError: If the booking does not exist
            AuthorizationError: If the booking belongs to someone else
            InvalidTransitionError: If the booking is ongoing or terminal
            PolicyViolationError: If the rental starts within the window
        """
        async with self.storage.session() as session:
            located = await self._get_booking(session, booking_id)
        self._ensure_access(claim, located)

        async def operation(session: AsyncSession) -> Booking:
            booking = await self._get_booking(session, booking_id)
            previous = booking.status.value
            self.state_machine.cancel(booking, self.clock(), reason)
            await session.flush()
            metrics_collector.record_booking_transition(previous, BookingStatus.CANCELLED.value)
            return booking

        booking = await self._run_booking_write(operation, booking_id)
        logger.info("Booking cancelled", extra={"booking_id": str(booking_id), "reason": reason})
        return booking

    async def change_status(
        self,
        claim: Claim,
        booking_id: UUID,
        target: BookingStatus,
        reason: Optional[str] = None,
    ) -> Booking:
        """
        Staff status change. Cancellation still honours the cancellation window.
        Confirmation belongs to the payment ledger, so a booking can only be
        moved to ``confirmed`` here once it is paid.

        Raises:
            AuthorizationError: If the caller is not staff
            NotFoundError: If the booking does not exist
            InvalidTransitionError: If the move is not allowed
            PaymentRequiredError: If confirming a booking that is not paid
            PolicyViolationError: If a cancellation is inside the window
        """
        if not claim.is_staff:
            raise AuthorizationError(detail="Only staff can change booking status")

        if target == BookingStatus.CANCELLED:
            return await self.cancel_booking(claim, booking_id, reason)

        async def operation(session: AsyncSession) -> Booking:
            booking = await self._get_booking(session, booking_id)
            if target == BookingStatus.CONFIRMED and booking.payment_status != BookingPaymentStatus.PAID:
                raise PaymentRequiredError(str(booking.id))
            previous = self.state_machine.transition(booking, target)
            await session.flush()
            metrics_collector.record_booking_transition(previous.value, target.value)
            return booking

        return await self._run_booking_write(operation, booking_id)

    async def check_availability(self, vehicle_id: UUID, start_date: date, end_date: date) -> bool:
        """
        Advisory availability read; only ``create_booking`` is authoritative.

        Raises:
            ValidationError: If the interval is empty or reversed
            NotFoundError: If the vehicle does not exist
        """
        if start_date >= end_date:
            raise ValidationError(violations=[{"path": "end", "message": "End date must be after start date"}])
        return await self.availability.check(vehicle_id, Interval(start_date, end_date))

    async def pay(self, claim: Claim, request: CreatePaymentRequest) -> CaptureResult:
        """
        Create a payment for a booking and capture it.

        Raises:
            AuthorizationError: If the booking belongs to someone else
            NotFoundError: If the booking does not exist
            PaymentError: If the method is unsupported or the charge was declined
            PaymentConflictError: If the booking is not payable or already paid
        """
        booking_id = parse_id(request.booking_id, "booking_id")
        await self.get_booking(claim, booking_id)

        payment = await self.ledger.create_payment(booking_id, request.payment_method, request.amount)
        return await self.ledger.capture(payment.id)

    async def refund(self, claim: Claim, payment_id: UUID, amount: Optional[int], reason: Optional[str]) -> Payment:
        if not claim.is_staff:
            raise AuthorizationError(detail="Only staff can refund payments")
        return await self.ledger.refund(payment_id, amount, reason)

    async def get_payment(self, claim: Claim, payment_id: UUID) -> Payment:
        payment = await self.ledger.get_payment(payment_id)
        await self.get_booking(claim, payment.booking_id)
        return payment

    async def list_payments(self, claim: Claim, booking_id: UUID) -> list[Payment]:
        await self.get_booking(claim, booking_id)
        return await self.ledger.list_for_booking(booking_id)

    async def start_due_rentals(self) -> int:
        """
        Move confirmed bookings whose start day has arrived to ``ongoing``.

        Returns:
            Number of bookings started
        """
        today = self.today()
        async with self.storage.session() as session:
            result = await session.execute(
                select(Booking.id).where(
                    Booking.status == BookingStatus.CONFIRMED,
                    Booking.start_date <= today,
                )
            )
            due = list(result.scalars().all())

        started = 0
        for booking_id in due:
            async def operation(session: AsyncSession, booking_id: UUID = booking_id) -> bool:
                booking = await self._get_booking(session, booking_id)
                # Re-check under the lock; staff may have acted in between
                if booking.status != BookingStatus.CONFIRMED:
                    return False
                self.state_machine.transition(booking, BookingStatus.ONGOING)
                await session.flush()
                return True

            if await self._run_booking_write(operation, booking_id):
                metrics_collector.record_booking_transition(BookingStatus.CONFIRMED.value, BookingStatus.ONGOING.value)
                started += 1

        return started

    def _customer_for(self, claim: Claim, requested: Optional[str]) -> str:
        if requested is None or requested == claim.subject_id:
            return claim.subject_id
        if not claim.is_staff:
            raise AuthorizationError(detail="Bookings can only be made for yourself")
        return requested

    @staticmethod
    def _ensure_access(claim: Claim, booking: Booking) -> None:
        if not claim.is_staff and booking.customer_id != claim.subject_id:
            raise AuthorizationError(detail="You can only access your own bookings")

    @staticmethod
    async def _get_booking(session: AsyncSession, booking_id: UUID) -> Booking:
        booking = await session.get(Booking, booking_id)
        if booking is None:
            raise NotFoundError(resource_type="booking", resource_id=str(booking_id))
        return booking

    async def _run_booking_write(self, operation: Callable[[AsyncSession], Awaitable[T]], booking_id: UUID) -> T:
        try:
            return await self.storage.run(operation, f"booking:{booking_id}")
        except StaleDataError:
            raise StaleBookingError()

    async def _write(
        self,
        operation: Callable[[AsyncSession], Awaitable[T]],
        vehicle_id: UUID,
        interval: Interval,
        *lock_keys: str,
    ) -> T:
        try:
            return await self.storage.run(operation, *lock_keys)
        except AvailabilityConflictError:
            metrics_collector.record_availability_conflict(str(vehicle_id))
            raise
        except StaleDataError:
            raise StaleBookingError()
        except IntegrityError as e:
            # The database exclusion constraint caught an overlap the lock did not
            if sqlstate_of(e) != EXCLUSION_VIOLATION_SQLSTATE:
                raise
            metrics_collector.record_availability_conflict(str(vehicle_id))
            logger.warning(
                "Exclusion constraint rejected overlapping booking",
                extra={"vehicle_id": str(vehicle_id), "start_date": interval.start.isoformat()}
            )
            raise AvailabilityConflictError(str(vehicle_id), interval)


def page_count(total: int, limit: int) -> int:
    return math.ceil(total / limit) if total else 0
