"""Booking lifecycle: legal transitions, cancellation policy and interval rules."""

import logging
import secrets
import string
from datetime import date, datetime, time, timedelta, timezone

from ..core.exceptions import ConflictError, ValidationError
from ..models.booking import Booking, BookingStatus
from .availability_service import Interval

logger = logging.getLogger(__name__)

TRANSITIONS: dict[BookingStatus, frozenset[BookingStatus]] = {
    BookingStatus.PENDING: frozenset({BookingStatus.CONFIRMED, BookingStatus.CANCELLED, BookingStatus.REJECTED}),
    BookingStatus.CONFIRMED: frozenset({BookingStatus.ONGOING, BookingStatus.CANCELLED, BookingStatus.REJECTED}),
    BookingStatus.ONGOING: frozenset({BookingStatus.COMPLETED, BookingStatus.REJECTED}),
    BookingStatus.COMPLETED: frozenset(),
    BookingStatus.CANCELLED: frozenset(),
    BookingStatus.REJECTED: frozenset(),
}

TERMINAL_STATUSES = frozenset(status for status, targets in TRANSITIONS.items() if not targets)

# Only these may still be cancelled; an ongoing rental has to be completed or rejected
CANCELLABLE_STATUSES = frozenset({BookingStatus.PENDING, BookingStatus.CONFIRMED})

_NUMBER_ALPHABET = string.ascii_uppercase + string.digits


class InvalidTransitionError(ConflictError):
    """Exception when a status change is not allowed from the current status."""

    def __init__(self, current: str, target: str, entity: str = "booking"):
        super().__init__(
            detail=f"Cannot change {entity} status from '{current}' to '{target}'",
            conflicting_resource={"current_status": current, "requested_status": target}
        )
        self.problem_details.update({
            "code": "INVALID_TRANSITION",
            "retryable": False
        })


class PolicyViolationError(ValidationError):
    """Exception when a business policy forbids the request."""

    def __init__(self, detail: str, policy: str):
        super().__init__(detail=detail)
        self.problem_details.update({
            "code": "POLICY_VIOLATION",
            "policy": policy
        })


def rental_start(booking_start: date) -> datetime:
    """Instant a rental begins: 00:00 UTC on the start day."""
    return datetime.combine(booking_start, time.min, tzinfo=timezone.utc)


def generate_booking_number(today: date, length: int = 6) -> str:
    """Human readable booking reference, e.g. ``BK-7QX2LM-250601``."""
    random_part = "".join(secrets.choice(_NUMBER_ALPHABET) for _ in range(length))
    return f"BK-{random_part}-{today:%y%m%d}"


class BookingStateMachine:
    """Applies lifecycle rules to bookings. Stateless apart from its policy knobs."""

    def __init__(
        self,
        cancellation_window_hours: int = 24,
        min_rental_days: int = 1,
        max_rental_days: int = 30,
        advance_booking_days: int = 90,
    ):
        self.cancellation_window = timedelta(hours=cancellation_window_hours)
        self.min_rental_days = min_rental_days
        self.max_rental_days = max_rental_days
        self.advance_booking_days = advance_booking_days

    @staticmethod
    def can_transition(current: BookingStatus, target: BookingStatus) -> bool:
        return target in TRANSITIONS[current]

    def transition(self, booking: Booking, target: BookingStatus) -> BookingStatus:
        """
        Move ``booking`` to ``target`` in place.

        Returns:
            The previous status

        Raises:
            InvalidTransitionError: If the move is not in the transition table
        """
        current = BookingStatus(booking.status)
        if not self.can_transition(current, target):
            raise InvalidTransitionError(current.value, target.value)

        booking.status = target
        logger.info(
            "Booking status changed",
            extra={
                "booking_id": str(booking.id),
                "booking_number": booking.booking_number,
                "from_status": current.value,
                "to_status": target.value,
            }
        )
        return current

    def can_cancel(self, booking: Booking, now: datetime) -> bool:
        """Whether the booking is still cancellable at ``now``."""
        if BookingStatus(booking.status) not in CANCELLABLE_STATUSES:
            return False
        return rental_start(booking.start_date) - now >= self.cancellation_window

    def cancel(self, booking: Booking, now: datetime, reason: str | None = None) -> None:
        """
        Cancel a booking subject to the cancellation window.

        Raises:
            InvalidTransitionError: If the booking is ongoing or terminal
            PolicyViolationError: If the rental starts within the window
        """
        current = BookingStatus(booking.status)
        if current not in CANCELLABLE_STATUSES:
            raise InvalidTransitionError(current.value, BookingStatus.CANCELLED.value)

        if not self.can_cancel(booking, now):
            hours = int(self.cancellation_window.total_seconds() // 3600)
            raise PolicyViolationError(
                detail=f"Bookings can only be cancelled at least {hours} hours before the rental starts",
                policy="cancellation_window"
            )

        self.transition(booking, BookingStatus.CANCELLED)
        booking.cancellation_reason = reason

    def validate_interval(self, interval: Interval, today: date) -> None:
        """
        Check create-time interval rules.

        Raises:
            ValidationError: With one violation per broken rule
        """
        violations = []
        if interval.start >= interval.end:
            violations.append({"path": "end_date", "message": "End date must be after start date"})
        else:
            if interval.days < self.min_rental_days:
                violations.append({
                    "path": "end_date",
                    "message": f"Rental must be at least {self.min_rental_days} day(s)"
                })
            if interval.days > self.max_rental_days:
                violations.append({
                    "path": "end_date",
                    "message": f"Rental cannot exceed {self.max_rental_days} days"
                })

        if interval.start < today:
            violations.append({"path": "start_date", "message": "Start date cannot be in the past"})
        elif interval.start > today + timedelta(days=self.advance_booking_days):
            violations.append({
                "path": "start_date",
                "message": f"Bookings can be made at most {self.advance_booking_days} days in advance"
            })

        if violations:
            raise ValidationError(detail="Invalid rental interval", violations=violations)
