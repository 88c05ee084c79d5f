"""Models module exporting all database models."""

from .booking import INACTIVE_STATUSES, Booking, BookingPaymentStatus, BookingStatus
from .payment import Payment, PaymentStatus
from .vehicle import Vehicle

__all__ = [
    # Resource
    "Vehicle",

    # Booking entities
    "Booking",
    "BookingStatus",
    "BookingPaymentStatus",
    "INACTIVE_STATUSES",

    # Payment entities
    "Payment",
    "PaymentStatus",
]
