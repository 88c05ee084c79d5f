"""Service layer package."""

from .availability_service import AvailabilityChecker, AvailabilityConflictError, Interval, intervals_overlap
from .booking_state import BookingStateMachine, InvalidTransitionError, PolicyViolationError
from .gateway import GatewayDeclined, GatewayError, GatewayReceipt, PaymentGateway, SimulatedGateway
from .payment_service import InvalidAmountError, PaymentError, PaymentLedger
from .reservation_service import ReservationService
from .vehicle_service import VehicleService
from .webhook_service import SignatureVerifier, WebhookError, WebhookReconciler

__all__ = [
    "AvailabilityChecker",
    "AvailabilityConflictError",
    "BookingStateMachine",
    "GatewayDeclined",
    "GatewayError",
    "GatewayReceipt",
    "Interval",
    "InvalidAmountError",
    "InvalidTransitionError",
    "PaymentError",
    "PaymentGateway",
    "PaymentLedger",
    "PolicyViolationError",
    "ReservationService",
    "SignatureVerifier",
    "SimulatedGateway",
    "VehicleService",
    "WebhookError",
    "WebhookReconciler",
    "intervals_overlap",
]
