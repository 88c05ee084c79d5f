"""Payment ledger: charges, capture, settlement and refunds."""

import asyncio
import logging
import secrets
import string
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Callable, Iterable, Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.database import utcnow
from ..core.exceptions import ConflictError, InternalServerError, NotFoundError, ProblemDetailsException
from ..core.observability import metrics_collector
from ..core.storage import Storage, unique_value
from ..models.booking import Booking, BookingPaymentStatus, BookingStatus
from ..models.payment import Payment, PaymentStatus
from .booking_state import BookingStateMachine, InvalidTransitionError
from .gateway import GatewayDeclined, GatewayError, PaymentGateway

logger = logging.getLogger(__name__)

DEFAULT_PAYMENT_METHODS = ("QR_CODE", "CREDIT_CARD", "DEBIT_CARD", "GCASH", "PAYMAYA")
PAYABLE_BOOKING_STATUSES = frozenset({BookingStatus.PENDING, BookingStatus.CONFIRMED})

_ONE = Decimal(1)


class PaymentError(ProblemDetailsException):
    """Exception for rejected payment requests."""

    def __init__(self, detail: str, code: str):
        super().__init__(
            status_code=400,
            title="Payment Error",
            detail=detail,
            type_uri="https://example.com/problems/payment-error",
            extensions={"code": code.upper(), "retryable": False},
        )


class InvalidAmountError(PaymentError):
    """Exception when an amount is outside the allowed range."""

    def __init__(self, detail: str):
        super().__init__(detail=detail, code="INVALID_AMOUNT")


class PaymentConflictError(ConflictError):
    """Exception when the booking cannot take another payment."""

    def __init__(self, detail: str, code: str, booking_id: str):
        super().__init__(detail=detail, conflicting_resource={"booking_id": booking_id})
        self.problem_details.update({
            "code": code,
            "retryable": False
        })


@dataclass(frozen=True)
class Charges:
    """Breakdown of a payment in minor units."""

    amount: int
    processing_fee: int
    tax_amount: int
    total_amount: int


@dataclass
class CaptureResult:
    """Outcome of a capture attempt."""

    payment: Payment
    outcome: str
    details: dict[str, Any] = field(default_factory=dict)


def round_half_up(value: Decimal) -> int:
    return int(value.quantize(_ONE, rounding=ROUND_HALF_UP))


def _random_code(length: int, alphabet: str = string.ascii_uppercase + string.digits) -> str:
    return "".join(secrets.choice(alphabet) for _ in range(length))


class PaymentLedger:
    """
    Owns payment records and keeps the booking they pay for consistent.

    Every mutation runs in one ``Storage`` transaction serialized on the
    booking and the payment reference, so a capture and a provider webhook
    for the same payment never interleave.
    """

    def __init__(
        self,
        storage: Storage,
        gateway: PaymentGateway,
        state_machine: BookingStateMachine,
        processing_fee_rate: Decimal = Decimal("0.03"),
        tax_rate: Decimal = Decimal("0.12"),
        currency: str = "PHP",
        payment_methods: Iterable[str] = DEFAULT_PAYMENT_METHODS,
        gateway_timeout_seconds: float = 15.0,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self.storage = storage
        self.gateway = gateway
        self.state_machine = state_machine
        self.processing_fee_rate = Decimal(processing_fee_rate)
        self.tax_rate = Decimal(tax_rate)
        self.currency = currency
        self.payment_methods = tuple(payment_methods)
        self.gateway_timeout = gateway_timeout_seconds
        self.clock = clock

    @staticmethod
    def lock_keys(booking_id: UUID, reference: str) -> tuple[str, str]:
        return f"booking:{booking_id}", f"payment:{reference}"

    def compute_charges(self, amount: int) -> Charges:
        """
        Split ``amount`` into fee and tax, each rounded half-up to a minor unit.

        Raises:
            InvalidAmountError: If ``amount`` is not positive
        """
        if amount <= 0:
            raise InvalidAmountError("Payment amount must be greater than zero")

        processing_fee = round_half_up(Decimal(amount) * self.processing_fee_rate)
        tax_amount = round_half_up(Decimal(amount) * self.tax_rate)
        return Charges(
            amount=amount,
            processing_fee=processing_fee,
            tax_amount=tax_amount,
            total_amount=amount + processing_fee + tax_amount,
        )

    async def create_payment(self, booking_id: UUID, method: str, amount: Optional[int] = None) -> Payment:
        """
        Record a pending payment against a booking.

        Args:
            booking_id: Booking being paid for
            method: One of the configured payment methods
            amount: Base amount in minor units; defaults to the booking total

        Returns:
            The pending payment

        Raises:
            PaymentError: If the method is not supported
            NotFoundError: If the booking does not exist
            PaymentConflictError: If the booking is not payable or already paid
            InvalidAmountError: If the amount is not positive or is below the booking total
        """
        if method not in self.payment_methods:
            raise PaymentError(f"Unsupported payment method '{method}'", code="unsupported_method")

        async def operation(session: AsyncSession) -> Payment:
            booking = await session.get(Booking, booking_id)
            if booking is None:
                raise NotFoundError(resource_type="booking", resource_id=str(booking_id))

            if BookingStatus(booking.status) not in PAYABLE_BOOKING_STATUSES:
                raise PaymentConflictError(
                    detail=f"Booking in status '{booking.status.value}' cannot be paid",
                    code="BOOKING_NOT_PAYABLE",
                    booking_id=str(booking_id)
                )
            if booking.payment_status == BookingPaymentStatus.PAID:
                raise PaymentConflictError(
                    detail="Booking is already paid",
                    code="ALREADY_PAID",
                    booking_id=str(booking_id)
                )

            if amount is not None and amount < booking.total_amount:
                raise InvalidAmountError(
                    f"Payment amount {amount} is below the booking total {booking.total_amount}"
                )

            charges = self.compute_charges(booking.total_amount if amount is None else amount)
            payment = Payment(
                payment_number=await unique_value(session, Payment.payment_number, self._payment_number),
                booking_id=booking.id,
                amount=charges.amount,
                processing_fee=charges.processing_fee,
                tax_amount=charges.tax_amount,
                total_amount=charges.total_amount,
                currency=self.currency,
                method=method,
                status=PaymentStatus.PENDING,
                transaction_reference=await unique_value(
                    session, Payment.transaction_reference, self._transaction_reference
                ),
            )
            session.add(payment)
            await session.flush()
            return payment

        payment = await self.storage.run(operation, f"booking:{booking_id}")

        logger.info(
            "Payment created",
            extra={
                "payment_id": str(payment.id),
                "booking_id": str(booking_id),
                "reference": payment.transaction_reference,
                "method": method,
                "total_amount": payment.total_amount,
            }
        )
        return payment

    async def capture(self, payment_id: UUID) -> CaptureResult:
        """
        Charge a pending payment through the gateway.

        A completed payment is returned unchanged. On success the payment is
        completed, the booking marked paid and, if pending, confirmed, all in
        one transaction. A gateway timeout leaves the payment pending for the
        provider webhook to settle.

        Raises:
            NotFoundError: If the payment does not exist
            InvalidTransitionError: If the payment is failed or refunded
            PaymentConflictError: If the booking stopped being payable; the payment is voided
            PaymentError: If the gateway declined the charge
            InternalServerError: If the gateway failed unexpectedly
        """
        payment = await self.get_payment(payment_id)

        # The gateway must not be called twice, so capture is not retried
        async with self.storage.transaction(*self.lock_keys(payment.booking_id, payment.transaction_reference)) as session:
            result = await self._capture_locked(session, payment_id)

        metrics_collector.record_payment(result.outcome)

        if result.outcome == "void":
            raise PaymentConflictError(
                detail="Booking can no longer be paid; the payment was voided",
                code="BOOKING_NOT_PAYABLE",
                booking_id=str(result.payment.booking_id)
            )
        if result.outcome == "declined":
            raise PaymentError(
                f"Payment processing failed: {result.payment.failure_reason}",
                code="gateway_declined"
            )
        if result.outcome == "error":
            raise InternalServerError(detail="Payment gateway error; the payment remains pending")
        return result

    async def _capture_locked(self, session: AsyncSession, payment_id: UUID) -> CaptureResult:
        payment = await session.get(Payment, payment_id)
        status = PaymentStatus(payment.status)
        if status == PaymentStatus.COMPLETED:
            return CaptureResult(payment=payment, outcome="completed")
        if status != PaymentStatus.PENDING:
            raise InvalidTransitionError(status.value, PaymentStatus.COMPLETED.value, entity="payment")

        booking = await session.get(Booking, payment.booking_id)
        if BookingStatus(booking.status) not in PAYABLE_BOOKING_STATUSES:
            self.settle_failed(payment, "Booking is no longer payable")
            return CaptureResult(payment=payment, outcome="void")
        if booking.payment_status == BookingPaymentStatus.PAID:
            self.settle_failed(payment, "Booking already paid")
            return CaptureResult(payment=payment, outcome="declined")

        log_extra = {"payment_id": str(payment.id), "reference": payment.transaction_reference}
        try:
            receipt = await asyncio.wait_for(
                self.gateway.capture(payment.total_amount, payment.method, payment.transaction_reference),
                timeout=self.gateway_timeout,
            )
        except asyncio.TimeoutError:
            logger.warning("Gateway capture timed out; awaiting webhook", extra=log_extra)
            return CaptureResult(payment=payment, outcome="pending")
        except GatewayDeclined as e:
            logger.info("Gateway declined payment", extra={**log_extra, "reason": e.reason})
            self.settle_failed(payment, e.reason)
            return CaptureResult(payment=payment, outcome="declined")
        except GatewayError as e:
            logger.error("Gateway capture failed", extra={**log_extra, "error": str(e)}, exc_info=e)
            return CaptureResult(payment=payment, outcome="error")

        self.settle_completed(booking, payment, receipt.transaction_id)
        return CaptureResult(payment=payment, outcome="completed", details=receipt.as_details())

    def settle_completed(self, booking: Booking, payment: Payment, gateway_transaction_id: Optional[str] = None) -> bool:
        """
        Complete a pending payment and settle its booking, in place.

        Returns:
            Whether the booking was confirmed as a result
        """
        payment.status = PaymentStatus.COMPLETED
        payment.completed_at = utcnow()
        if gateway_transaction_id:
            payment.gateway_transaction_id = gateway_transaction_id

        if not booking.is_active or booking.payment_status == BookingPaymentStatus.PAID:
            # Money arrived for a booking that can no longer take it; staff reconcile
            logger.warning(
                "Payment completed for a booking that is inactive or already paid",
                extra={
                    "payment_id": str(payment.id),
                    "booking_id": str(booking.id),
                    "booking_status": booking.status.value,
                }
            )
            return False

        booking.payment_status = BookingPaymentStatus.PAID
        if booking.status == BookingStatus.PENDING:
            self.state_machine.transition(booking, BookingStatus.CONFIRMED)
            metrics_collector.record_booking_transition(BookingStatus.PENDING.value, BookingStatus.CONFIRMED.value)
            return True
        return False

    @staticmethod
    def settle_failed(payment: Payment, reason: Optional[str]) -> None:
        payment.status = PaymentStatus.FAILED
        payment.failure_reason = reason or "Payment failed"

    def settle_refunded(self, booking: Booking, payment: Payment, amount: Optional[int], reason: Optional[str]) -> None:
        """
        Refund a completed payment in place. A full refund leaves the booking unpaid.

        Raises:
            InvalidTransitionError: If the payment is not completed
            InvalidAmountError: If the amount is not in ``(0, total_amount]``
        """
        status = PaymentStatus(payment.status)
        if status != PaymentStatus.COMPLETED:
            raise InvalidTransitionError(status.value, PaymentStatus.REFUNDED.value, entity="payment")

        refund_amount = payment.total_amount if amount is None else amount
        if refund_amount <= 0 or refund_amount > payment.total_amount:
            raise InvalidAmountError(
                f"Refund amount must be greater than zero and at most {payment.total_amount}"
            )

        payment.status = PaymentStatus.REFUNDED
        payment.refund_amount = refund_amount
        payment.refund_reason = reason

        if refund_amount == payment.total_amount:
            booking.payment_status = BookingPaymentStatus.UNPAID

        metrics_collector.record_refund(full=refund_amount == payment.total_amount)

    async def refund(self, payment_id: UUID, amount: Optional[int] = None, reason: Optional[str] = None) -> Payment:
        """
        Refund a completed payment. The gateway is not contacted.

        Raises:
            NotFoundError: If the payment does not exist
            InvalidTransitionError: If the payment is not completed
            InvalidAmountError: If the amount is out of range
        """
        located = await self.get_payment(payment_id)

        async def operation(session: AsyncSession) -> Payment:
            payment = await session.get(Payment, payment_id)
            booking = await session.get(Booking, payment.booking_id)
            self.settle_refunded(booking, payment, amount, reason)
            return payment

        payment = await self.storage.run(operation, *self.lock_keys(located.booking_id, located.transaction_reference))

        logger.info(
            "Payment refunded",
            extra={
                "payment_id": str(payment.id),
                "refund_amount": payment.refund_amount,
                "reason": reason,
            }
        )
        return payment

    async def get_payment(self, payment_id: UUID) -> Payment:
        async with self.storage.session() as session:
            payment = await session.get(Payment, payment_id)
        if payment is None:
            raise NotFoundError(resource_type="payment", resource_id=str(payment_id))
        return payment

    async def find_by_reference(self, reference: str) -> Optional[Payment]:
        async with self.storage.session() as session:
            result = await session.execute(
                select(Payment).where(Payment.transaction_reference == reference)
            )
            return result.scalar_one_or_none()

    async def list_for_booking(self, booking_id: UUID) -> list[Payment]:
        async with self.storage.session() as session:
            result = await session.execute(
                select(Payment)
                .where(Payment.booking_id == booking_id)
                .order_by(Payment.created_at, Payment.payment_number)
            )
            return list(result.scalars().all())

    def _payment_number(self) -> str:
        return f"PY-{_random_code(6)}-{self.clock():%y%m%d}"

    @staticmethod
    def _transaction_reference() -> str:
        return f"PMT-{_random_code(16)}"

