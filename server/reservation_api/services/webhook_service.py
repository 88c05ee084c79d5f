"""Payment provider webhook verification and idempotent reconciliation."""

import hashlib
import hmac
import json
import logging
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from ..core.exceptions import NotFoundError, ProblemDetailsException
from ..core.observability import metrics_collector
from ..models.booking import Booking
from ..models.payment import Payment, PaymentStatus
from .booking_state import InvalidTransitionError
from .payment_service import PaymentLedger

logger = logging.getLogger(__name__)

SIGNATURE_HEADER = "X-Payment-Signature"

# Payment status each event moves the payment to
EVENT_TARGETS = {
    "payment.success": PaymentStatus.COMPLETED,
    "payment.failed": PaymentStatus.FAILED,
    "payment.refunded": PaymentStatus.REFUNDED,
}


class WebhookError(ProblemDetailsException):
    """Base exception for rejected webhook deliveries."""

    def __init__(self, detail: str, code: str):
        super().__init__(
            status_code=400,
            title="Webhook Rejected",
            detail=detail,
            type_uri="https://example.com/problems/webhook-rejected",
            extensions={"code": code, "retryable": False},
        )


class BadSignatureError(WebhookError):
    def __init__(self):
        super().__init__("Invalid webhook signature", code="BAD_SIGNATURE")


class MalformedPayloadError(WebhookError):
    def __init__(self, detail: str = "Invalid webhook payload"):
        super().__init__(detail, code="MALFORMED_PAYLOAD")


class UnhandledEventError(WebhookError):
    def __init__(self, event: str):
        super().__init__(f"Unhandled webhook event '{event}'", code="UNHANDLED_EVENT")


@dataclass(frozen=True)
class WebhookEvent:
    """Parsed provider event."""

    event: str
    transaction_reference: str
    error_message: Optional[str] = None
    amount: Optional[int] = None
    reason: Optional[str] = None


@dataclass(frozen=True)
class WebhookOutcome:
    """What applying an event did."""

    event: str
    transaction_reference: str
    payment_status: PaymentStatus
    applied: bool
    booking_confirmed: bool = False


class SignatureVerifier:
    """HMAC-SHA256 over the raw request body, hex encoded."""

    def __init__(self, secret: str):
        self._secret = secret.encode("utf-8")

    def sign(self, body: bytes) -> str:
        return hmac.new(self._secret, body, hashlib.sha256).hexdigest()

    def verify(self, body: bytes, signature: Optional[str]) -> bool:
        if not signature:
            return False
        return hmac.compare_digest(self.sign(body), signature.strip().lower())


def parse_event(body: bytes) -> WebhookEvent:
    """
    Decode a webhook body.

    Raises:
        MalformedPayloadError: If the body is not a JSON object with event and reference
        UnhandledEventError: If the event type is unknown
    """
    try:
        data = json.loads(body)
    except (ValueError, UnicodeDecodeError):
        raise MalformedPayloadError()

    if not isinstance(data, dict):
        raise MalformedPayloadError()

    event = data.get("event")
    reference = data.get("transaction_reference")
    if not event or not reference or not isinstance(event, str) or not isinstance(reference, str):
        raise MalformedPayloadError("Missing required webhook data")

    if event not in EVENT_TARGETS:
        raise UnhandledEventError(event)

    amount = data.get("amount")
    if amount is not None and (isinstance(amount, bool) or not isinstance(amount, int)):
        raise MalformedPayloadError("Webhook amount must be an integer in minor units")

    return WebhookEvent(
        event=event,
        transaction_reference=reference,
        error_message=data.get("error_message"),
        amount=amount,
        reason=data.get("reason"),
    )


class WebhookReconciler:
    """
    Applies provider events to the payment ledger exactly once per state.

    The transaction reference is the idempotency key: an event whose target
    state the payment already holds is acknowledged without side effects, so
    provider redeliveries are harmless.
    """

    def __init__(self, ledger: PaymentLedger, verifier: SignatureVerifier):
        self.ledger = ledger
        self.verifier = verifier

    async def apply(self, raw_body: bytes, signature: Optional[str]) -> WebhookOutcome:
        """
        Verify and apply one webhook delivery.

        Args:
            raw_body: Request body exactly as received
            signature: Value of the signature header

        Returns:
            Description of the applied (or skipped) change

        Raises:
            BadSignatureError: If the signature does not match
            MalformedPayloadError: If the payload cannot be parsed
            UnhandledEventError: If the event type is unknown
            NotFoundError: If no payment carries the reference
            InvalidTransitionError: If a refund arrives for a payment that is still pending
        """
        if not self.verifier.verify(raw_body, signature):
            logger.warning("Webhook signature rejected")
            metrics_collector.record_webhook("unknown", "bad_signature")
            raise BadSignatureError()

        event = parse_event(raw_body)

        located = await self.ledger.find_by_reference(event.transaction_reference)
        if located is None:
            metrics_collector.record_webhook(event.event, "not_found")
            raise NotFoundError(resource_type="payment", resource_id=event.transaction_reference)

        async def operation(session: AsyncSession) -> WebhookOutcome:
            payment = await session.get(Payment, located.id)
            booking = await session.get(Booking, payment.booking_id)
            return self._apply_locked(event, booking, payment)

        outcome = await self.ledger.storage.run(
            operation, *self.ledger.lock_keys(located.booking_id, located.transaction_reference)
        )

        metrics_collector.record_webhook(event.event, "applied" if outcome.applied else "duplicate")
        logger.info(
            "Webhook processed",
            extra={
                "event": event.event,
                "reference": event.transaction_reference,
                "applied": outcome.applied,
                "payment_status": outcome.payment_status.value,
            }
        )
        return outcome

    def _apply_locked(self, event: WebhookEvent, booking: Booking, payment: Payment) -> WebhookOutcome:
        current = PaymentStatus(payment.status)
        target = EVENT_TARGETS[event.event]

        def skipped() -> WebhookOutcome:
            return WebhookOutcome(event.event, event.transaction_reference, current, applied=False)

        if current == target:
            return skipped()

        if current == PaymentStatus.PENDING:
            if target == PaymentStatus.COMPLETED:
                confirmed = self.ledger.settle_completed(booking, payment)
                return WebhookOutcome(
                    event.event, event.transaction_reference, PaymentStatus.COMPLETED,
                    applied=True, booking_confirmed=confirmed
                )
            if target == PaymentStatus.FAILED:
                self.ledger.settle_failed(payment, event.error_message)
                return WebhookOutcome(event.event, event.transaction_reference, PaymentStatus.FAILED, applied=True)
            # Refund before the charge settled; the provider will redeliver
            raise InvalidTransitionError(current.value, target.value, entity="payment")

        if current == PaymentStatus.COMPLETED and target == PaymentStatus.REFUNDED:
            self.ledger.settle_refunded(booking, payment, event.amount, event.reason)
            return WebhookOutcome(event.event, event.transaction_reference, PaymentStatus.REFUNDED, applied=True)

        logger.warning(
            "Ignoring out-of-order webhook for settled payment",
            extra={
                "event": event.event,
                "reference": event.transaction_reference,
                "payment_status": current.value,
            }
        )
        return skipped()

