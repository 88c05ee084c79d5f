"""Payment router: payments, refunds and the provider webhook."""

import logging
from uuid import UUID

from fastapi import APIRouter, Request, status
from fastapi.responses import JSONResponse

from ..core.auth import Claim
from ..core.config import Settings
from ..core.dependencies import (
    RequiredCustomer,
    RequiredStaff,
    ReservationServiceDependency,
    SettingsDependency,
    WebhookReconcilerDependency,
)
from ..models.payment import Payment as PaymentModel
from ..models.payment import PaymentStatus
from ..schemas.common import PROBLEM_RESPONSES
from ..schemas.payment import CreatePaymentRequest, Payment, PaymentMethods, PaymentResult, RefundRequest, WebhookAck
from ..services.reservation_service import ReservationService
from ..services.webhook_service import SIGNATURE_HEADER, WebhookReconciler

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/payments", tags=["payments"], responses=PROBLEM_RESPONSES)

_RESULT_MESSAGES = {
    PaymentStatus.COMPLETED: "Payment processed successfully",
    PaymentStatus.PENDING: "Payment is pending confirmation from the provider",
}


def _convert_payment_to_schema(payment_model: PaymentModel) -> Payment:
    """Convert payment model to schema."""
    return Payment(
        id=str(payment_model.id),
        payment_number=payment_model.payment_number,
        booking_id=str(payment_model.booking_id),
        amount=payment_model.amount,
        processing_fee=payment_model.processing_fee,
        tax_amount=payment_model.tax_amount,
        total_amount=payment_model.total_amount,
        currency=payment_model.currency,
        payment_method=payment_model.method,
        status=payment_model.status,
        transaction_reference=payment_model.transaction_reference,
        failure_reason=payment_model.failure_reason,
        refund_amount=payment_model.refund_amount,
        refund_reason=payment_model.refund_reason,
        completed_at=payment_model.completed_at,
        created_at=payment_model.created_at
    )


@router.post("", response_model=PaymentResult, status_code=status.HTTP_201_CREATED)
async def create_payment(
    request: CreatePaymentRequest,
    claim: Claim = RequiredCustomer,
    service: ReservationService = ReservationServiceDependency
) -> PaymentResult:
    """
    Pay for a booking and capture the charge.

    A completed capture confirms a pending booking. When the gateway does not
    answer in time the payment is returned as pending and settled later by the
    provider webhook.
    """
    result = await service.pay(claim, request)
    payment = result.payment
    return PaymentResult(
        message=_RESULT_MESSAGES.get(PaymentStatus(payment.status), "Payment recorded"),
        payment=_convert_payment_to_schema(payment),
        payment_details=result.details
    )


@router.get("/methods", response_model=PaymentMethods)
async def list_payment_methods(settings: Settings = SettingsDependency) -> PaymentMethods:
    """Accepted payment methods."""
    return PaymentMethods(methods=list(settings.payment_methods), currency=settings.currency)


@router.post("/webhook", response_model=WebhookAck)
async def payment_webhook(
    request: Request,
    reconciler: WebhookReconciler = WebhookReconcilerDependency
) -> JSONResponse:
    """
    Payment provider callback.

    Authenticated by an HMAC-SHA256 signature of the raw body in the
    ``X-Payment-Signature`` header rather than a bearer token. Redeliveries
    are acknowledged without further effect.
    """
    raw_body = await request.body()
    outcome = await reconciler.apply(raw_body, request.headers.get(SIGNATURE_HEADER))

    ack = WebhookAck(
        event=outcome.event,
        transaction_reference=outcome.transaction_reference,
        payment_status=outcome.payment_status,
        applied=outcome.applied
    )
    return JSONResponse(status_code=200, content=ack.model_dump(mode="json"))


@router.get("/booking/{booking_id}", response_model=list[Payment])
async def list_booking_payments(
    booking_id: UUID,
    claim: Claim = RequiredCustomer,
    service: ReservationService = ReservationServiceDependency
) -> list[Payment]:
    """Payments recorded against one booking, oldest first."""
    payments = await service.list_payments(claim, booking_id)
    return [_convert_payment_to_schema(payment) for payment in payments]


@router.get("/{payment_id}", response_model=Payment)
async def get_payment(
    payment_id: UUID,
    claim: Claim = RequiredCustomer,
    service: ReservationService = ReservationServiceDependency
) -> Payment:
    """Fetch one payment."""
    payment = await service.get_payment(claim, payment_id)
    return _convert_payment_to_schema(payment)


@router.post("/{payment_id}/refund", response_model=Payment)
async def refund_payment(
    payment_id: UUID,
    request: RefundRequest,
    claim: Claim = RequiredStaff,
    service: ReservationService = ReservationServiceDependency
) -> Payment:
    """Refund a completed payment, fully or in part."""
    payment = await service.refund(claim, payment_id, request.amount, request.reason)
    return _convert_payment_to_schema(payment)
