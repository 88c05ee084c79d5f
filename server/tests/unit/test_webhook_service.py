"""Unit tests for webhook signature checks and reconciliation."""

import json

import pytest

from reservation_api.core.exceptions import NotFoundError
from reservation_api.models.booking import BookingPaymentStatus, BookingStatus
from reservation_api.models.payment import PaymentStatus
from reservation_api.services.booking_state import InvalidTransitionError
from reservation_api.services.webhook_service import (
    BadSignatureError,
    MalformedPayloadError,
    SignatureVerifier,
    UnhandledEventError,
    parse_event,
)


def encode(**payload) -> bytes:
    return json.dumps(payload).encode("utf-8")


@pytest.fixture
def deliver(reconciler, verifier):
    """Sign and apply a webhook body."""

    async def send(**payload):
        body = encode(**payload)
        return await reconciler.apply(body, verifier.sign(body))

    return send


@pytest.fixture
def pending_payment(ledger, make_booking):
    async def build():
        booking = await make_booking()
        return booking, await ledger.create_payment(booking.id, "GCASH")

    return build


def test_signature_round_trip():
    verifier = SignatureVerifier("secret")
    body = b'{"event":"payment.success"}'

    signature = verifier.sign(body)

    assert len(signature) == 64
    assert verifier.verify(body, signature)
    assert verifier.verify(body, signature.upper())
    assert not verifier.verify(body + b" ", signature)
    assert not verifier.verify(body, None)
    assert not SignatureVerifier("other").verify(body, signature)


@pytest.mark.parametrize("body,error", [
    (b"not json", MalformedPayloadError),
    (b"[1, 2]", MalformedPayloadError),
    (encode(event="payment.success"), MalformedPayloadError),
    (encode(transaction_reference="PMT-1"), MalformedPayloadError),
    (encode(event="payment.success", transaction_reference="PMT-1", amount="10"), MalformedPayloadError),
    (encode(event="payment.disputed", transaction_reference="PMT-1"), UnhandledEventError),
])
def test_parse_event_rejects(body, error):
    with pytest.raises(error) as exc_info:
        parse_event(body)
    assert exc_info.value.status_code == 400


def test_parse_event():
    event = parse_event(encode(event="payment.refunded", transaction_reference="PMT-1", amount=500, reason="dup"))

    assert event.event == "payment.refunded"
    assert event.transaction_reference == "PMT-1"
    assert event.amount == 500
    assert event.reason == "dup"


async def test_bad_signature_is_rejected(reconciler, pending_payment, ledger):
    _, payment = await pending_payment()
    body = encode(event="payment.success", transaction_reference=payment.transaction_reference)

    with pytest.raises(BadSignatureError) as exc_info:
        await reconciler.apply(body, "0" * 64)

    assert exc_info.value.code == "BAD_SIGNATURE"
    assert (await ledger.get_payment(payment.id)).status == PaymentStatus.PENDING


async def test_unknown_reference(deliver):
    with pytest.raises(NotFoundError):
        await deliver(event="payment.success", transaction_reference="PMT-DOESNOTEXIST00")


async def test_success_completes_payment_and_confirms_booking(
    deliver, pending_payment, ledger, reservation_service, staff_claim
):
    booking, payment = await pending_payment()

    outcome = await deliver(event="payment.success", transaction_reference=payment.transaction_reference)

    assert outcome.applied
    assert outcome.booking_confirmed
    assert outcome.payment_status == PaymentStatus.COMPLETED
    assert (await ledger.get_payment(payment.id)).status == PaymentStatus.COMPLETED
    stored = await reservation_service.get_booking(staff_claim, booking.id)
    assert stored.status == BookingStatus.CONFIRMED
    assert stored.payment_status == BookingPaymentStatus.PAID


async def test_redelivery_is_acknowledged_without_effect(deliver, pending_payment, reservation_service, staff_claim):
    booking, payment = await pending_payment()
    await deliver(event="payment.success", transaction_reference=payment.transaction_reference)
    before = await reservation_service.get_booking(staff_claim, booking.id)

    outcome = await deliver(event="payment.success", transaction_reference=payment.transaction_reference)

    assert not outcome.applied
    assert outcome.payment_status == PaymentStatus.COMPLETED
    after = await reservation_service.get_booking(staff_claim, booking.id)
    assert after.version == before.version


async def test_failed_event_marks_payment_failed(deliver, pending_payment, ledger, reservation_service, staff_claim):
    booking, payment = await pending_payment()

    outcome = await deliver(
        event="payment.failed",
        transaction_reference=payment.transaction_reference,
        error_message="Insufficient funds",
    )

    assert outcome.applied
    failed = await ledger.get_payment(payment.id)
    assert failed.status == PaymentStatus.FAILED
    assert failed.failure_reason == "Insufficient funds"
    stored = await reservation_service.get_booking(staff_claim, booking.id)
    assert stored.status == BookingStatus.PENDING


async def test_late_failure_after_success_is_ignored(deliver, pending_payment, ledger):
    _, payment = await pending_payment()
    await deliver(event="payment.success", transaction_reference=payment.transaction_reference)

    outcome = await deliver(event="payment.failed", transaction_reference=payment.transaction_reference)

    assert not outcome.applied
    assert (await ledger.get_payment(payment.id)).status == PaymentStatus.COMPLETED


async def test_refund_of_pending_payment_is_a_conflict(deliver, pending_payment, ledger):
    _, payment = await pending_payment()

    with pytest.raises(InvalidTransitionError):
        await deliver(event="payment.refunded", transaction_reference=payment.transaction_reference)

    assert (await ledger.get_payment(payment.id)).status == PaymentStatus.PENDING


async def test_refund_event_after_success(deliver, pending_payment, ledger, reservation_service, staff_claim):
    booking, payment = await pending_payment()
    await deliver(event="payment.success", transaction_reference=payment.transaction_reference)

    outcome = await deliver(event="payment.refunded", transaction_reference=payment.transaction_reference)

    assert outcome.applied
    refunded = await ledger.get_payment(payment.id)
    assert refunded.status == PaymentStatus.REFUNDED
    assert refunded.refund_amount == refunded.total_amount
    stored = await reservation_service.get_booking(staff_claim, booking.id)
    assert stored.payment_status == BookingPaymentStatus.UNPAID

    again = await deliver(event="payment.refunded", transaction_reference=payment.transaction_reference)
    assert not again.applied


async def test_success_for_cancelled_booking_does_not_revive_it(
    deliver, pending_payment, ledger, reservation_service, user_claim, staff_claim
):
    booking, payment = await pending_payment()
    await reservation_service.cancel_booking(user_claim, booking.id)

    outcome = await deliver(event="payment.success", transaction_reference=payment.transaction_reference)

    assert outcome.applied
    assert not outcome.booking_confirmed
    stored = await reservation_service.get_booking(staff_claim, booking.id)
    assert stored.status == BookingStatus.CANCELLED
    assert stored.payment_status == BookingPaymentStatus.UNPAID
