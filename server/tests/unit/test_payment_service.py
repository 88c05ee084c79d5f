"""Unit tests for the payment ledger."""

from decimal import Decimal
from uuid import uuid4

import pytest

from reservation_api.core.exceptions import InternalServerError, NotFoundError
from reservation_api.models.booking import BookingPaymentStatus, BookingStatus
from reservation_api.models.payment import PaymentStatus
from reservation_api.services.booking_state import InvalidTransitionError
from reservation_api.services.payment_service import (
    InvalidAmountError,
    PaymentConflictError,
    PaymentError,
    round_half_up,
)


@pytest.mark.parametrize("amount,fee,tax,total", [
    (750000, 22500, 90000, 862500),
    (1, 0, 0, 1),
    (17, 1, 2, 20),
    (50, 2, 6, 58),
    (25, 1, 3, 29),
])
def test_compute_charges(ledger, amount, fee, tax, total):
    charges = ledger.compute_charges(amount)

    assert (charges.processing_fee, charges.tax_amount, charges.total_amount) == (fee, tax, total)


@pytest.mark.parametrize("amount", [0, -100])
def test_compute_charges_rejects_non_positive(ledger, amount):
    with pytest.raises(InvalidAmountError) as exc_info:
        ledger.compute_charges(amount)
    assert exc_info.value.code == "INVALID_AMOUNT"


def test_round_half_up():
    assert round_half_up(Decimal("0.5")) == 1
    assert round_half_up(Decimal("2.5")) == 3
    assert round_half_up(Decimal("2.49")) == 2


async def test_create_payment_defaults_to_booking_total(ledger, make_booking):
    booking = await make_booking()

    payment = await ledger.create_payment(booking.id, "GCASH")

    assert payment.status == PaymentStatus.PENDING
    assert payment.amount == booking.total_amount == 750000
    assert payment.total_amount == 862500
    assert payment.currency == "PHP"
    assert payment.transaction_reference.startswith("PMT-")
    assert len(payment.transaction_reference) == 20
    assert payment.payment_number.startswith("PY-")


async def test_create_payment_unsupported_method(ledger, make_booking):
    booking = await make_booking()

    with pytest.raises(PaymentError) as exc_info:
        await ledger.create_payment(booking.id, "BITCOIN")

    assert exc_info.value.status_code == 400
    assert exc_info.value.code == "UNSUPPORTED_METHOD"


async def test_create_payment_for_unknown_booking(ledger):
    with pytest.raises(NotFoundError):
        await ledger.create_payment(uuid4(), "GCASH")


async def test_capture_confirms_pending_booking(ledger, reservation_service, staff_claim, make_booking, gateway):
    booking = await make_booking()
    payment = await ledger.create_payment(booking.id, "CREDIT_CARD")

    result = await ledger.capture(payment.id)

    assert result.outcome == "completed"
    assert result.payment.status == PaymentStatus.COMPLETED
    assert result.payment.completed_at is not None
    assert result.payment.gateway_transaction_id == "fake_1"
    assert result.details["processor"] == "Fake"
    assert gateway.calls == [(862500, "CREDIT_CARD", payment.transaction_reference)]

    stored = await reservation_service.get_booking(staff_claim, booking.id)
    assert stored.status == BookingStatus.CONFIRMED
    assert stored.payment_status == BookingPaymentStatus.PAID


async def test_capture_of_completed_payment_does_not_charge_again(ledger, make_booking, gateway):
    booking = await make_booking()
    payment = await ledger.create_payment(booking.id, "GCASH")
    await ledger.capture(payment.id)

    again = await ledger.capture(payment.id)

    assert again.outcome == "completed"
    assert len(gateway.calls) == 1


async def test_declined_capture_persists_failure(ledger, reservation_service, staff_claim, make_booking, gateway):
    gateway.mode = "decline"
    booking = await make_booking()
    payment = await ledger.create_payment(booking.id, "DEBIT_CARD")

    with pytest.raises(PaymentError) as exc_info:
        await ledger.capture(payment.id)

    assert exc_info.value.code == "GATEWAY_DECLINED"
    failed = await ledger.get_payment(payment.id)
    assert failed.status == PaymentStatus.FAILED
    assert failed.failure_reason == "Card declined"

    stored = await reservation_service.get_booking(staff_claim, booking.id)
    assert stored.status == BookingStatus.PENDING
    assert stored.payment_status == BookingPaymentStatus.UNPAID


async def test_gateway_error_leaves_payment_pending(ledger, make_booking, gateway):
    gateway.mode = "error"
    booking = await make_booking()
    payment = await ledger.create_payment(booking.id, "PAYMAYA")

    with pytest.raises(InternalServerError):
        await ledger.capture(payment.id)

    assert (await ledger.get_payment(payment.id)).status == PaymentStatus.PENDING


async def test_gateway_timeout_leaves_payment_pending(ledger, reservation_service, staff_claim, make_booking, gateway):
    gateway.mode = "hang"
    booking = await make_booking()
    payment = await ledger.create_payment(booking.id, "QR_CODE")

    result = await ledger.capture(payment.id)

    assert result.outcome == "pending"
    assert (await ledger.get_payment(payment.id)).status == PaymentStatus.PENDING
    stored = await reservation_service.get_booking(staff_claim, booking.id)
    assert stored.payment_status == BookingPaymentStatus.UNPAID


async def test_capture_of_failed_payment_is_invalid(ledger, make_booking, gateway):
    gateway.mode = "decline"
    booking = await make_booking()
    payment = await ledger.create_payment(booking.id, "GCASH")
    with pytest.raises(PaymentError):
        await ledger.capture(payment.id)

    gateway.mode = "approve"
    with pytest.raises(InvalidTransitionError):
        await ledger.capture(payment.id)


async def test_paid_booking_refuses_new_payment(ledger, make_booking):
    booking = await make_booking()
    payment = await ledger.create_payment(booking.id, "GCASH")
    await ledger.capture(payment.id)

    with pytest.raises(PaymentConflictError) as exc_info:
        await ledger.create_payment(booking.id, "GCASH")

    assert exc_info.value.status_code == 409
    assert exc_info.value.code == "ALREADY_PAID"


async def test_second_pending_payment_fails_once_booking_is_paid(ledger, make_booking, gateway):
    booking = await make_booking()
    first = await ledger.create_payment(booking.id, "GCASH")
    second = await ledger.create_payment(booking.id, "PAYMAYA")
    await ledger.capture(first.id)

    with pytest.raises(PaymentError):
        await ledger.capture(second.id)

    assert (await ledger.get_payment(second.id)).status == PaymentStatus.FAILED
    assert len(gateway.calls) == 1


async def test_cancelled_booking_is_not_payable(ledger, reservation_service, user_claim, make_booking):
    booking = await make_booking()
    await reservation_service.cancel_booking(user_claim, booking.id)

    with pytest.raises(PaymentConflictError) as exc_info:
        await ledger.create_payment(booking.id, "GCASH")
    assert exc_info.value.code == "BOOKING_NOT_PAYABLE"


async def test_full_refund_marks_booking_unpaid(ledger, reservation_service, staff_claim, make_booking):
    booking = await make_booking()
    payment = await ledger.create_payment(booking.id, "GCASH")
    await ledger.capture(payment.id)

    refunded = await ledger.refund(payment.id, reason="customer request")

    assert refunded.status == PaymentStatus.REFUNDED
    assert refunded.refund_amount == refunded.total_amount
    assert refunded.refund_reason == "customer request"
    stored = await reservation_service.get_booking(staff_claim, booking.id)
    assert stored.payment_status == BookingPaymentStatus.UNPAID
    assert stored.status == BookingStatus.CONFIRMED


async def test_partial_refund_keeps_booking_paid(ledger, reservation_service, staff_claim, make_booking):
    booking = await make_booking()
    payment = await ledger.create_payment(booking.id, "GCASH")
    await ledger.capture(payment.id)

    refunded = await ledger.refund(payment.id, amount=100000)

    assert refunded.refund_amount == 100000
    stored = await reservation_service.get_booking(staff_claim, booking.id)
    assert stored.payment_status == BookingPaymentStatus.PAID


@pytest.mark.parametrize("amount", [0, 862501])
async def test_refund_amount_is_bounded(ledger, make_booking, amount):
    booking = await make_booking()
    payment = await ledger.create_payment(booking.id, "GCASH")
    await ledger.capture(payment.id)

    with pytest.raises(InvalidAmountError):
        await ledger.refund(payment.id, amount=amount)

    assert (await ledger.get_payment(payment.id)).status == PaymentStatus.COMPLETED


async def test_refund_of_pending_payment_is_invalid(ledger, make_booking):
    booking = await make_booking()
    payment = await ledger.create_payment(booking.id, "GCASH")

    with pytest.raises(InvalidTransitionError):
        await ledger.refund(payment.id)


async def test_list_for_booking(ledger, make_booking, gateway):
    booking = await make_booking()
    gateway.mode = "decline"
    first = await ledger.create_payment(booking.id, "GCASH")
    with pytest.raises(PaymentError):
        await ledger.capture(first.id)
    gateway.mode = "approve"
    second = await ledger.create_payment(booking.id, "GCASH")
    await ledger.capture(second.id)

    payments = await ledger.list_for_booking(booking.id)

    assert {p.id for p in payments} == {first.id, second.id}
    assert await ledger.find_by_reference(second.transaction_reference) is not None
    assert await ledger.find_by_reference("PMT-UNKNOWN") is None


async def test_amount_below_booking_total_is_rejected(ledger, make_booking):
    booking = await make_booking()

    with pytest.raises(InvalidAmountError) as exc_info:
        await ledger.create_payment(booking.id, "GCASH", amount=1)

    assert exc_info.value.code == "INVALID_AMOUNT"
    assert await ledger.list_for_booking(booking.id) == []


async def test_amount_covering_booking_total_is_accepted(ledger, make_booking):
    booking = await make_booking()

    payment = await ledger.create_payment(booking.id, "GCASH", amount=booking.total_amount)

    assert payment.amount == booking.total_amount


async def test_capture_after_cancellation_voids_payment(ledger, reservation_service, user_claim, staff_claim, make_booking, gateway):
    booking = await make_booking()
    payment = await ledger.create_payment(booking.id, "GCASH")
    await reservation_service.cancel_booking(user_claim, booking.id)

    with pytest.raises(PaymentConflictError) as exc_info:
        await ledger.capture(payment.id)

    assert exc_info.value.code == "BOOKING_NOT_PAYABLE"
    assert gateway.calls == []
    voided = await ledger.get_payment(payment.id)
    assert voided.status == PaymentStatus.FAILED
    assert voided.failure_reason == "Booking is no longer payable"
    stored = await reservation_service.get_booking(staff_claim, booking.id)
    assert stored.status == BookingStatus.CANCELLED
    assert stored.payment_status == BookingPaymentStatus.UNPAID


async def test_capture_after_rejection_voids_payment(ledger, reservation_service, staff_claim, make_booking, gateway):
    booking = await make_booking()
    payment = await ledger.create_payment(booking.id, "CREDIT_CARD")
    await reservation_service.change_status(staff_claim, booking.id, BookingStatus.REJECTED)

    with pytest.raises(PaymentConflictError):
        await ledger.capture(payment.id)

    assert gateway.calls == []
    assert (await ledger.get_payment(payment.id)).status == PaymentStatus.FAILED
    assert (await reservation_service.get_booking(staff_claim, booking.id)).status == BookingStatus.REJECTED
