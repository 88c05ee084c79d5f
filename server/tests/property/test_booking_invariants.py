"""Property-based tests for booking and payment invariants."""

from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from uuid import uuid4

from hypothesis import assume, given, settings
from hypothesis import strategies as st

from reservation_api.models.booking import Booking, BookingPaymentStatus, BookingStatus
from reservation_api.services.availability_service import Interval, intervals_overlap
from reservation_api.services.booking_state import (
    TERMINAL_STATUSES,
    TRANSITIONS,
    BookingStateMachine,
    InvalidTransitionError,
    rental_start,
)
from reservation_api.services.gateway import SimulatedGateway
from reservation_api.services.payment_service import PaymentLedger

BASE = date(2026, 1, 1)

day_offsets = st.integers(min_value=0, max_value=400)
lengths = st.integers(min_value=1, max_value=60)
statuses = st.sampled_from(list(BookingStatus))


def interval(start: int, length: int) -> Interval:
    begin = BASE + timedelta(days=start)
    return Interval(begin, begin + timedelta(days=length))


def ledger() -> PaymentLedger:
    # Charge arithmetic never touches storage
    return PaymentLedger(storage=None, gateway=SimulatedGateway(), state_machine=BookingStateMachine())


@given(day_offsets, lengths, day_offsets, lengths)
def test_overlap_is_symmetric(s1, l1, s2, l2):
    a, b = interval(s1, l1), interval(s2, l2)

    assert a.overlaps(b) == b.overlaps(a)


@given(day_offsets, lengths, day_offsets, lengths)
def test_overlap_matches_shared_days(s1, l1, s2, l2):
    a, b = interval(s1, l1), interval(s2, l2)
    days_a = {a.start + timedelta(days=i) for i in range(a.days)}
    days_b = {b.start + timedelta(days=i) for i in range(b.days)}

    assert a.overlaps(b) == bool(days_a & days_b)


@given(day_offsets, lengths, lengths)
def test_back_to_back_intervals_never_overlap(start, first, second):
    a = interval(start, first)
    b = interval(start + first, second)

    assert not intervals_overlap(a.start, a.end, b.start, b.end)


@given(day_offsets, lengths)
def test_interval_overlaps_itself(start, length):
    a = interval(start, length)

    assert a.overlaps(a)


@settings(max_examples=1000)
@given(st.integers(min_value=1, max_value=10**12))
def test_charges_compose_to_total(amount):
    charges = ledger().compute_charges(amount)

    assert charges.total_amount == charges.amount + charges.processing_fee + charges.tax_amount
    assert abs(Decimal(charges.processing_fee) - Decimal(amount) * Decimal("0.03")) <= Decimal("0.5")
    assert abs(Decimal(charges.tax_amount) - Decimal(amount) * Decimal("0.12")) <= Decimal("0.5")
    assert charges.processing_fee >= 0 and charges.tax_amount >= 0


@given(st.integers(min_value=1, max_value=10**9), st.integers(min_value=1, max_value=10**9))
def test_charges_are_monotonic(a, b):
    assume(a < b)
    charges = ledger()

    assert charges.compute_charges(a).total_amount <= charges.compute_charges(b).total_amount


def make_booking(status: BookingStatus) -> Booking:
    return Booking(
        id=uuid4(),
        booking_number="BK-PROP01-260101",
        vehicle_id=uuid4(),
        customer_id="user-1",
        start_date=BASE,
        end_date=BASE + timedelta(days=1),
        status=status,
        payment_status=BookingPaymentStatus.UNPAID,
        total_amount=0,
    )


@given(statuses, statuses)
def test_transition_follows_table(current, target):
    booking = make_booking(current)
    machine = BookingStateMachine()

    try:
        machine.transition(booking, target)
    except InvalidTransitionError:
        assert target not in TRANSITIONS[current]
        assert booking.status == current
    else:
        assert target in TRANSITIONS[current]
        assert booking.status == target


@given(st.lists(statuses, max_size=10))
def test_terminal_statuses_are_absorbing(path):
    booking = make_booking(BookingStatus.PENDING)
    machine = BookingStateMachine()

    for target in path:
        was_terminal = booking.status in TERMINAL_STATUSES
        before = booking.status
        try:
            machine.transition(booking, target)
        except InvalidTransitionError:
            pass
        if was_terminal:
            assert booking.status == before


@given(st.integers(min_value=-72 * 3600, max_value=72 * 3600))
def test_cancellation_window_boundary(seconds_before_start):
    machine = BookingStateMachine(cancellation_window_hours=24)
    booking = make_booking(BookingStatus.CONFIRMED)
    now = rental_start(booking.start_date) - timedelta(seconds=seconds_before_start)

    assert machine.can_cancel(booking, now) == (seconds_before_start >= 24 * 3600)


def test_rental_start_is_utc():
    assert rental_start(BASE).tzinfo == timezone.utc
    assert rental_start(BASE) == datetime(2026, 1, 1, tzinfo=timezone.utc)
