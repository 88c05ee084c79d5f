"""Test configuration and fixtures."""

import asyncio
import os
from datetime import date, datetime, timedelta, timezone

# Settings are read at import time; point them at SQLite before importing the app
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("BEARER_TOKEN_SECRET", "test-bearer-secret")
os.environ.setdefault("WEBHOOK_SIGNING_SECRET", "test-webhook-secret")

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker  # noqa: E402

from reservation_api.core.auth import AuthGate, Claim, Role  # noqa: E402
from reservation_api.core.config import Settings  # noqa: E402
from reservation_api.core.database import Base, build_engine  # noqa: E402
from reservation_api.core.storage import Storage  # noqa: E402
from reservation_api.main import create_app  # noqa: E402
from reservation_api.models import *  # noqa: E402,F403 - register all models
from reservation_api.schemas.booking import CreateBookingRequest  # noqa: E402
from reservation_api.services.availability_service import AvailabilityChecker  # noqa: E402
from reservation_api.services.booking_state import BookingStateMachine  # noqa: E402
from reservation_api.services.gateway import GatewayDeclined, GatewayError, GatewayReceipt  # noqa: E402
from reservation_api.services.payment_service import PaymentLedger  # noqa: E402
from reservation_api.services.reservation_service import ReservationService  # noqa: E402
from reservation_api.services.vehicle_service import VehicleService  # noqa: E402
from reservation_api.services.webhook_service import SignatureVerifier, WebhookReconciler  # noqa: E402

BEARER_SECRET = "test-bearer-secret"
WEBHOOK_SECRET = "test-webhook-secret"

DAILY_RATE = 250000
DRIVER_RATE = 150000


class MutableClock:
    """Clock the tests can move; starts at the real current time."""

    def __init__(self, now: datetime | None = None):
        self.now = now or datetime.now(timezone.utc).replace(microsecond=0)

    def __call__(self) -> datetime:
        return self.now

    def set(self, now: datetime) -> None:
        self.now = now

    def advance(self, **delta) -> None:
        self.now += timedelta(**delta)

    def today(self) -> date:
        return self.now.date()


class FakeGateway:
    """Gateway double: ``approve``, ``decline``, ``error`` or ``hang``."""

    def __init__(self, mode: str = "approve"):
        self.mode = mode
        self.calls: list[tuple[int, str, str]] = []

    async def capture(self, amount: int, method: str, reference: str) -> GatewayReceipt:
        self.calls.append((amount, method, reference))
        if self.mode == "decline":
            raise GatewayDeclined("Card declined")
        if self.mode == "error":
            raise GatewayError("Upstream returned 502")
        if self.mode == "hang":
            await asyncio.sleep(60)
        return GatewayReceipt(processor="Fake", transaction_id=f"fake_{len(self.calls)}")


@pytest.fixture
def test_settings() -> Settings:
    return Settings(
        database_url="sqlite+aiosqlite:///:memory:",
        bearer_token_secret=BEARER_SECRET,
        webhook_signing_secret=WEBHOOK_SECRET,
        environment="development",
        gateway_timeout_seconds=0.2,
        storage_timeout_seconds=5.0,
    )


@pytest_asyncio.fixture(scope="function")
async def test_engine(tmp_path):
    """
    Create a file-backed SQLite engine.

    Each session gets its own connection so that concurrent transactions
    behave like separate database clients.
    """
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'reservations.db'}")

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(test_engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(test_engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)


@pytest.fixture
def storage(session_factory) -> Storage:
    return Storage(session_factory, lock_timeout_seconds=5.0, retry_attempts=3)


@pytest.fixture
def clock() -> MutableClock:
    return MutableClock()


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def state_machine() -> BookingStateMachine:
    return BookingStateMachine()


@pytest.fixture
def ledger(storage, gateway, state_machine, clock) -> PaymentLedger:
    return PaymentLedger(storage, gateway, state_machine, gateway_timeout_seconds=0.2, clock=clock)


@pytest.fixture
def reservation_service(storage, state_machine, ledger, clock) -> ReservationService:
    return ReservationService(storage, AvailabilityChecker(storage), state_machine, ledger, clock=clock)


@pytest.fixture
def verifier() -> SignatureVerifier:
    return SignatureVerifier(WEBHOOK_SECRET)


@pytest.fixture
def reconciler(ledger, verifier) -> WebhookReconciler:
    return WebhookReconciler(ledger, verifier)


@pytest_asyncio.fixture
async def vehicle(storage):
    """A bookable vehicle."""
    return await VehicleService(storage).create_vehicle(
        make="Toyota",
        model="Vios",
        license_plate="TST-1001",
        daily_rate=DAILY_RATE,
        with_driver_rate=DRIVER_RATE,
    )


@pytest_asyncio.fixture
async def disabled_vehicle(storage):
    return await VehicleService(storage).create_vehicle(
        make="Honda",
        model="City",
        license_plate="TST-9009",
        daily_rate=DAILY_RATE,
        is_available=False,
    )


@pytest.fixture
def user_claim() -> Claim:
    return Claim(subject_id="user-1", role=Role.USER, expires_at=None)


@pytest.fixture
def other_user_claim() -> Claim:
    return Claim(subject_id="user-2", role=Role.USER, expires_at=None)


@pytest.fixture
def staff_claim() -> Claim:
    return Claim(subject_id="staff-1", role=Role.BOOKING_STAFF, expires_at=None)


@pytest.fixture
def admin_claim() -> Claim:
    return Claim(subject_id="admin-1", role=Role.ADMIN, expires_at=None)


@pytest.fixture
def auth_gate(clock) -> AuthGate:
    return AuthGate(BEARER_SECRET, token_ttl_seconds=3600, clock=clock)


@pytest.fixture
def test_app(test_settings, test_engine, session_factory, gateway, clock):
    """Application wired to the test database, fake gateway and clock."""
    return create_app(
        config=test_settings,
        db_engine=test_engine,
        session_factory=session_factory,
        gateway=gateway,
        clock=clock,
        start_workers=False,
        instrument=False,
    )


@pytest_asyncio.fixture
async def test_client(test_app):
    """HTTP client for the test app."""
    async with AsyncClient(transport=ASGITransport(app=test_app), base_url="http://test") as client:
        yield client


@pytest.fixture
def auth_headers(test_app):
    """Build Authorization headers for a subject and role."""

    def build(subject_id: str = "user-1", role: Role | str = Role.USER) -> dict[str, str]:
        token = test_app.state.auth_gate.issue(subject_id, role)
        return {"Authorization": f"Bearer {token}"}

    return build


@pytest.fixture
def booking_dates(clock):
    """``(start, end)`` a given number of days from today."""

    def build(offset_days: int = 10, length_days: int = 3) -> tuple[date, date]:
        start = clock.today() + timedelta(days=offset_days)
        return start, start + timedelta(days=length_days)

    return build


@pytest.fixture
def make_booking(reservation_service, vehicle, user_claim, booking_dates):
    """Create a pending booking through the reservation service."""
    async def build(offset_days: int = 10, length_days: int = 3, claim: Claim | None = None, **fields):
        start, end = booking_dates(offset_days, length_days)
        request = CreateBookingRequest(
            vehicle_id=str(fields.pop("vehicle_id", vehicle.id)),
            start_date=start,
            end_date=end,
            **fields,
        )
        return await reservation_service.create_booking(claim or user_claim, request)

    return build
