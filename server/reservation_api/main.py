"""FastAPI application initialization and configuration."""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Callable, Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from .core.auth import AuthGate
from .core.config import Settings, settings as default_settings
from .core.database import async_session_factory, engine as default_engine, init_db
from .core.exceptions import register_exception_handlers
from .core.middleware import setup_middleware
from .core.observability import (
    instrument_fastapi,
    instrument_sqlalchemy,
    setup_metrics,
    setup_structured_logging,
    setup_tracing,
)
from .core.storage import Storage
from .routers import booking, health, metrics, payment, vehicle
from .services.availability_service import AvailabilityChecker
from .services.booking_state import BookingStateMachine
from .services.gateway import PaymentGateway, SimulatedGateway
from .services.payment_service import PaymentLedger
from .services.reservation_service import ReservationService
from .services.webhook_service import SignatureVerifier, WebhookReconciler
from .workers.manager import WorkerManager
from .workers.rental_start_worker import RentalStartWorker

logger = logging.getLogger(__name__)

SERVICE_NAME = "vehicle-reservation-api"


def configure_logging(config: Settings) -> None:
    """Configure structlog and stdlib logging."""
    setup_structured_logging()
    logging.basicConfig(
        level=getattr(logging, config.log_level),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def build_services(
    app: FastAPI,
    config: Settings,
    session_factory: async_sessionmaker[AsyncSession],
    gateway: PaymentGateway,
    clock: Callable[[], datetime],
) -> None:
    """Wire the storage handle and services onto ``app.state``."""
    storage = Storage(
        session_factory,
        lock_timeout_seconds=config.storage_timeout_seconds,
        retry_attempts=config.storage_retry_attempts,
    )
    state_machine = BookingStateMachine(
        cancellation_window_hours=config.cancellation_window_hours,
        min_rental_days=config.min_rental_days,
        max_rental_days=config.max_rental_days,
        advance_booking_days=config.advance_booking_days,
    )
    ledger = PaymentLedger(
        storage,
        gateway,
        state_machine,
        processing_fee_rate=config.processing_fee_rate,
        tax_rate=config.tax_rate,
        currency=config.currency,
        payment_methods=config.payment_methods,
        gateway_timeout_seconds=config.gateway_timeout_seconds,
        clock=clock,
    )
    reservation_service = ReservationService(
        storage,
        AvailabilityChecker(storage),
        state_machine,
        ledger,
        clock=clock,
    )

    app.state.settings = config
    app.state.storage = storage
    app.state.auth_gate = AuthGate(config.bearer_token_secret, config.token_ttl_seconds, clock=clock)
    app.state.ledger = ledger
    app.state.reservation_service = reservation_service
    app.state.webhook_reconciler = WebhookReconciler(ledger, SignatureVerifier(config.webhook_signing_secret))
    app.state.worker_manager = WorkerManager([
        RentalStartWorker(reservation_service, interval_seconds=config.rental_start_interval_seconds),
    ])


def create_app(
    config: Optional[Settings] = None,
    db_engine: Optional[AsyncEngine] = None,
    session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
    gateway: Optional[PaymentGateway] = None,
    clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    start_workers: bool = True,
    instrument: bool = True,
) -> FastAPI:
    """
    Create and configure the FastAPI application.

    Args:
        config: Settings; defaults to the environment-derived settings
        db_engine: Engine used to create tables at startup
        session_factory: Session factory behind the storage handle
        gateway: Payment gateway; defaults to the simulated gateway
        clock: Source of the current time for tokens, policies and numbering
        start_workers: Whether the lifespan starts background workers
        instrument: Whether to install OpenTelemetry instrumentation

    Returns:
        FastAPI: Configured application instance
    """
    config = config or default_settings
    db_engine = db_engine or default_engine

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        logger.info("Starting application", extra={"environment": config.environment})

        if instrument:
            setup_tracing(SERVICE_NAME)
            setup_metrics(SERVICE_NAME)
            instrument_sqlalchemy()

        await init_db(db_engine)
        if start_workers:
            await app.state.worker_manager.start_all()

        logger.info("Application startup complete")
        yield

        await app.state.worker_manager.stop_all()
        await db_engine.dispose()
        logger.info("Application shutdown complete")

    app = FastAPI(
        title="Vehicle Reservation API",
        description="Vehicle reservations without double booking, with a payment ledger and provider webhooks",
        version="1.0.0",
        debug=config.debug,
        lifespan=lifespan,
        docs_url="/docs" if config.debug else None,
        redoc_url="/redoc" if config.debug else None,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        allow_headers=["*"],
        expose_headers=["X-Request-ID", "traceparent", "tracestate"],
    )
    setup_middleware(app, enable_logging=True)

    if instrument:
        instrument_fastapi(app)

    register_exception_handlers(app)

    build_services(
        app,
        config,
        session_factory or async_session_factory,
        gateway or SimulatedGateway(),
        clock,
    )

    app.include_router(health.router)
    app.include_router(metrics.router)
    app.include_router(vehicle.router)
    app.include_router(booking.router)
    app.include_router(payment.router)

    return app


configure_logging(default_settings)

# Create the application instance
app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "reservation_api.main:app",
        host=default_settings.host,
        port=default_settings.port,
        reload=default_settings.debug,
        log_level=default_settings.log_level.lower(),
        access_log=True,
    )
