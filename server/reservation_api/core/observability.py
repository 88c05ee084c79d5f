"""Logging, tracing and Prometheus metrics for the reservation API."""

import logging

import structlog
from opentelemetry import metrics, trace
from opentelemetry.exporter.otlp.proto.grpc.metric_exporter import OTLPMetricExporter
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.instrumentation.sqlalchemy import SQLAlchemyInstrumentor
from opentelemetry.sdk.metrics import MeterProvider
from opentelemetry.sdk.metrics.export import PeriodicExportingMetricReader
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from prometheus_client import CollectorRegistry, Counter, Gauge, Histogram, generate_latest

from .config import settings

SERVICE_VERSION = "1.0.0"
OTLP_EXPORT_INTERVAL_MS = 60_000

# A private registry keeps repeated app construction in tests from
# colliding with the process-wide default registry
REGISTRY = CollectorRegistry()

REQUEST_COUNT = Counter(
    "http_requests_total",
    "HTTP requests served",
    ["method", "endpoint", "status_code"],
    registry=REGISTRY,
)
REQUEST_DURATION = Histogram(
    "http_request_duration_seconds",
    "Wall time spent serving an HTTP request",
    ["method", "endpoint"],
    registry=REGISTRY,
)

BOOKINGS_CREATED = Counter(
    "bookings_created_total", "Bookings created", ["vehicle_id"], registry=REGISTRY
)
AVAILABILITY_CONFLICTS = Counter(
    "booking_availability_conflicts_total",
    "Booking attempts rejected because the vehicle was taken",
    ["vehicle_id"],
    registry=REGISTRY,
)
BOOKING_TRANSITIONS = Counter(
    "booking_status_transitions_total",
    "Booking status transitions",
    ["from_status", "to_status"],
    registry=REGISTRY,
)
PAYMENT_OUTCOMES = Counter(
    "payment_captures_total", "Payment capture attempts by outcome", ["outcome"], registry=REGISTRY
)
REFUNDS = Counter("payment_refunds_total", "Refunds recorded", ["kind"], registry=REGISTRY)
WEBHOOK_EVENTS = Counter(
    "payment_webhooks_total",
    "Payment provider webhook deliveries",
    ["event", "outcome"],
    registry=REGISTRY,
)
RENTALS_STARTED = Gauge(
    "rental_start_last_batch",
    "Bookings moved to ongoing by the last rental start run",
    registry=REGISTRY,
)


def _trace_ids(logger, method_name, event_dict):
    """structlog processor stamping the active span's ids onto each event."""
    span = trace.get_current_span()
    if span and span.is_recording():
        ctx = span.get_span_context()
        event_dict["trace_id"] = format(ctx.trace_id, "032x")
        event_dict["span_id"] = format(ctx.span_id, "016x")
    return event_dict


def setup_structured_logging():
    """Console output in debug mode, one JSON object per line otherwise."""
    renderer = structlog.dev.ConsoleRenderer() if settings.debug else structlog.processors.JSONRenderer()
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            _trace_ids,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.add_log_level,
            structlog.processors.StackInfoRenderer(),
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(getattr(logging, settings.log_level)),
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


def _service_resource(app_name: str) -> Resource:
    return Resource.create(
        {
            "service.name": app_name,
            "service.version": SERVICE_VERSION,
            "environment": settings.environment,
        }
    )


def setup_tracing(app_name: str = "vehicle-reservation-api"):
    """Install a tracer provider; spans are exported only when an OTLP endpoint is set."""
    provider = TracerProvider(resource=_service_resource(app_name))
    if settings.otlp_endpoint:
        provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(endpoint=settings.otlp_endpoint)))
    trace.set_tracer_provider(provider)
    return trace.get_tracer(__name__)


def setup_metrics(app_name: str = "vehicle-reservation-api"):
    """Push OpenTelemetry metrics over OTLP when configured; Prometheus scraping works regardless."""
    if settings.otlp_endpoint:
        reader = PeriodicExportingMetricReader(
            exporter=OTLPMetricExporter(endpoint=settings.otlp_endpoint),
            export_interval_millis=OTLP_EXPORT_INTERVAL_MS,
        )
        metrics.set_meter_provider(MeterProvider(resource=_service_resource(app_name), metric_readers=[reader]))
    return metrics.get_meter(__name__)


def instrument_fastapi(app):
    FastAPIInstrumentor.instrument_app(app)


def instrument_sqlalchemy():
    SQLAlchemyInstrumentor().instrument()


class MetricsCollector:
    """Reservation, payment and webhook counters."""

    @staticmethod
    def record_booking_created(vehicle_id: str):
        BOOKINGS_CREATED.labels(vehicle_id=vehicle_id).inc()

    @staticmethod
    def record_availability_conflict(vehicle_id: str):
        AVAILABILITY_CONFLICTS.labels(vehicle_id=vehicle_id).inc()

    @staticmethod
    def record_booking_transition(from_status: str, to_status: str):
        BOOKING_TRANSITIONS.labels(from_status=from_status, to_status=to_status).inc()

    @staticmethod
    def record_payment(outcome: str):
        """``outcome`` is one of completed, pending, declined, void or error."""
        PAYMENT_OUTCOMES.labels(outcome=outcome).inc()

    @staticmethod
    def record_refund(full: bool):
        REFUNDS.labels(kind="full" if full else "partial").inc()

    @staticmethod
    def record_webhook(event: str, outcome: str):
        WEBHOOK_EVENTS.labels(event=event, outcome=outcome).inc()

    @staticmethod
    def set_rentals_started(count: int):
        RENTALS_STARTED.set(count)


metrics_collector = MetricsCollector()


def get_prometheus_metrics() -> bytes:
    """Text exposition of every metric in the API's registry."""
    return generate_latest(REGISTRY)


def get_logger(name: str):
    """structlog logger bound to the service name."""
    return structlog.get_logger(name).bind(service="vehicle-reservation-api")
