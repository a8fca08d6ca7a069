"""Monitoring and observability setup.

Exemplars are attached automatically to histogram metrics recorded inside
an active trace when the OTLP exporter is used, so a slow payment
confirmation in Grafana links straight to its trace in Tempo.

With OTEL_ENABLED=false no providers are installed and the API falls back
to its no-op tracer and meter; instruments below are still safe to use.
"""
import logging
from opentelemetry import trace, metrics
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from opentelemetry.sdk.metrics import MeterProvider
from opentelemetry.sdk.metrics.export import PeriodicExportingMetricReader
from opentelemetry.sdk.resources import Resource
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.exporter.otlp.proto.grpc.metric_exporter import OTLPMetricExporter
import pyroscope

from config import (
    ENVIRONMENT,
    OTEL_ENABLED,
    OTEL_EXPORTER_OTLP_ENDPOINT,
    PROFILING_ENABLED,
    PYROSCOPE_SERVER,
    SERVICE_NAME
)

logger = logging.getLogger(__name__)


def init_tracing() -> trace.Tracer:
    """
    Initialize OpenTelemetry tracing.

    Returns:
        Tracer instance
    """
    if not OTEL_ENABLED:
        logger.info("Tracing export disabled")
        return trace.get_tracer(__name__)

    resource = Resource.create({"service.name": SERVICE_NAME})

    tracer_provider = TracerProvider(resource=resource)
    otlp_span_exporter = OTLPSpanExporter(
        endpoint=OTEL_EXPORTER_OTLP_ENDPOINT,
        insecure=True
    )
    tracer_provider.add_span_processor(BatchSpanProcessor(otlp_span_exporter))
    trace.set_tracer_provider(tracer_provider)

    logger.info(f"Tracing initialized with endpoint: {OTEL_EXPORTER_OTLP_ENDPOINT}")

    return trace.get_tracer(__name__)


def init_metrics() -> metrics.Meter:
    """
    Initialize OpenTelemetry metrics.

    Returns:
        Meter instance
    """
    if not OTEL_ENABLED:
        logger.info("Metrics export disabled")
        return metrics.get_meter(__name__)

    resource = Resource.create({"service.name": SERVICE_NAME})

    otlp_metric_exporter = OTLPMetricExporter(
        endpoint=OTEL_EXPORTER_OTLP_ENDPOINT,
        insecure=True
    )
    otlp_metric_reader = PeriodicExportingMetricReader(
        otlp_metric_exporter,
        export_interval_millis=5000
    )

    meter_provider = MeterProvider(
        resource=resource,
        metric_readers=[otlp_metric_reader]
    )
    metrics.set_meter_provider(meter_provider)

    logger.info("Metrics initialized with OTLP exporter")

    return metrics.get_meter(__name__)


def init_profiling() -> None:
    """Initialize Pyroscope profiling."""
    if not PROFILING_ENABLED:
        return
    try:
        pyroscope.configure(
            application_name=SERVICE_NAME,
            server_address=PYROSCOPE_SERVER,
            tags={"env": ENVIRONMENT}
        )
        logger.info(f"Profiling initialized with server: {PYROSCOPE_SERVER}")
    except Exception as e:
        logger.warning(f"Failed to initialize profiling: {e}")


# Initialize tracer and meter
tracer = init_tracing()
meter = init_metrics()

# Order metrics
orders_created_counter = meter.create_counter(
    "store.orders.created",
    description="Total number of orders created",
    unit="1"
)

order_amount_histogram = meter.create_histogram(
    "store.orders.amount",
    description="Order total in minor currency units",
    unit="1"
)
# Exemplars: links large/small orders to their creation traces

order_status_changes_counter = meter.create_counter(
    "store.orders.status_changes",
    description="Admin order status transitions",
    unit="1"
)

# Payment metrics
payment_verifications_counter = meter.create_counter(
    "store.payments.verifications",
    description="Payment verification attempts by outcome",
    unit="1"
)

payment_confirmation_duration_histogram = meter.create_histogram(
    "store.payments.confirmation.duration",
    description="Duration of the payment confirmation transaction",
    unit="s"
)
# Exemplars: links slow confirmations (lock waits, retries) to their traces

# Stock ledger metrics
stock_conflicts_counter = meter.create_counter(
    "store.stock.conflicts",
    description="Stock updates retried after a concurrent writer won",
    unit="1"
)

insufficient_stock_counter = meter.create_counter(
    "store.stock.insufficient",
    description="Orders or confirmations rejected for insufficient stock",
    unit="1"
)

# Post-confirmation side effects
side_effect_failures_counter = meter.create_counter(
    "store.side_effects.failures",
    description="Invoice or notification failures after payment confirmation",
    unit="1"
)

# Security monitoring metrics
auth_failures_counter = meter.create_counter(
    "store.auth.failures",
    description="Total number of authentication failures",
    unit="1"
)

auth_attempts_counter = meter.create_counter(
    "store.auth.attempts",
    description="Total number of authentication attempts",
    unit="1"
)

rate_limit_exceeded_counter = meter.create_counter(
    "store.rate_limit.exceeded",
    description="Total number of rate limit violations",
    unit="1"
)

suspicious_activity_counter = meter.create_counter(
    "store.security.suspicious_activity",
    description="Total number of suspicious activity detections",
    unit="1"
)

# External service call metrics
external_payment_duration_histogram = meter.create_histogram(
    "store.external.payment.duration",
    description="Duration of payment provider calls",
    unit="s"
)

external_email_duration_histogram = meter.create_histogram(
    "store.external.email.duration",
    description="Duration of transactional email calls",
    unit="s"
)
