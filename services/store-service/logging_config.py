"""Structured logging configuration.

Every record is a JSON object with the service identity, the active trace
and span ids and any ``extra={...}`` fields passed by the caller (order ids,
variant ids, provider payment ids).
"""
import logging
import sys
from pythonjsonlogger import jsonlogger
from opentelemetry import trace
from opentelemetry._logs import set_logger_provider
from opentelemetry.exporter.otlp.proto.grpc._log_exporter import OTLPLogExporter
from opentelemetry.sdk._logs import LoggerProvider, LoggingHandler
from opentelemetry.sdk._logs.export import BatchLogRecordProcessor
from opentelemetry.sdk.resources import Resource

from config import (
    API_VERSION,
    ENVIRONMENT,
    OTEL_ENABLED,
    OTEL_EXPORTER_OTLP_ENDPOINT,
    SERVICE_NAME,
)

# Chatty libraries kept at WARNING
QUIET_LOGGERS = ("uvicorn.access", "httpx", "httpcore", "fontTools", "fpdf")


class CustomJsonFormatter(jsonlogger.JsonFormatter):
    """JSON formatter that adds service identity and trace context."""

    def add_fields(self, log_record, record, message_dict):
        super().add_fields(log_record, record, message_dict)

        span = trace.get_current_span()
        ctx = span.get_span_context()
        if ctx.is_valid:
            log_record['trace_id'] = format(ctx.trace_id, '032x')
            log_record['span_id'] = format(ctx.span_id, '016x')

        log_record['service'] = SERVICE_NAME
        log_record['version'] = API_VERSION
        log_record['environment'] = ENVIRONMENT

        if 'message' in log_record:
            log_record['msg'] = log_record.pop('message')


def _otlp_handler(level: int) -> logging.Handler:
    """Handler shipping records to the OpenTelemetry collector."""
    resource = Resource.create({
        "service.name": SERVICE_NAME,
        "service.version": API_VERSION,
        "deployment.environment": ENVIRONMENT
    })
    logger_provider = LoggerProvider(resource=resource)
    logger_provider.add_log_record_processor(
        BatchLogRecordProcessor(OTLPLogExporter(endpoint=OTEL_EXPORTER_OTLP_ENDPOINT, insecure=True))
    )
    set_logger_provider(logger_provider)
    return LoggingHandler(level=level, logger_provider=logger_provider)


def setup_logging(level: int = logging.INFO) -> None:
    """
    Configure the root logger.

    JSON lines go to stdout. With OTEL_ENABLED the same records are also
    exported over OTLP; a failure to set that up leaves stdout logging on.
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(CustomJsonFormatter(
        '%(levelname)s %(name)s %(message)s',
        rename_fields={'levelname': 'level'}
    ))
    root_logger.addHandler(console_handler)

    if OTEL_ENABLED:
        try:
            root_logger.addHandler(_otlp_handler(level))
        except Exception as e:
            logging.warning(f"Failed to configure OTLP logging handler: {e}")

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
