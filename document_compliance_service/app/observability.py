import logging
from typing import List, Optional, Tuple

from opentelemetry import metrics, trace
from opentelemetry.context import Context
from opentelemetry.exporter.otlp.proto.grpc.metric_exporter import OTLPMetricExporter
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.sdk.metrics import MeterProvider
from opentelemetry.sdk.metrics.export import ConsoleMetricExporter, MetricReader, PeriodicExportingMetricReader
from opentelemetry.sdk.resources import SERVICE_NAME as ResourceAttributesServiceName, Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, ConsoleSpanExporter
from opentelemetry.trace.propagation.tracecontext import TraceContextTextMapPropagator
from pythonjsonlogger import jsonlogger

from document_compliance_service.app.config import settings

logger = logging.getLogger("document_compliance_service")

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s %(module)s %(funcName)s %(lineno)d %(otelTraceID)s %(otelSpanID)s %(message)s"
METRIC_EXPORT_INTERVAL_MS = 5000

_propagator = TraceContextTextMapPropagator()


class TraceContextLogFilter(logging.Filter):
    """Stamps every record with the active span's ids so JSON log lines can be joined to traces."""

    def filter(self, record: logging.LogRecord) -> bool:
        span_context = trace.get_current_span().get_span_context()
        if span_context.is_valid:
            record.otelTraceID = format(span_context.trace_id, "032x")
            record.otelSpanID = format(span_context.span_id, "016x")
        else:
            record.otelTraceID = "0"
            record.otelSpanID = "0"
        return True


def setup_json_logging():
    root_logger = logging.getLogger()
    if any(isinstance(h.formatter, jsonlogger.JsonFormatter) for h in root_logger.handlers):
        return
    log_handler = logging.StreamHandler()
    log_handler.setFormatter(jsonlogger.JsonFormatter(
        fmt=LOG_FORMAT,
        rename_fields={"levelname": "level", "name": "logger_name", "asctime": "timestamp"},
    ))
    log_handler.addFilter(TraceContextLogFilter())
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)
    root_logger.addHandler(log_handler)
    log_level = settings.LOG_LEVEL.upper()
    root_logger.setLevel(log_level)
    logger.setLevel(log_level)
    logger.info(f"JSON logging configured at level {log_level}.")


def _metric_readers() -> List[MetricReader]:
    readers: List[MetricReader] = [
        PeriodicExportingMetricReader(ConsoleMetricExporter(), export_interval_millis=METRIC_EXPORT_INTERVAL_MS)
    ]
    if settings.OTEL_EXPORTER_OTLP_METRICS_ENDPOINT:
        logger.info(f"Configuring OTLP Metric Exporter. Endpoint: {settings.OTEL_EXPORTER_OTLP_METRICS_ENDPOINT}")
        exporter = OTLPMetricExporter(endpoint=settings.OTEL_EXPORTER_OTLP_METRICS_ENDPOINT, insecure=True)
        readers.append(PeriodicExportingMetricReader(exporter, export_interval_millis=METRIC_EXPORT_INTERVAL_MS))
    else:
        logger.info("OTLP Metric Exporter not configured. Using Console for metrics.")
    return readers


def setup_opentelemetry(service_name: str):
    """Installs global tracer and meter providers. Console exporters always; OTLP when an endpoint is set."""
    resource = Resource(attributes={ResourceAttributesServiceName: service_name})

    tracer_provider = TracerProvider(resource=resource)
    tracer_provider.add_span_processor(BatchSpanProcessor(ConsoleSpanExporter()))
    if settings.OTEL_EXPORTER_OTLP_TRACES_ENDPOINT:
        logger.info(f"Configuring OTLP Span Exporter. Endpoint: {settings.OTEL_EXPORTER_OTLP_TRACES_ENDPOINT}")
        exporter = OTLPSpanExporter(endpoint=settings.OTEL_EXPORTER_OTLP_TRACES_ENDPOINT, insecure=True)
        tracer_provider.add_span_processor(BatchSpanProcessor(exporter))
    else:
        logger.info("OTLP Span Exporter not configured. Using Console for spans.")
    trace.set_tracer_provider(tracer_provider)

    metrics.set_meter_provider(MeterProvider(resource=resource, metric_readers=_metric_readers()))
    logger.info(f"OpenTelemetry tracer and meter providers configured for service: {service_name}.")


setup_json_logging()

# Proxies; they bind to the real providers once an entry point calls setup_opentelemetry
tracer = trace.get_tracer("document_compliance_service.tracer")
meter = metrics.get_meter("document_compliance_service.meter")

webhook_events_received_counter = meter.create_counter(
    name="document_compliance.webhook.events.received.total",
    description="Counts inbound signing-provider webhook events, partitioned by event type and outcome.",
    unit="1"
)

document_status_transitions_counter = meter.create_counter(
    name="document_compliance.document.status.transitions.total",
    description="Counts applied status transitions on user document records, partitioned by target status.",
    unit="1"
)

sync_rows_created_counter = meter.create_counter(
    name="document_compliance.sync.rows.created.total",
    description="Counts user document status rows created by synchronization runs.",
    unit="1"
)

kafka_messages_consumed_counter = meter.create_counter(
    name="document_compliance.kafka.messages.consumed.total",
    description="Counts employee lifecycle messages consumed from Kafka.",
    unit="1"
)

sync_duration_histogram = meter.create_histogram(
    name="document_compliance.sync.duration.seconds",
    description="Measures how long a synchronization run takes end to end.",
    unit="s"
)


def extract_trace_context_from_kafka_headers(headers: Optional[list]) -> Optional[Context]:
    """
    Extracts OpenTelemetry trace context from Kafka message headers.
    Args:
        headers: A list of tuples (key, value_bytes) from a Kafka message.
    Returns:
        A Context carrying the remote parent span, or None when there are no headers.
    """
    if not headers:
        return None
    carrier = {key: value.decode("utf-8") for key, value in headers if value is not None}
    return _propagator.extract(carrier=carrier)


def inject_trace_context_into_kafka_headers() -> List[Tuple[str, bytes]]:
    """Kafka headers carrying the current span, for consumers of published document events."""
    carrier: dict = {}
    _propagator.inject(carrier)
    return [(key, value.encode("utf-8")) for key, value in carrier.items()]
