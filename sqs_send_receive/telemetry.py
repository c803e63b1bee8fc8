import functools
import logging

from opentelemetry import metrics, propagate, trace
from opentelemetry.exporter.otlp.proto.http.metric_exporter import OTLPMetricExporter
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.botocore import BotocoreInstrumentor
from opentelemetry.propagators.aws import AwsXRayPropagator
from opentelemetry.propagators.composite import CompositePropagator
from opentelemetry.sdk.metrics import MeterProvider
from opentelemetry.sdk.metrics.export import PeriodicExportingMetricReader
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from opentelemetry.trace import SpanKind
from opentelemetry.trace.propagation.tracecontext import TraceContextTextMapPropagator

from . import mdc

logger = logging.getLogger(__name__)

meter = metrics.get_meter(__name__)
messages_sent = meter.create_counter(
    'sqs.messages.sent', unit='{message}', description='Messages handed to SQS')
messages_received = meter.create_counter(
    'sqs.messages.received', unit='{message}', description='Messages returned by ReceiveMessage')
messages_deleted = meter.create_counter(
    'sqs.messages.deleted', unit='{message}', description='Messages acknowledged after processing')
messages_failed = meter.create_counter(
    'sqs.messages.failed', unit='{message}', description='Messages left for redelivery after a failure')


def configure_telemetry(config):
    """Initialize OpenTelemetry tracing, metrics and propagation for the worker"""
    resource = Resource.create({
        "service.name": config.service_name,
        "service.version": config.service_version,
        "messaging.destination.name": config.queue_name,
    })

    trace_provider = TracerProvider(resource=resource)
    meter_provider = None

    if config.observability_config == 'none':
        logger.info("Skipping OTLP exporters (config: none)")
    else:
        otlp_exporter = OTLPSpanExporter(
            endpoint=config.otlp_traces_endpoint,
            headers=config.otlp_headers,
            timeout=5  # 5 second timeout
        )
        trace_provider.add_span_processor(
            BatchSpanProcessor(otlp_exporter, max_export_batch_size=50, schedule_delay_millis=1000))

        metric_reader = PeriodicExportingMetricReader(
            OTLPMetricExporter(
                endpoint=config.otlp_metrics_endpoint,
                headers=config.otlp_headers,
                timeout=5
            ),
            export_interval_millis=5000  # Export every 5 seconds
        )
        meter_provider = MeterProvider(resource=resource, metric_readers=[metric_reader])
        metrics.set_meter_provider(meter_provider)

    trace.set_tracer_provider(trace_provider)

    # X-Ray for the AWS side, W3C for everything else
    propagate.set_global_textmap(CompositePropagator([
        AwsXRayPropagator(),
        TraceContextTextMapPropagator(),
    ]))

    # SDK calls (SendMessage, ReceiveMessage, DeleteMessage) get client spans
    BotocoreInstrumentor().instrument()

    logger.info(f"Initialized OpenTelemetry (config: {config.observability_config}, "
                f"traces: {config.otlp_traces_endpoint})")
    return trace_provider, meter_provider


def force_flush_telemetry(timeout_millis=500):
    """Force flush OpenTelemetry data, e.g. before the process exits"""
    try:
        tracer_provider = trace.get_tracer_provider()
        if hasattr(tracer_provider, 'force_flush'):
            success = tracer_provider.force_flush(timeout_millis=timeout_millis)
            logger.info(f"Trace flush success: {success}")

        meter_provider = metrics.get_meter_provider()
        if hasattr(meter_provider, 'force_flush'):
            success = meter_provider.force_flush(timeout_millis=timeout_millis)
            logger.info(f"Metrics flush success: {success}")

    except Exception as e:
        logger.warning(f"Error during force_flush: {str(e)}")


def shutdown_telemetry():
    force_flush_telemetry()
    for provider in (trace.get_tracer_provider(), metrics.get_meter_provider()):
        if hasattr(provider, 'shutdown'):
            provider.shutdown()


def with_span(name, kind=SpanKind.INTERNAL):
    """
    Run the decorated function in a new span.

    The MDC is bound to the new span only when it continues a valid parent;
    a parentless span would be a fresh root trace, so the caller's MDC stays.
    """

    def decorator(func):
        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            tracer = trace.get_tracer(__name__)
            has_parent = trace.get_current_span().get_span_context().is_valid
            with tracer.start_as_current_span(name, kind=kind):
                if not has_parent:
                    return func(*args, **kwargs)
                with mdc.span_bound():
                    return func(*args, **kwargs)
        return wrapper

    return decorator
