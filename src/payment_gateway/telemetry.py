from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor

DEFAULT_OTLP_ENDPOINT = "http://jaeger:4317"


def init_telemetry(
    service_name: str, otlp_endpoint: str = DEFAULT_OTLP_ENDPOINT
) -> trace.Tracer:
    """
    Initialize OpenTelemetry tracing with OTLP exporter.

    Args:
        service_name: Name of the service for resource attribution
        otlp_endpoint: OTLP endpoint for exporting traces

    Returns:
        Configured tracer instance
    """
    if not service_name or not service_name.strip():
        raise ValueError("service_name must be provided")

    otlp_endpoint = otlp_endpoint or DEFAULT_OTLP_ENDPOINT

    resource = Resource.create({"service.name": service_name})
    provider = TracerProvider(resource=resource)

    otlp_exporter = OTLPSpanExporter(endpoint=otlp_endpoint, insecure=True)
    provider.add_span_processor(BatchSpanProcessor(otlp_exporter))

    trace.set_tracer_provider(provider)

    return trace.get_tracer(service_name)
