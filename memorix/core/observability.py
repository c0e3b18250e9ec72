from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator

import structlog
from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.redis import RedisInstrumentor
from opentelemetry.instrumentation.sqlalchemy import SQLAlchemyInstrumentor
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from prometheus_client import Counter, Histogram, start_http_server

from memorix.core.config import settings

logger = structlog.get_logger(__name__)

# Prometheus metrics
REQUEST_COUNT = Counter(
    "http_requests_total", "Total HTTP requests", ["method", "endpoint", "status_code"]
)

REQUEST_DURATION = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "endpoint"],
)

EVENTS_PUBLISHED = Counter(
    "events_published_total",
    "Domain event publish outcomes",
    ["event_type", "status"],  # status: success, retry, abandoned
)

EVENTS_CONSUMED = Counter(
    "events_consumed_total", "Domain events handled by consumers", ["queue", "status"]
)

MESSAGES_DEAD_LETTERED = Counter(
    "messages_dead_lettered_total",
    "Messages routed to a dead-letter queue",
    ["queue", "reason"],  # reason: rejected, expired
)

EXISTENCE_CHECKS = Counter(
    "existence_checks_total",
    "Cross-service deck existence checks",
    ["result"],  # result: found, not_found, error
)

REDIS_OPERATIONS = Counter(
    "redis_operations_total", "Total Redis operations", ["operation", "status"]
)

DATABASE_OPERATIONS = Counter(
    "database_operations_total",
    "Total database operations",
    ["operation", "table", "status"],
)


def setup_observability() -> None:
    """Setup OpenTelemetry and Prometheus metrics."""
    resource = Resource.create(
        {
            "service.name": f"{settings.otel_service_name}-{settings.service_role}",
            "service.version": settings.version,
            "service.environment": settings.environment,
        }
    )

    trace.set_tracer_provider(TracerProvider(resource=resource))

    if settings.otel_exporter_otlp_endpoint:
        otlp_exporter = OTLPSpanExporter(
            endpoint=settings.otel_exporter_otlp_endpoint,
            insecure=not settings.is_production(),
        )
        span_processor = BatchSpanProcessor(otlp_exporter)
        trace.get_tracer_provider().add_span_processor(span_processor)

    # Auto-instrument libraries
    SQLAlchemyInstrumentor().instrument()
    RedisInstrumentor().instrument()

    if settings.prometheus_metrics_enabled and not settings.is_testing():
        try:
            start_http_server(settings.prometheus_metrics_port)
            logger.info(
                "Prometheus metrics server started",
                port=settings.prometheus_metrics_port,
            )
        except OSError as e:
            logger.error("Failed to start Prometheus metrics server", error=str(e))


def get_tracer() -> trace.Tracer:
    """Get OpenTelemetry tracer."""
    return trace.get_tracer(__name__)


@asynccontextmanager
async def trace_async_operation(
    operation_name: str, **attributes: Any
) -> AsyncGenerator[trace.Span, None]:
    """Context manager for tracing async operations."""
    tracer = get_tracer()
    with tracer.start_as_current_span(operation_name) as span:
        for key, value in attributes.items():
            span.set_attribute(key, str(value))
        try:
            yield span
        except Exception as e:
            span.record_exception(e)
            span.set_status(trace.Status(trace.StatusCode.ERROR, str(e)))
            raise


class MetricsCollector:
    """Helper class for collecting application metrics."""

    @staticmethod
    def record_http_request(
        method: str, endpoint: str, status_code: int, duration: float
    ) -> None:
        REQUEST_COUNT.labels(
            method=method, endpoint=endpoint, status_code=status_code
        ).inc()
        REQUEST_DURATION.labels(method=method, endpoint=endpoint).observe(duration)

    @staticmethod
    def record_event_published(event_type: str, status: str) -> None:
        EVENTS_PUBLISHED.labels(event_type=event_type, status=status).inc()

    @staticmethod
    def record_event_consumed(queue: str, status: str) -> None:
        EVENTS_CONSUMED.labels(queue=queue, status=status).inc()

    @staticmethod
    def record_dead_letter(queue: str, reason: str) -> None:
        MESSAGES_DEAD_LETTERED.labels(queue=queue, reason=reason).inc()

    @staticmethod
    def record_existence_check(result: str) -> None:
        EXISTENCE_CHECKS.labels(result=result).inc()

    @staticmethod
    def record_redis_operation(operation: str, status: str) -> None:
        REDIS_OPERATIONS.labels(operation=operation, status=status).inc()

    @staticmethod
    def record_database_operation(operation: str, table: str, status: str) -> None:
        DATABASE_OPERATIONS.labels(
            operation=operation, table=table, status=status
        ).inc()


# Global metrics collector instance
metrics = MetricsCollector()
