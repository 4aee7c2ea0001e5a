"""
Observability setup:
  - OpenTelemetry distributed tracing → Jaeger (via OTLP gRPC)
  - Prometheus metrics: per-operation latency/errors, engagement writes,
    transaction outcomes

Tracing is initialised once at startup; metrics are module-level singletons
scraped from /metrics.
"""
import logging

from opentelemetry import trace
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.instrumentation.sqlalchemy import SQLAlchemyInstrumentor
from prometheus_client import Counter, Histogram

from musicnet.config import settings

logger = logging.getLogger(__name__)

# ─────────────────────────── Prometheus Metrics ───────────────────────────
OPERATION_LATENCY = Histogram(
    "operation_latency_seconds",
    "Latency of SocialService operations",
    ["operation"],
    buckets=[0.005, 0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.0, 5.0],
)

OPERATION_ERRORS_TOTAL = Counter(
    "operation_errors_total",
    "Failed SocialService operations by error category",
    ["operation", "category"],
)

ENGAGEMENT_WRITES_TOTAL = Counter(
    "engagement_writes_total",
    "Edge writes on the engagement ledger and social graph",
    ["edge", "outcome"],  # edge: like|repost|follow, outcome: created|noop|removed
)

TRANSACTIONS_TOTAL = Counter(
    "transactions_total",
    "Atomic units run by the transaction coordinator",
    ["mode", "outcome"],  # mode: read_write|read_only
)


# ─────────────────────────── OpenTelemetry Setup ──────────────────────────
def setup_tracing(engine=None) -> None:  # noqa: ANN001
    """Configure the global OTel TracerProvider with OTLP/Jaeger export."""
    if not settings.otel_enabled:
        logger.info("OTel tracing disabled (OTEL_ENABLED=false)")
        return

    resource = Resource.create(
        {
            "service.name": settings.service_name,
            "deployment.environment": settings.environment,
        }
    )

    provider = TracerProvider(resource=resource)

    try:
        otlp_exporter = OTLPSpanExporter(
            endpoint=settings.otel_exporter_otlp_endpoint,
            insecure=True,
        )
        provider.add_span_processor(BatchSpanProcessor(otlp_exporter))
        logger.info(
            "OTel tracing configured → %s", settings.otel_exporter_otlp_endpoint
        )
    except Exception as exc:
        logger.warning("Could not connect to OTLP exporter: %s — traces disabled", exc)

    trace.set_tracer_provider(provider)

    if engine is not None:
        SQLAlchemyInstrumentor().instrument(engine=engine.sync_engine)


def instrument_app(app) -> None:  # noqa: ANN001
    """Call after app is created to add FastAPI request spans."""
    if settings.otel_enabled:
        FastAPIInstrumentor.instrument_app(app)
