# telemetry.py — Optional OpenTelemetry tracing for the Flowt API
"""
Traces requests, SQL statements and outbound httpx calls when
OTEL_EXPORTER_OTLP_ENDPOINT is set. Without an endpoint, or without the
``telemetry`` extra installed, setup is a no-op.
"""
import os
import logging

logger = logging.getLogger("flowt.telemetry")

SERVICE_NAME = os.getenv("OTEL_SERVICE_NAME", "flowt-api")
SERVICE_VERSION = "1.0.0"
ENVIRONMENT = os.getenv("ENVIRONMENT", "development")
OTLP_ENDPOINT = os.getenv("OTEL_EXPORTER_OTLP_ENDPOINT", "")

# Instrumentor import path -> label, installed separately from the SDK
_INSTRUMENTORS = (
    ("opentelemetry.instrumentation.sqlalchemy", "SQLAlchemyInstrumentor", "SQLAlchemy"),
    ("opentelemetry.instrumentation.httpx", "HTTPXClientInstrumentor", "HTTPX"),
)


def setup_telemetry(app=None, engine=None):
    """Register a tracer provider and instrument the app. Returns the provider or None."""
    if not OTLP_ENDPOINT:
        logger.info("OpenTelemetry disabled (OTEL_EXPORTER_OTLP_ENDPOINT not set)")
        return None

    try:
        from opentelemetry import trace
        from opentelemetry.sdk.trace import TracerProvider
        from opentelemetry.sdk.trace.export import BatchSpanProcessor
        from opentelemetry.sdk.resources import Resource, SERVICE_NAME as RES_SVC_NAME
        from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
    except ImportError:
        logger.info("OpenTelemetry SDK not installed, tracing disabled")
        return None

    resource = Resource.create({
        RES_SVC_NAME: SERVICE_NAME,
        "service.version": SERVICE_VERSION,
        "deployment.environment": ENVIRONMENT,
    })
    provider = TracerProvider(resource=resource)
    provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(endpoint=OTLP_ENDPOINT, insecure=True)))
    trace.set_tracer_provider(provider)

    if app is not None:
        try:
            from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
            FastAPIInstrumentor.instrument_app(app, excluded_urls="health", tracer_provider=provider)
            logger.info("FastAPI instrumented with OpenTelemetry")
        except ImportError:
            logger.warning("opentelemetry-instrumentation-fastapi not installed")

    import importlib
    for module_name, class_name, label in _INSTRUMENTORS:
        try:
            instrumentor = getattr(importlib.import_module(module_name), class_name)()
        except ImportError:
            logger.warning("%s instrumentation not installed", label)
            continue
        if label == "SQLAlchemy" and engine is not None:
            instrumentor.instrument(engine=engine.sync_engine, tracer_provider=provider)
        else:
            instrumentor.instrument(tracer_provider=provider)
        logger.info("%s instrumented with OpenTelemetry", label)

    logger.info("OpenTelemetry initialised → %s", OTLP_ENDPOINT)
    return provider
