"""
OpenTelemetry setup for ragroute.

TelemetryService installs tracer and meter providers once per process.
When telemetry is disabled the OpenTelemetry API falls back to its no-op
providers, so instruments created through `get_meter()` are always safe
to use.
"""

from __future__ import annotations

from typing import Optional

from loguru import logger
from opentelemetry import metrics, trace
from opentelemetry.sdk.metrics import MeterProvider
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, ConsoleSpanExporter

from ragroute_core.config import settings

INSTRUMENTATION_NAME = "ragroute"


class TelemetryService:
    """Singleton service that configures tracing and metrics."""

    _instance: Optional[TelemetryService] = None

    def __new__(cls) -> TelemetryService:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
            cls._instance.tracer_provider = None
            cls._instance.meter_provider = None
        return cls._instance

    @property
    def enabled(self) -> bool:
        return self.tracer_provider is not None

    def setup(self) -> None:
        """Install providers. Idempotent; a no-op when ENABLE_TELEMETRY is off."""
        if not settings.ENABLE_TELEMETRY:
            logger.info("Telemetry disabled via configuration.")
            return

        if self.tracer_provider is not None:
            logger.warning("Telemetry already initialized.")
            return

        resource = Resource.create({"service.name": settings.SERVICE_NAME})

        self.tracer_provider = TracerProvider(resource=resource)
        if settings.OTEL_EXPORTER_OTLP_ENDPOINT:
            from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter

            exporter = OTLPSpanExporter(endpoint=settings.OTEL_EXPORTER_OTLP_ENDPOINT)
            logger.info(f"OTLP tracing enabled -> {settings.OTEL_EXPORTER_OTLP_ENDPOINT}")
        else:
            exporter = ConsoleSpanExporter()
            logger.info("OTLP endpoint not set. Tracing to console.")
        self.tracer_provider.add_span_processor(BatchSpanProcessor(exporter))
        trace.set_tracer_provider(self.tracer_provider)

        # Prometheus reader exposes metrics for scraping by the host process
        from opentelemetry.exporter.prometheus import PrometheusMetricReader

        self.meter_provider = MeterProvider(
            resource=resource, metric_readers=[PrometheusMetricReader()]
        )
        metrics.set_meter_provider(self.meter_provider)

        logger.info("Telemetry initialized successfully.")


def get_tracer() -> trace.Tracer:
    return trace.get_tracer(INSTRUMENTATION_NAME)


def get_meter() -> metrics.Meter:
    return metrics.get_meter(INSTRUMENTATION_NAME)
