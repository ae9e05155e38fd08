"""
OpenTelemetry Tracer Configuration

Initializes OTEL with an optional OTLP exporter for remote-sync tracing.
"""

import os
import logging
from dataclasses import dataclass
from typing import Optional

from opentelemetry import trace
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, ConsoleSpanExporter
from opentelemetry.sdk.resources import Resource, SERVICE_NAME, SERVICE_VERSION

logger = logging.getLogger("nit.telemetry")

_tracer = None
_initialized = False


@dataclass
class TracingConfig:
    """Configuration for OpenTelemetry tracing."""

    service_name: str = "nit"
    service_version: str = "0.1.0"

    # OTLP exporter settings
    otlp_endpoint: Optional[str] = None  # e.g., "http://localhost:4317"
    otlp_insecure: bool = True

    # Console exporter for debugging
    console_export: bool = False

    @classmethod
    def from_env(cls) -> "TracingConfig":
        """Load config from environment variables."""
        return cls(
            service_name=os.getenv("OTEL_SERVICE_NAME", "nit"),
            service_version=os.getenv("NIT_VERSION", "0.1.0"),
            otlp_endpoint=os.getenv("OTEL_EXPORTER_OTLP_ENDPOINT"),
            otlp_insecure=os.getenv("OTEL_EXPORTER_OTLP_INSECURE", "true").lower() == "true",
            console_export=os.getenv("OTEL_CONSOLE_EXPORT", "false").lower() == "true",
        )

    @property
    def has_exporter(self) -> bool:
        return bool(self.otlp_endpoint) or self.console_export


def init_telemetry(config: Optional[TracingConfig] = None) -> bool:
    """
    Initialize OpenTelemetry tracing.

    Does nothing (and returns False) when no exporter is configured, so the
    global no-op provider stays in place.
    """
    global _tracer, _initialized

    if _initialized:
        return True

    config = config or TracingConfig.from_env()
    if not config.has_exporter:
        return False

    resource = Resource.create({
        SERVICE_NAME: config.service_name,
        SERVICE_VERSION: config.service_version,
    })
    provider = TracerProvider(resource=resource)

    if config.otlp_endpoint:
        try:
            from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter

            otlp_exporter = OTLPSpanExporter(
                endpoint=config.otlp_endpoint,
                insecure=config.otlp_insecure,
            )
            provider.add_span_processor(BatchSpanProcessor(otlp_exporter))
            logger.info(f"OTEL: OTLP exporter configured → {config.otlp_endpoint}")
        except ImportError:
            logger.warning("OTEL: OTLP exporter not available (install nit[otlp])")

    if config.console_export:
        provider.add_span_processor(BatchSpanProcessor(ConsoleSpanExporter()))
        logger.info("OTEL: Console exporter enabled")

    trace.set_tracer_provider(provider)
    _tracer = trace.get_tracer(config.service_name, config.service_version)
    _initialized = True

    logger.info(f"OTEL: Telemetry initialized for {config.service_name}")
    return True


def get_tracer():
    """Get the configured tracer, or the global provider's tracer if not initialized."""
    if _tracer is not None:
        return _tracer
    return trace.get_tracer("nit")
