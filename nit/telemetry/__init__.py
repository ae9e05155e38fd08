"""
nit Telemetry Module

OpenTelemetry integration for tracing remote sync operations.
"""

from .tracer import init_telemetry, get_tracer, TracingConfig
from .spans import NitSpan, SpanKind, record_response, get_trace_context

__all__ = [
    "init_telemetry",
    "get_tracer",
    "TracingConfig",
    "NitSpan",
    "SpanKind",
    "record_response",
    "get_trace_context",
]
