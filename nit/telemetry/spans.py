"""
nit-specific span helpers.
"""

import logging
from enum import Enum
from typing import Optional, Dict
from contextlib import contextmanager

from opentelemetry import trace
from opentelemetry.trace import Status, StatusCode

from .tracer import get_tracer

logger = logging.getLogger("nit.telemetry.spans")


class SpanKind(Enum):
    """Types of nit spans."""

    PUSH = "push"
    FETCH = "fetch"
    REMOTE_REQUEST = "remote_request"
    VERIFY = "verify"


class NitSpan:
    """
    Helper for creating spans around remote operations.

    Usage:
        with NitSpan.remote_request("PUT", url, branch="main") as span:
            response = client.put(...)
            record_response(span, response.status_code)
    """

    @staticmethod
    @contextmanager
    def remote_request(
        method: str,
        url: str,
        branch: Optional[str] = None,
        agent_id: Optional[str] = None,
    ):
        """Create a span for one HTTP call to a remote."""
        tracer = get_tracer()

        with tracer.start_as_current_span(
            f"nit.remote.{method.lower()}",
            attributes={
                "nit.span_kind": SpanKind.REMOTE_REQUEST.value,
                "http.request.method": method,
                "url.full": url,
                "nit.branch": branch or "",
                "nit.agent_id": agent_id or "",
            }
        ) as span:
            yield span

    @staticmethod
    @contextmanager
    def push(branch: str, commit_hash: str, remote_url: str):
        """Create a span for pushing one branch."""
        tracer = get_tracer()

        with tracer.start_as_current_span(
            "nit.push",
            attributes={
                "nit.span_kind": SpanKind.PUSH.value,
                "nit.branch": branch,
                "nit.commit_hash": commit_hash,
                "nit.remote_url": remote_url,
            }
        ) as span:
            yield span

    @staticmethod
    @contextmanager
    def fetch(card_url: str, branch: str):
        """Create a span for fetching a branch card, challenge included."""
        tracer = get_tracer()

        with tracer.start_as_current_span(
            "nit.fetch",
            attributes={
                "nit.span_kind": SpanKind.FETCH.value,
                "nit.card_url": card_url,
                "nit.branch": branch,
            }
        ) as span:
            yield span

    @staticmethod
    @contextmanager
    def verify(agent_id: str, domain: str):
        """Create a span for login verification."""
        tracer = get_tracer()

        with tracer.start_as_current_span(
            "nit.verify",
            attributes={
                "nit.span_kind": SpanKind.VERIFY.value,
                "nit.agent_id": agent_id,
                "nit.domain": domain,
            }
        ) as span:
            yield span


def record_response(span, status_code: int):
    """Attach the HTTP status to a span and mark server/client errors."""
    if span is None:
        return
    span.set_attribute("http.response.status_code", status_code)
    if status_code >= 400:
        span.set_status(Status(StatusCode.ERROR, f"HTTP {status_code}"))


def get_trace_context() -> Dict[str, str]:
    """
    Get current trace context for log correlation.

    Returns trace_id and span_id, or an empty dict outside a recording span.
    """
    span = trace.get_current_span()
    ctx = span.get_span_context()
    if not ctx.is_valid:
        return {}

    return {
        "trace_id": format(ctx.trace_id, '032x'),
        "span_id": format(ctx.span_id, '016x'),
    }
