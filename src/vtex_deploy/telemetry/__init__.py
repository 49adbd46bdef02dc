"""Telemetry for vtex-deploy: structlog configuration and OpenTelemetry spans."""

from __future__ import annotations

from vtex_deploy.telemetry.logging import add_trace_context, configure_logging
from vtex_deploy.telemetry.sanitization import sanitize_error_message
from vtex_deploy.telemetry.tracing import create_span, traced

__all__ = [
    "add_trace_context",
    "configure_logging",
    "create_span",
    "sanitize_error_message",
    "traced",
]
