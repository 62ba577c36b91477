"""Telemetry package: structured logging and log-context helpers."""

from __future__ import annotations

from botforge.telemetry.logging import (
    RequestIdMiddleware,
    bind_job_context,
    clear_context,
    configure_logging,
)

__all__ = [
    "RequestIdMiddleware",
    "bind_job_context",
    "clear_context",
    "configure_logging",
]
