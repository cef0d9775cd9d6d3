"""Shared observability helpers used across Storybook Studio services."""

from .logging import log_context, setup_logging
from .metrics import (
    observe_batch,
    observe_generation,
    observe_provider_response,
    record_status_transition,
    setup_fastapi_metrics,
    track_running_jobs,
)
from .notifications import Notifier, format_message

__all__ = [
    "setup_logging",
    "log_context",
    "Notifier",
    "format_message",
    "setup_fastapi_metrics",
    "observe_batch",
    "observe_generation",
    "observe_provider_response",
    "record_status_transition",
    "track_running_jobs",
]
