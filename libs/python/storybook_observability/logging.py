"""JSON logging for the Storybook services.

Every record is written to stdout as a single JSON object. Identifiers bound
with :func:`log_context` (project, page, character, batch) are attached to
all records emitted inside the block, including those from library code.
"""

from __future__ import annotations

import json
import logging
import logging.config
import os
import sys
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Dict, Iterator

_BOUND_FIELDS: ContextVar[Dict[str, Any]] = ContextVar("storybook_bound_fields", default={})

# Attributes every LogRecord carries; anything else on a record came from ``extra=``.
_RECORD_ATTRIBUTES = frozenset(
    logging.LogRecord("", logging.INFO, "", 0, "", (), None).__dict__
) | {"message", "asctime", "bound_fields"}

ENTITY_FIELDS = (
    "project_id",
    "page_id",
    "character_id",
    "entity_id",
    "batch_id",
)

_QUIET_LOGGERS = ("httpx", "httpcore", "prefect", "google_genai", "openai")


class BoundContextFilter(logging.Filter):
    """Copy the fields bound by :func:`log_context` onto each record."""

    def __init__(self, service_name: str) -> None:
        super().__init__()
        self.service_name = service_name

    def filter(self, record: logging.LogRecord) -> bool:
        record.bound_fields = _BOUND_FIELDS.get()
        if getattr(record, "service", None) is None:
            record.service = self.service_name
        return True


class StructuredFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(
                timespec="milliseconds"
            ),
            "level": record.levelname,
            "logger": record.name,
            "service": getattr(record, "service", None),
            "message": record.getMessage(),
        }

        # Explicit extras win over bound fields.
        bound = getattr(record, "bound_fields", None) or {}
        extras = {
            key: value
            for key, value in record.__dict__.items()
            if key not in _RECORD_ATTRIBUTES and key != "service" and not key.startswith("_")
        }
        merged = {**bound, **extras}

        for key in ENTITY_FIELDS:
            if merged.get(key) is not None:
                payload[key] = merged.pop(key)
        for key, value in merged.items():
            if value is not None:
                payload[key] = value if _is_json_safe(value) else str(value)

        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        if record.stack_info:
            payload["stack"] = self.formatStack(record.stack_info)
        return json.dumps(payload, ensure_ascii=True, default=str)


def _is_json_safe(value: Any) -> bool:
    try:
        json.dumps(value)
    except (TypeError, ValueError):
        return False
    return True


def _logging_config(service_name: str, level: str | int) -> dict[str, Any]:
    handlers = ["stdout"]
    loggers: dict[str, Any] = {
        name: {"handlers": handlers, "level": level, "propagate": False}
        for name in ("uvicorn", "uvicorn.error", "uvicorn.access")
    }
    loggers.update({name: {"level": "WARNING"} for name in _QUIET_LOGGERS})
    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {"json": {"()": "storybook_observability.logging.StructuredFormatter"}},
        "filters": {
            "bound": {
                "()": "storybook_observability.logging.BoundContextFilter",
                "service_name": service_name,
            }
        },
        "handlers": {
            "stdout": {
                "class": "logging.StreamHandler",
                "stream": sys.stdout,
                "formatter": "json",
                "filters": ["bound"],
            }
        },
        "root": {"level": level, "handlers": handlers},
        "loggers": loggers,
    }


def setup_logging(service_name: str, level: str | int | None = None) -> None:
    """Configure JSON logging for a service process.

    ``level`` defaults to ``LOG_LEVEL``. Calling it again replaces the handler
    layout, so a second service imported into the same process (as in tests)
    keeps logging normally. Python warnings are routed into logging when
    ``STORYBOOK_CAPTURE_WARNINGS`` is truthy.
    """

    level = level or os.getenv("LOG_LEVEL", "INFO").upper()
    logging.config.dictConfig(_logging_config(service_name, level))
    capture = os.getenv("STORYBOOK_CAPTURE_WARNINGS", "")
    if capture.lower() in {"1", "true", "yes"}:
        logging.captureWarnings(True)


@contextmanager
def log_context(**fields: Any) -> Iterator[None]:
    """Bind identifiers to every record logged inside the block.

    Passing ``None`` for a field unbinds it for the duration of the block.
    """

    bound = dict(_BOUND_FIELDS.get())
    for key, value in fields.items():
        if value is None:
            bound.pop(key, None)
        else:
            bound[key] = value
    token = _BOUND_FIELDS.set(bound)
    try:
        yield
    finally:
        _BOUND_FIELDS.reset(token)
