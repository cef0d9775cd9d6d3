"""Tests for the JSON log formatter and context binding."""

import json
import logging

from storybook_observability import log_context
from storybook_observability.logging import BoundContextFilter, StructuredFormatter


def _render(message: str, **extra) -> dict:
    record = logging.LogRecord("storybook.test", logging.INFO, __file__, 1, message, (), None)
    for key, value in extra.items():
        setattr(record, key, value)
    BoundContextFilter("api").filter(record)
    return json.loads(StructuredFormatter().format(record))


def test_bound_fields_are_attached() -> None:
    with log_context(project_id="proj-1", batch_id="batch-7"):
        payload = _render("Dispatched illustration batch")

    assert payload["service"] == "api"
    assert payload["message"] == "Dispatched illustration batch"
    assert payload["project_id"] == "proj-1"
    assert payload["batch_id"] == "batch-7"


def test_context_is_restored_after_block() -> None:
    with log_context(project_id="proj-1"):
        with log_context(project_id=None, page_id="page-3"):
            inner = _render("inner")
        outer = _render("outer")
    after = _render("after")

    assert "project_id" not in inner and inner["page_id"] == "page-3"
    assert outer["project_id"] == "proj-1" and "page_id" not in outer
    assert "project_id" not in after


def test_extras_override_bound_fields_and_are_serialised() -> None:
    with log_context(page_id="bound"):
        payload = _render("Generation failed", page_id="explicit", error=ValueError("boom"))

    assert payload["page_id"] == "explicit"
    assert payload["error"] == "boom"
