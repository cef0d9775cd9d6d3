"""Reusable validation helpers."""

from __future__ import annotations

from typing import Any, Iterable


class BlankValueError(ValueError):
    """Raised when a required text field is missing or whitespace only."""


def ensure_not_blank(value: str | None, *, field_name: str) -> str:
    """Return ``value`` stripped of surrounding whitespace.

    Args:
        value: Input text to evaluate.
        field_name: Name used in the raised error message.

    Raises:
        BlankValueError: If the value is ``None`` or empty after stripping.
    """

    cleaned = (value or "").strip()
    if not cleaned:
        raise BlankValueError(f"{field_name} is required")
    return cleaned


def missing_fields(record: Any, field_names: Iterable[str]) -> list[str]:
    """List the attributes of ``record`` that are unset or blank."""

    missing: list[str] = []
    for name in field_names:
        value = getattr(record, name, None)
        if value is None or (isinstance(value, str) and not value.strip()):
            missing.append(name)
    return missing


def is_present_url(value: str | None) -> bool:
    return bool(value and value.strip())
