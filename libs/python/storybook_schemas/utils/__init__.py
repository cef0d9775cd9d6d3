"""Validation helpers shared by the schema models and the workflow layer."""

from .validators import BlankValueError, ensure_not_blank, is_present_url, missing_fields

__all__ = ["BlankValueError", "ensure_not_blank", "is_present_url", "missing_fields"]
