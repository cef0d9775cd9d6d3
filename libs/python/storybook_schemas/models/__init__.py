"""Pydantic models for entities and generation results."""

from .entities import (
    CHARACTER_ATTRIBUTE_FIELDS,
    Character,
    CharacterAction,
    ConversationMessage,
    FeedbackHistoryEntry,
    Page,
    Project,
    new_id,
    utcnow,
)
from .generation import (
    BatchProgress,
    BatchReport,
    GenerationFailure,
    GenerationOutcome,
    GenerationSuccess,
    PushItemResult,
    PushReport,
    RegenerationCandidate,
)

__all__ = [
    "CHARACTER_ATTRIBUTE_FIELDS",
    "Character",
    "CharacterAction",
    "ConversationMessage",
    "FeedbackHistoryEntry",
    "Page",
    "Project",
    "new_id",
    "utcnow",
    "BatchProgress",
    "BatchReport",
    "GenerationFailure",
    "GenerationOutcome",
    "GenerationSuccess",
    "PushItemResult",
    "PushReport",
    "RegenerationCandidate",
]
