"""Shared enums and models for the Storybook Studio services."""

from .enums import (
    LEGACY_STATUS_ALIASES,
    AdminReplyType,
    GenerationErrorKind,
    GenerationStep,
    IllustrationType,
    JobState,
    MessageAuthor,
    NotificationKind,
    ProjectStatus,
    RegenerationDecision,
    SendPhase,
    TextIntegration,
    TransitionAction,
    ViewerRole,
    normalize_status,
)
from .models import (
    CHARACTER_ATTRIBUTE_FIELDS,
    BatchProgress,
    BatchReport,
    Character,
    CharacterAction,
    ConversationMessage,
    FeedbackHistoryEntry,
    GenerationFailure,
    GenerationOutcome,
    GenerationSuccess,
    Page,
    Project,
    PushItemResult,
    PushReport,
    RegenerationCandidate,
    new_id,
    utcnow,
)

__all__ = [
    "LEGACY_STATUS_ALIASES",
    "AdminReplyType",
    "GenerationErrorKind",
    "GenerationStep",
    "IllustrationType",
    "JobState",
    "MessageAuthor",
    "NotificationKind",
    "ProjectStatus",
    "RegenerationDecision",
    "SendPhase",
    "TextIntegration",
    "TransitionAction",
    "ViewerRole",
    "normalize_status",
    "CHARACTER_ATTRIBUTE_FIELDS",
    "BatchProgress",
    "BatchReport",
    "Character",
    "CharacterAction",
    "ConversationMessage",
    "FeedbackHistoryEntry",
    "GenerationFailure",
    "GenerationOutcome",
    "GenerationSuccess",
    "Page",
    "Project",
    "PushItemResult",
    "PushReport",
    "RegenerationCandidate",
    "new_id",
    "utcnow",
]
