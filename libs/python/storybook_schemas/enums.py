"""Enum definitions shared across workflows."""

from __future__ import annotations

from enum import Enum


class ProjectStatus(str, Enum):
    DRAFT = "draft"
    AWAITING_CUSTOMER_INPUT = "awaiting_customer_input"

    CHARACTER_GENERATION = "character_generation"
    CHARACTER_GENERATION_COMPLETE = "character_generation_complete"
    CHARACTER_REVIEW = "character_review"
    CHARACTER_REVISION_NEEDED = "character_revision_needed"
    CHARACTERS_REGENERATED = "characters_regenerated"
    CHARACTERS_APPROVED = "characters_approved"

    SKETCHES_REVIEW = "sketches_review"
    SKETCHES_REVISION = "sketches_revision"
    ILLUSTRATION_APPROVED = "illustration_approved"

    COMPLETED = "completed"


# Statuses written by earlier releases. Only ``normalize_status`` may read these.
LEGACY_STATUS_ALIASES: dict[str, ProjectStatus] = {
    "trial_review": ProjectStatus.SKETCHES_REVIEW,
    "illustration_review": ProjectStatus.SKETCHES_REVIEW,
    "trial_revision": ProjectStatus.SKETCHES_REVISION,
    "illustration_revision_needed": ProjectStatus.SKETCHES_REVISION,
    "trial_approved": ProjectStatus.CHARACTERS_APPROVED,
    "illustrations_generating": ProjectStatus.CHARACTERS_APPROVED,
}


def normalize_status(raw: str | ProjectStatus) -> ProjectStatus:
    """Map a raw status string, legacy or canonical, onto :class:`ProjectStatus`.

    Raises:
        ValueError: If the value is neither a canonical status nor a known alias.
    """

    if isinstance(raw, ProjectStatus):
        return raw
    value = str(raw).strip().lower()
    try:
        return ProjectStatus(value)
    except ValueError:
        pass
    alias = LEGACY_STATUS_ALIASES.get(value)
    if alias is None:
        raise ValueError(f"Unknown project status: {raw!r}")
    return alias


class TransitionAction(str, Enum):
    REQUEST_INPUT = "request_input"
    CHARACTER_GENERATION_FINISHED = "character_generation_finished"
    SEND_CHARACTERS = "send_characters"
    SUBMIT_CHARACTER_DETAILS = "submit_character_details"
    CUSTOMER_REQUESTED_CHARACTER_REVISION = "customer_requested_character_revision"
    CHARACTERS_REGENERATED = "characters_regenerated"
    APPROVE_CHARACTERS = "approve_characters"
    SEND_SKETCHES = "send_sketches"
    CUSTOMER_REQUESTED_SKETCH_REVISION = "customer_requested_sketch_revision"
    APPROVE_ILLUSTRATIONS = "approve_illustrations"


class SendPhase(str, Enum):
    CHARACTERS = "characters"
    ILLUSTRATIONS = "illustrations"


class ViewerRole(str, Enum):
    ADMIN = "admin"
    CUSTOMER = "customer"


class IllustrationType(str, Enum):
    SPREAD = "spread"
    SPOT = "spot"


class TextIntegration(str, Enum):
    INTEGRATED = "integrated"
    SEPARATED = "separated"


class AdminReplyType(str, Enum):
    REPLY = "reply"
    COMMENT = "comment"


class MessageAuthor(str, Enum):
    CUSTOMER = "customer"
    ADMIN = "admin"


class GenerationErrorKind(str, Enum):
    RATE_LIMITED = "RateLimited"
    CONTENT_POLICY_BLOCKED = "ContentPolicyBlocked"
    NO_IMAGE_PRODUCED = "NoImageProduced"
    BILLING_ISSUE = "BillingIssue"
    TIMEOUT = "Timeout"
    NETWORK_ERROR = "NetworkError"
    STORAGE_ERROR = "StorageError"
    UNKNOWN = "Unknown"


class GenerationStep(str, Enum):
    ILLUSTRATION = "illustration"
    SKETCH = "sketch"


class JobState(str, Enum):
    PENDING = "pending"
    GENERATING_ILLUSTRATION = "generating_illustration"
    GENERATING_SKETCH = "generating_sketch"
    DONE = "done"
    FAILED = "failed"


class RegenerationDecision(str, Enum):
    KEEP_NEW = "keep_new"
    REVERT_OLD = "revert_old"


class NotificationKind(str, Enum):
    PROJECT_SENT_TO_CUSTOMER = "project_sent_to_customer"
    SECONDARY_CHARACTERS_READY = "secondary_characters_ready"
    CHARACTER_REVISIONS = "character_revisions"
    ILLUSTRATIONS_SENT = "illustrations_sent"
    ILLUSTRATIONS_UPDATED = "illustrations_updated"
    CUSTOMER_SUBMISSION = "customer_submission"
    CUSTOMER_FEEDBACK = "customer_feedback"
    CUSTOMER_ACCEPTED_REPLY = "customer_accepted_reply"
    CHARACTER_GENERATION_COMPLETE = "character_generation_complete"
