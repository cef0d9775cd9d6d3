"""Project workflow rules: status machine, feedback ledger, sends and pushes."""

from .editing import (
    apply_page_update,
    build_pages,
    ensure_character_deletable,
    ensure_single_main,
    set_illustration_type,
)
from .exceptions import (
    GenerationError,
    InvalidStateError,
    NotFoundError,
    StorageError,
    ValidationError,
    WorkflowError,
)
from .feedback import (
    accept_admin_reply,
    add_admin_comment,
    add_admin_reply,
    add_customer_follow_up,
    delete_admin_reply,
    edit_admin_reply,
    has_pending_feedback,
    has_undelivered_resolution,
    mark_delivered,
    record_feedback,
    resolve_all,
    resolve_and_archive,
    should_increment_send_count,
)
from .reconcile import reconcile
from .review import ReviewSession, SubmissionResult
from .sending import SendResult, send_characters, send_sketches, send_to_customer
from .status import (
    Gating,
    GatingInput,
    TRANSITIONS,
    TransitionContext,
    apply_transition,
    build_context,
    build_gating_input,
    compute_gating,
    is_illustration_phase,
    normalize,
    visible_pages,
)
from .sync import build_push_update, ensure_push_allowed, push_entities

__all__ = [
    "apply_page_update",
    "build_pages",
    "ensure_character_deletable",
    "ensure_single_main",
    "set_illustration_type",
    "GenerationError",
    "InvalidStateError",
    "NotFoundError",
    "StorageError",
    "ValidationError",
    "WorkflowError",
    "accept_admin_reply",
    "add_admin_comment",
    "add_admin_reply",
    "add_customer_follow_up",
    "delete_admin_reply",
    "edit_admin_reply",
    "has_pending_feedback",
    "has_undelivered_resolution",
    "mark_delivered",
    "record_feedback",
    "resolve_all",
    "resolve_and_archive",
    "should_increment_send_count",
    "reconcile",
    "ReviewSession",
    "SubmissionResult",
    "SendResult",
    "send_characters",
    "send_sketches",
    "send_to_customer",
    "Gating",
    "GatingInput",
    "TRANSITIONS",
    "TransitionContext",
    "apply_transition",
    "build_context",
    "build_gating_input",
    "compute_gating",
    "is_illustration_phase",
    "normalize",
    "visible_pages",
    "build_push_update",
    "ensure_push_allowed",
    "push_entities",
]
