"""Project lifecycle state machine and derived gating.

Everything in this module is pure: gating queries never touch entities, and
:func:`apply_transition` only mutates ``project.status`` once every
precondition has passed.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Iterable, Optional, Sequence

from storybook_schemas import (
    Character,
    Page,
    Project,
    ProjectStatus,
    TransitionAction,
    ViewerRole,
    normalize_status,
)

from .exceptions import InvalidStateError, ValidationError
from .feedback import has_undelivered_resolution

logger = logging.getLogger(__name__)

S = ProjectStatus
A = TransitionAction

CHARACTER_PHASE = frozenset(
    {
        S.DRAFT,
        S.AWAITING_CUSTOMER_INPUT,
        S.CHARACTER_GENERATION,
        S.CHARACTER_GENERATION_COMPLETE,
        S.CHARACTER_REVIEW,
        S.CHARACTER_REVISION_NEEDED,
        S.CHARACTERS_REGENERATED,
    }
)
ILLUSTRATION_PHASE = frozenset(
    {S.CHARACTERS_APPROVED, S.SKETCHES_REVIEW, S.SKETCHES_REVISION, S.ILLUSTRATION_APPROVED}
)
REVIEWABLE = frozenset(
    {S.CHARACTER_REVIEW, S.CHARACTER_REVISION_NEEDED, S.SKETCHES_REVIEW, S.SKETCHES_REVISION}
)
PROCESSING = frozenset({S.CHARACTER_GENERATION})
APPROVED = frozenset({S.CHARACTERS_APPROVED, S.ILLUSTRATION_APPROVED, S.COMPLETED})
# Statuses in which sketches have formally reached the customer.
COMMITTED = frozenset(
    {S.SKETCHES_REVIEW, S.SKETCHES_REVISION, S.ILLUSTRATION_APPROVED, S.COMPLETED}
)
TERMINAL = frozenset({S.ILLUSTRATION_APPROVED, S.COMPLETED})

# Approving characters from these statuses is the "skip to illustrations" path.
SKIP_SOURCES = frozenset(
    {S.DRAFT, S.AWAITING_CUSTOMER_INPUT, S.CHARACTER_GENERATION_COMPLETE}
)


@dataclass(frozen=True, slots=True)
class TransitionRule:
    sources: frozenset[ProjectStatus]
    target: ProjectStatus


TRANSITIONS: dict[TransitionAction, TransitionRule] = {
    A.REQUEST_INPUT: TransitionRule(
        frozenset({S.DRAFT, S.AWAITING_CUSTOMER_INPUT}), S.CHARACTER_GENERATION
    ),
    A.CHARACTER_GENERATION_FINISHED: TransitionRule(
        frozenset({S.CHARACTER_GENERATION}), S.CHARACTER_GENERATION_COMPLETE
    ),
    A.SEND_CHARACTERS: TransitionRule(
        CHARACTER_PHASE - {S.CHARACTER_GENERATION}, S.CHARACTER_REVIEW
    ),
    A.SUBMIT_CHARACTER_DETAILS: TransitionRule(
        frozenset({S.CHARACTER_REVIEW, S.CHARACTER_REVISION_NEEDED}), S.CHARACTER_GENERATION
    ),
    A.CUSTOMER_REQUESTED_CHARACTER_REVISION: TransitionRule(
        frozenset({S.CHARACTER_REVIEW, S.CHARACTER_REVISION_NEEDED}),
        S.CHARACTER_REVISION_NEEDED,
    ),
    A.CHARACTERS_REGENERATED: TransitionRule(
        frozenset({S.CHARACTER_REVISION_NEEDED, S.CHARACTER_GENERATION_COMPLETE}),
        S.CHARACTERS_REGENERATED,
    ),
    A.APPROVE_CHARACTERS: TransitionRule(
        frozenset({S.CHARACTERS_REGENERATED, S.CHARACTER_REVIEW, S.CHARACTER_REVISION_NEEDED})
        | SKIP_SOURCES,
        S.CHARACTERS_APPROVED,
    ),
    A.SEND_SKETCHES: TransitionRule(
        frozenset({S.CHARACTERS_APPROVED, S.SKETCHES_REVIEW, S.SKETCHES_REVISION}),
        S.SKETCHES_REVIEW,
    ),
    A.CUSTOMER_REQUESTED_SKETCH_REVISION: TransitionRule(
        frozenset({S.SKETCHES_REVIEW, S.SKETCHES_REVISION}), S.SKETCHES_REVISION
    ),
    A.APPROVE_ILLUSTRATIONS: TransitionRule(
        frozenset({S.SKETCHES_REVIEW, S.SKETCHES_REVISION}), S.ILLUSTRATION_APPROVED
    ),
}


@dataclass(frozen=True, slots=True)
class TransitionContext:
    """Counts and flags that action preconditions are checked against."""

    generated_count: int = 0
    page_count: int = 0
    secondary_character_count: int = 0
    has_unresolved_feedback: bool = False
    has_resolved_feedback: bool = False


@dataclass(frozen=True, slots=True)
class GatingInput:
    status: ProjectStatus
    send_count: int = 0
    has_unresolved_feedback: bool = False
    has_resolved_feedback: bool = False
    generated_count: int = 0
    page_count: int = 0
    secondary_character_count: Optional[int] = None

    def context(self) -> TransitionContext:
        return TransitionContext(
            generated_count=self.generated_count,
            page_count=self.page_count,
            # Unknown secondary counts never unlock the skip path.
            secondary_character_count=(
                self.secondary_character_count
                if self.secondary_character_count is not None
                else 1
            ),
            has_unresolved_feedback=self.has_unresolved_feedback,
            has_resolved_feedback=self.has_resolved_feedback,
        )


@dataclass(frozen=True, slots=True)
class Gating:
    status: ProjectStatus
    is_illustration_phase: bool
    is_character_phase: bool
    is_reviewable: bool
    is_processing: bool
    is_approved: bool
    send_button_disabled: bool
    send_label: Optional[str]
    status_tag: str
    revision_round: int
    allowed_actions: frozenset[TransitionAction] = field(default_factory=frozenset)


def normalize(raw: str | ProjectStatus) -> ProjectStatus:
    """Boundary helper: like :func:`normalize_status` but raises a workflow error."""

    try:
        return normalize_status(raw)
    except ValueError as exc:
        raise ValidationError(str(exc)) from exc


def is_illustration_phase(status: str | ProjectStatus) -> bool:
    return normalize(status) in ILLUSTRATION_PHASE


def _precondition_error(
    action: TransitionAction, status: ProjectStatus, context: TransitionContext
) -> Optional[str]:
    if action is A.APPROVE_CHARACTERS and status in SKIP_SOURCES:
        if context.secondary_character_count > 0:
            return "Cannot skip character review while secondary characters exist"
    if action is A.SEND_SKETCHES:
        if status is S.CHARACTERS_APPROVED:
            if context.page_count <= 0 or context.generated_count < context.page_count:
                return (
                    "All page illustrations must be generated before sending sketches "
                    f"({context.generated_count}/{context.page_count} generated)"
                )
        elif not (context.has_resolved_feedback or context.has_unresolved_feedback):
            return "No feedback has been addressed since the last send"
    if action is A.APPROVE_ILLUSTRATIONS and context.has_unresolved_feedback:
        return "Cannot approve illustrations while page feedback is unresolved"
    return None


def apply_transition(
    project: Project,
    action: TransitionAction | str,
    *,
    context: TransitionContext | None = None,
) -> ProjectStatus:
    """Move ``project`` along ``action`` and return the previous status.

    Raises:
        InvalidStateError: The current status is not a legal source for the action
            or an action-specific precondition failed. The project is left untouched.
    """

    try:
        action = TransitionAction(action)
    except ValueError as exc:
        raise ValidationError(f"Unknown transition action: {action!r}") from exc

    context = context or TransitionContext()
    rule = TRANSITIONS[action]
    current = normalize(project.status)

    if current not in rule.sources:
        raise InvalidStateError(
            f"Cannot {action.value} from status {current.value}",
            expected=sorted(status.value for status in rule.sources),
        )

    problem = _precondition_error(action, current, context)
    if problem:
        raise InvalidStateError(problem)

    project.status = rule.target
    logger.info(
        "Project status transition",
        extra={
            "project_id": project.id,
            "action": action.value,
            "from_status": current.value,
            "status": rule.target.value,
        },
    )
    return current


def allowed_actions(status: ProjectStatus, context: TransitionContext) -> frozenset[TransitionAction]:
    return frozenset(
        action
        for action, rule in TRANSITIONS.items()
        if status in rule.sources and _precondition_error(action, status, context) is None
    )


def _status_tag(data: GatingInput) -> str:
    status = data.status
    generated_all = data.page_count > 0 and data.generated_count >= data.page_count
    if status is S.CHARACTERS_APPROVED:
        if generated_all:
            return "Sketches Ready"
        return "Generating..." if data.generated_count >= 1 else "Ready to Generate"
    if status is S.SKETCHES_REVIEW:
        return "Sketches Feedback" if data.has_unresolved_feedback else "Wait: Sketches Review"
    if status is S.SKETCHES_REVISION:
        return "Sketches Feedback"
    if status is S.ILLUSTRATION_APPROVED:
        return "Sketches Approved"
    if status is S.COMPLETED:
        return "Completed"
    if status is S.CHARACTER_REVIEW:
        return "Customer Feedback Received" if data.has_unresolved_feedback else "Waiting for Review"
    if status is S.CHARACTER_REVISION_NEEDED:
        return "Regenerate Characters"
    if status is S.CHARACTER_GENERATION:
        return "Generating Characters"
    if status in {S.CHARACTERS_REGENERATED, S.CHARACTER_GENERATION_COMPLETE}:
        return "Characters Regenerated" if data.send_count > 0 else "Characters Generated"
    if status is S.AWAITING_CUSTOMER_INPUT:
        return "Awaiting Customer Input"
    return "Project Setup"


def _send_button(data: GatingInput) -> tuple[Optional[str], bool]:
    status = data.status
    if status in TERMINAL:
        return None, True
    if status is S.CHARACTERS_APPROVED:
        generated_all = data.page_count > 0 and data.generated_count >= data.page_count
        return "send_sketches", not generated_all
    if status in {S.SKETCHES_REVIEW, S.SKETCHES_REVISION}:
        return "resend_sketches", not data.has_resolved_feedback
    label = "resend_characters" if data.send_count > 0 else "send_characters"
    if status in {S.DRAFT, S.AWAITING_CUSTOMER_INPUT} and data.send_count == 0:
        return "send_characters", False
    if status is S.CHARACTER_REVIEW and data.send_count > 0:
        return label, not data.has_unresolved_feedback
    return label, status is S.CHARACTER_GENERATION


def compute_gating(data: GatingInput) -> Gating:
    """Derive UI and permission gates from status plus counters.

    Pure: identical input always yields an identical, immutable :class:`Gating`.
    """

    status = normalize(data.status)
    if status is not data.status:
        data = GatingInput(
            status=status,
            send_count=data.send_count,
            has_unresolved_feedback=data.has_unresolved_feedback,
            has_resolved_feedback=data.has_resolved_feedback,
            generated_count=data.generated_count,
            page_count=data.page_count,
            secondary_character_count=data.secondary_character_count,
        )
    send_label, disabled = _send_button(data)
    return Gating(
        status=status,
        is_illustration_phase=status in ILLUSTRATION_PHASE,
        is_character_phase=status in CHARACTER_PHASE,
        is_reviewable=status in REVIEWABLE,
        is_processing=status in PROCESSING,
        is_approved=status in APPROVED,
        send_button_disabled=disabled,
        send_label=send_label,
        status_tag=_status_tag(data),
        revision_round=max(0, data.send_count - 1),
        allowed_actions=allowed_actions(status, data.context()),
    )


def has_unresolved_feedback(entities: Iterable[Page | Character]) -> bool:
    return any(entity.feedback_notes and not entity.is_resolved for entity in entities)


def has_resolved_feedback(entities: Iterable[Page | Character]) -> bool:
    """Feedback resolved since the last send, which is what justifies a resend."""

    return any(has_undelivered_resolution(entity) for entity in entities)


def build_context(
    pages: Sequence[Page],
    characters: Sequence[Character],
    *,
    illustration_phase: bool,
) -> TransitionContext:
    """Collect the counts a transition needs from the project's entities."""

    scoped: Sequence[Page | Character] = pages if illustration_phase else characters
    return TransitionContext(
        generated_count=sum(1 for page in pages if page.has_illustration),
        page_count=len(pages),
        secondary_character_count=sum(1 for character in characters if not character.is_main),
        has_unresolved_feedback=has_unresolved_feedback(scoped),
        has_resolved_feedback=has_resolved_feedback(scoped),
    )


def build_gating_input(
    project: Project, pages: Sequence[Page], characters: Sequence[Character]
) -> GatingInput:
    status = normalize(project.status)
    illustration_phase = status in ILLUSTRATION_PHASE
    context = build_context(pages, characters, illustration_phase=illustration_phase)
    return GatingInput(
        status=status,
        send_count=(
            project.illustration_send_count
            if illustration_phase
            else project.character_send_count
        ),
        has_unresolved_feedback=context.has_unresolved_feedback,
        has_resolved_feedback=context.has_resolved_feedback,
        generated_count=context.generated_count,
        page_count=context.page_count,
        secondary_character_count=context.secondary_character_count,
    )


def visible_pages(
    role: ViewerRole | str, status: ProjectStatus | str, pages: Sequence[Page]
) -> list[Page]:
    """Return the pages ``role`` may see in ``status``, ordered by page number."""

    role = ViewerRole(role)
    status = normalize(status)
    ordered = sorted(pages, key=lambda page: page.page_number)
    if not ordered:
        return []
    first = ordered[0]

    if role is ViewerRole.ADMIN:
        if first.has_illustration or status in COMMITTED:
            return ordered
        return [first]

    if status in COMMITTED:
        return ordered
    return [
        page
        for page in ordered
        if page is first or page.customer_illustration_url
    ]


__all__ = [
    "APPROVED",
    "CHARACTER_PHASE",
    "COMMITTED",
    "Gating",
    "GatingInput",
    "ILLUSTRATION_PHASE",
    "PROCESSING",
    "REVIEWABLE",
    "SKIP_SOURCES",
    "TERMINAL",
    "TRANSITIONS",
    "TransitionContext",
    "TransitionRule",
    "allowed_actions",
    "apply_transition",
    "build_context",
    "build_gating_input",
    "compute_gating",
    "has_resolved_feedback",
    "has_unresolved_feedback",
    "is_illustration_phase",
    "normalize",
    "visible_pages",
]
