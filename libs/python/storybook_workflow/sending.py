"""Formal sends to the customer and the send-count protocol."""

from __future__ import annotations

import logging
import secrets
from dataclasses import dataclass
from typing import Optional, Sequence

from storybook_schemas import (
    Character,
    NotificationKind,
    Page,
    Project,
    ProjectStatus,
    SendPhase,
    TransitionAction,
    utcnow,
)

from .feedback import mark_delivered, resolve_all, should_increment_send_count
from .status import ILLUSTRATION_PHASE, apply_transition, build_context, normalize

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class SendResult:
    """What a send changed, for the caller to persist and announce."""

    phase: SendPhase
    previous_status: ProjectStatus
    status: ProjectStatus
    send_count: int
    incremented: bool
    notification: NotificationKind
    review_token: str
    archived_feedback: int = 0
    revision_round: int = 0


def ensure_review_token(project: Project) -> str:
    """Generate the customer review token once; later sends reuse it."""

    if not project.review_token:
        project.review_token = secrets.token_hex(16)
    return project.review_token


def _sync_customer_urls(entity: Page | Character) -> None:
    if isinstance(entity, Page):
        if entity.illustration_url:
            entity.customer_illustration_url = entity.illustration_url
        if entity.sketch_url:
            entity.customer_sketch_url = entity.sketch_url
    else:
        if entity.image_url:
            entity.customer_image_url = entity.image_url
        if entity.sketch_url:
            entity.customer_sketch_url = entity.sketch_url


def snapshot_originals(pages: Sequence[Page]) -> int:
    """Freeze the manuscript text the customer first saw. Never overwrites."""

    frozen = 0
    for page in pages:
        if page.original_story_text:
            continue
        page.original_story_text = page.story_text or ""
        page.original_scene_description = page.scene_description
        frozen += 1
    return frozen


def send_characters(
    project: Project, characters: Sequence[Character], pages: Sequence[Page]
) -> SendResult:
    """Send (or resend) the character designs for review.

    The counter moves only when a secondary character carries an image; a resend
    of pure text edits still moves the project to ``character_review``.
    """

    context = build_context(pages, characters, illustration_phase=False)
    previous = apply_transition(project, TransitionAction.SEND_CHARACTERS, context=context)

    current_count = project.character_send_count
    # Publishing below makes every customer_* URL current, so decide first.
    incremented = should_increment_send_count(characters, exclude_main=True)
    archived = resolve_all(characters, revision_round=current_count)
    mark_delivered(characters)
    for character in characters:
        _sync_customer_urls(character)
        character.updated_at = utcnow()

    if incremented:
        project.character_send_count = current_count + 1
    new_count = project.character_send_count

    snapshot_originals(pages)
    token = ensure_review_token(project)
    project.updated_at = utcnow()

    if new_count >= 2:
        notification = NotificationKind.CHARACTER_REVISIONS
    elif new_count == 1:
        notification = NotificationKind.SECONDARY_CHARACTERS_READY
    else:
        notification = NotificationKind.PROJECT_SENT_TO_CUSTOMER

    logger.info(
        "Characters sent to customer",
        extra={
            "project_id": project.id,
            "send_count": new_count,
            "incremented": incremented,
            "archived_feedback": archived,
        },
    )
    return SendResult(
        phase=SendPhase.CHARACTERS,
        previous_status=previous,
        status=project.status,
        send_count=new_count,
        incremented=incremented,
        notification=notification,
        review_token=token,
        archived_feedback=archived,
        revision_round=max(0, new_count - 1),
    )


def send_sketches(project: Project, pages: Sequence[Page]) -> SendResult:
    """Send (or resend) the page sketches for review.

    The first send from ``characters_approved`` requires every page to have an
    illustration; the transition rejects it otherwise and nothing is touched.
    """

    context = build_context(pages, (), illustration_phase=True)
    previous = apply_transition(project, TransitionAction.SEND_SKETCHES, context=context)

    current_count = project.illustration_send_count
    incremented = should_increment_send_count(pages)
    archived = resolve_all(pages, revision_round=current_count)
    mark_delivered(pages)
    for page in pages:
        _sync_customer_urls(page)
        page.updated_at = utcnow()

    if incremented:
        project.illustration_send_count = current_count + 1
    new_count = project.illustration_send_count

    token = ensure_review_token(project)
    project.updated_at = utcnow()
    notification = (
        NotificationKind.ILLUSTRATIONS_UPDATED
        if current_count > 0
        else NotificationKind.ILLUSTRATIONS_SENT
    )

    logger.info(
        "Sketches sent to customer",
        extra={
            "project_id": project.id,
            "send_count": new_count,
            "incremented": incremented,
            "archived_feedback": archived,
        },
    )
    return SendResult(
        phase=SendPhase.ILLUSTRATIONS,
        previous_status=previous,
        status=project.status,
        send_count=new_count,
        incremented=incremented,
        notification=notification,
        review_token=token,
        archived_feedback=archived,
        revision_round=max(0, new_count - 1),
    )


def send_phase_for(project: Project) -> SendPhase:
    if normalize(project.status) in ILLUSTRATION_PHASE:
        return SendPhase.ILLUSTRATIONS
    return SendPhase.CHARACTERS


def send_to_customer(
    project: Project,
    pages: Sequence[Page],
    characters: Sequence[Character],
    *,
    phase: Optional[SendPhase] = None,
) -> SendResult:
    """Dispatch to the send matching the project's current phase."""

    phase = phase or send_phase_for(project)
    if phase is SendPhase.ILLUSTRATIONS:
        return send_sketches(project, pages)
    return send_characters(project, characters, pages)


__all__ = [
    "SendResult",
    "ensure_review_token",
    "send_characters",
    "send_phase_for",
    "send_sketches",
    "send_to_customer",
    "snapshot_originals",
]
