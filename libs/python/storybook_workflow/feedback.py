"""Feedback ledger shared by pages and characters.

A single pending note lives in ``feedback_notes``; resolving it moves the note
(with the page conversation, when any) into the append-only
``feedback_history``. Pages additionally keep the running exchange of the
current cycle in ``conversation_thread``: customer notes and admin replies in
the order they were written. The latest admin reply is mirrored in
``admin_reply`` so the customer portal can render it without walking the thread.
"""

from __future__ import annotations

import logging
from typing import Iterable, Optional

from storybook_schemas import (
    AdminReplyType,
    Character,
    ConversationMessage,
    FeedbackHistoryEntry,
    MessageAuthor,
    Page,
    utcnow,
)
from storybook_schemas.utils import BlankValueError, ensure_not_blank

from .exceptions import InvalidStateError, ValidationError

logger = logging.getLogger(__name__)

Entity = Page | Character


def _clean(text: Optional[str], field_name: str) -> str:
    try:
        return ensure_not_blank(text, field_name=field_name)
    except BlankValueError as exc:
        raise ValidationError(str(exc)) from exc


def _touch(entity: Entity) -> None:
    entity.updated_at = utcnow()


def has_pending_feedback(entity: Entity) -> bool:
    return bool(entity.feedback_notes) and not entity.is_resolved


def image_url_of(entity: Entity) -> Optional[str]:
    if isinstance(entity, Page):
        return entity.illustration_url
    return entity.image_url


def _clear_reply(page: Page) -> None:
    page.admin_reply = None
    page.admin_reply_at = None
    page.admin_reply_type = None


def _last_author(page: Page) -> Optional[MessageAuthor]:
    if not page.conversation_thread:
        return None
    return page.conversation_thread[-1].type


def record_feedback(entity: Entity, note: Optional[str]) -> Entity:
    """Store ``note`` as the current unresolved feedback."""

    cleaned = _clean(note, "Feedback note")
    if isinstance(entity, Page):
        if not has_pending_feedback(entity):
            # A fresh cycle; anything older was archived with the last resolution.
            entity.conversation_thread = []
            if entity.admin_reply_type is AdminReplyType.COMMENT:
                _clear_reply(entity)
        entity.conversation_thread.append(
            ConversationMessage(type=MessageAuthor.CUSTOMER, text=cleaned)
        )
    entity.feedback_notes = cleaned
    entity.is_resolved = False
    _touch(entity)
    return entity


def resolve_and_archive(
    entity: Entity,
    *,
    revision_round: Optional[int] = None,
    convert_reply: bool = False,
) -> bool:
    """Archive the pending note, if any. Returns whether anything was archived.

    Calling this without a pending note is a no-op: history and ``is_resolved``
    are left as they are. With ``convert_reply`` an outstanding admin reply
    survives as a comment on the resolved feedback; otherwise it is cleared
    together with the rest of the cycle.
    """

    if entity.feedback_notes is None:
        return False

    thread: Optional[list[ConversationMessage]] = None
    if isinstance(entity, Page) and entity.conversation_thread:
        thread = list(entity.conversation_thread)

    entity.feedback_history.append(
        FeedbackHistoryEntry(
            note=entity.feedback_notes,
            revision_round=revision_round,
            conversation_thread=thread,
        )
    )
    entity.feedback_notes = None
    entity.is_resolved = True

    if isinstance(entity, Page):
        entity.conversation_thread = []
        if entity.admin_reply and convert_reply:
            entity.admin_reply_type = AdminReplyType.COMMENT
        elif entity.admin_reply_type is not AdminReplyType.COMMENT:
            _clear_reply(entity)

    _touch(entity)
    logger.debug(
        "Archived feedback",
        extra={"entity_id": entity.id, "history_length": len(entity.feedback_history)},
    )
    return True


def resolve_all(entities: Iterable[Entity], *, revision_round: Optional[int] = None) -> int:
    return sum(
        1 for entity in entities if resolve_and_archive(entity, revision_round=revision_round)
    )


def has_undelivered_resolution(entity: Entity) -> bool:
    """Whether feedback was resolved since the last send to the customer."""

    return any(not entry.delivered for entry in entity.feedback_history)


def mark_delivered(entities: Iterable[Entity]) -> None:
    for entity in entities:
        for entry in entity.feedback_history:
            entry.delivered = True


def add_admin_reply(page: Page, text: Optional[str]) -> Page:
    """Answer the customer's unresolved feedback."""

    cleaned = _clean(text, "Reply text")
    if not page.feedback_notes:
        raise InvalidStateError("No feedback to reply to")
    if page.is_resolved:
        raise InvalidStateError("Feedback is already resolved")
    if page.admin_reply_type is AdminReplyType.REPLY and _last_author(page) is MessageAuthor.ADMIN:
        raise InvalidStateError("Waiting for the customer to respond to the current reply")

    now = utcnow()
    page.conversation_thread.append(
        ConversationMessage(type=MessageAuthor.ADMIN, text=cleaned, at=now)
    )
    page.admin_reply = cleaned
    page.admin_reply_at = now
    page.admin_reply_type = AdminReplyType.REPLY
    _touch(page)
    return page


def add_admin_comment(page: Page, text: Optional[str]) -> Page:
    """Attach an informational comment to a page whose feedback is resolved."""

    cleaned = _clean(text, "Comment text")
    if not page.is_resolved:
        raise InvalidStateError("Comments can only be added to resolved feedback")
    if page.admin_reply:
        raise InvalidStateError("An admin comment already exists")
    page.admin_reply = cleaned
    page.admin_reply_at = utcnow()
    page.admin_reply_type = AdminReplyType.COMMENT
    _touch(page)
    return page


def edit_admin_reply(page: Page, text: Optional[str]) -> Page:
    cleaned = _clean(text, "Reply text")
    if not page.admin_reply:
        raise InvalidStateError("No admin reply to edit")
    if page.admin_reply_type is not AdminReplyType.COMMENT:
        if _last_author(page) is not MessageAuthor.ADMIN:
            raise InvalidStateError("Customer has already responded to this reply")
        last = page.conversation_thread[-1]
        page.conversation_thread[-1] = last.model_copy(update={"text": cleaned})
    page.admin_reply = cleaned
    page.admin_reply_at = utcnow()
    _touch(page)
    return page


def delete_admin_reply(page: Page) -> Page:
    if page.admin_reply_type is AdminReplyType.REPLY and _last_author(page) is MessageAuthor.ADMIN:
        page.conversation_thread.pop()
    _clear_reply(page)
    _touch(page)
    return page


def add_customer_follow_up(page: Page, text: Optional[str]) -> Page:
    """Customer answers the admin reply; their answer becomes the pending note."""

    cleaned = _clean(text, "Follow-up text")
    if not page.admin_reply or page.admin_reply_type is not AdminReplyType.REPLY:
        raise InvalidStateError("There is no admin reply to respond to")
    page.conversation_thread.append(
        ConversationMessage(type=MessageAuthor.CUSTOMER, text=cleaned)
    )
    page.feedback_notes = cleaned
    page.is_resolved = False
    _clear_reply(page)
    _touch(page)
    return page


def accept_admin_reply(page: Page, revision_round: Optional[int] = None) -> Page:
    """Customer accepts the admin reply; the exchange is archived as resolved."""

    if not page.admin_reply or page.admin_reply_type is not AdminReplyType.REPLY:
        raise InvalidStateError("There is no admin reply to accept")
    if not has_pending_feedback(page):
        raise InvalidStateError("Feedback is already resolved")
    resolve_and_archive(page, revision_round=revision_round)
    _clear_reply(page)
    return page


def published_url_of(entity: Entity) -> Optional[str]:
    if isinstance(entity, Page):
        return entity.customer_illustration_url
    return entity.customer_image_url


def has_unpublished_image(entity: Entity) -> bool:
    """True when the working image differs from the copy the customer sees."""

    url = image_url_of(entity)
    if not url or not url.strip():
        return False
    return url != published_url_of(entity)


def should_increment_send_count(
    entities: Iterable[Entity], *, exclude_main: bool = False
) -> bool:
    """True iff a send would push at least one new image to the customer."""

    for entity in entities:
        if exclude_main and isinstance(entity, Character) and entity.is_main:
            continue
        if has_unpublished_image(entity):
            return True
    return False


__all__ = [
    "accept_admin_reply",
    "add_admin_comment",
    "add_admin_reply",
    "add_customer_follow_up",
    "delete_admin_reply",
    "edit_admin_reply",
    "has_pending_feedback",
    "has_undelivered_resolution",
    "has_unpublished_image",
    "image_url_of",
    "mark_delivered",
    "published_url_of",
    "record_feedback",
    "resolve_all",
    "resolve_and_archive",
    "should_increment_send_count",
]
