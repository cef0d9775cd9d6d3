"""Customer review session: collect edits locally, then submit them at once."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Optional, Sequence

from storybook_schemas import (
    CHARACTER_ATTRIBUTE_FIELDS,
    Character,
    Page,
    Project,
    ProjectStatus,
    TransitionAction,
    utcnow,
)
from storybook_schemas.utils import missing_fields

from .exceptions import InvalidStateError, NotFoundError, ValidationError
from .feedback import has_pending_feedback, record_feedback
from .status import apply_transition, build_context, normalize

logger = logging.getLogger(__name__)

REVIEW_STATUSES = frozenset(
    {ProjectStatus.CHARACTER_REVIEW, ProjectStatus.CHARACTER_REVISION_NEEDED}
)
EDITABLE_CHARACTER_FIELDS = frozenset(CHARACTER_ATTRIBUTE_FIELDS) | {"name", "role", "story_role"}


@dataclass(slots=True)
class PageEdit:
    story_text: Optional[str] = None
    scene_description: Optional[str] = None


@dataclass(slots=True)
class SubmissionResult:
    project: Project
    previous_status: ProjectStatus
    status: ProjectStatus
    pages: list[Page]
    characters: list[Character]
    edited_page_ids: list[str] = field(default_factory=list)
    edited_character_ids: list[str] = field(default_factory=list)

    @property
    def needs_generation(self) -> bool:
        return self.status is ProjectStatus.CHARACTER_GENERATION

    @property
    def message(self) -> str:
        if self.status is ProjectStatus.CHARACTER_GENERATION:
            return "Changes submitted and character generation started"
        if self.status is ProjectStatus.CHARACTER_REVISION_NEEDED:
            return "Feedback submitted successfully"
        return "Characters approved successfully"


class ReviewSession:
    """Buffers a customer's edits without touching the entities it was given."""

    def __init__(
        self,
        project: Project,
        pages: Sequence[Page],
        characters: Sequence[Character],
    ) -> None:
        self.project = project
        self._pages = {page.id: page for page in pages}
        self._characters = {character.id: character for character in characters}
        self._page_edits: dict[str, PageEdit] = {}
        self._character_edits: dict[str, dict[str, str]] = {}
        self._character_feedback: dict[str, str] = {}

    @property
    def has_changes(self) -> bool:
        return bool(self._page_edits or self._character_edits or self._character_feedback)

    def edit_page(
        self,
        page_id: str,
        *,
        story_text: Optional[str] = None,
        scene_description: Optional[str] = None,
    ) -> None:
        if page_id not in self._pages:
            raise NotFoundError("Page", page_id)
        edit = self._page_edits.setdefault(page_id, PageEdit())
        if story_text is not None:
            edit.story_text = story_text
        if scene_description is not None:
            edit.scene_description = scene_description

    def edit_character(self, character_id: str, **attributes: str) -> None:
        character = self._characters.get(character_id)
        if character is None:
            raise NotFoundError("Character", character_id)
        if character.is_main:
            raise InvalidStateError("The main character cannot be edited during review")
        unknown = sorted(set(attributes) - EDITABLE_CHARACTER_FIELDS)
        if unknown:
            raise ValidationError(f"Unknown character fields: {', '.join(unknown)}")
        self._character_edits.setdefault(character_id, {}).update(attributes)

    def character_feedback(self, character_id: str, note: str) -> None:
        if character_id not in self._characters:
            raise NotFoundError("Character", character_id)
        if not (note or "").strip():
            raise ValidationError("Feedback note is required")
        self._character_feedback[character_id] = note

    def _edited_pages(self) -> tuple[list[Page], list[str]]:
        pages: list[Page] = []
        edited: list[str] = []
        for page_id, page in self._pages.items():
            edit = self._page_edits.get(page_id)
            if edit is None:
                pages.append(page.model_copy(deep=True))
                continue
            update: dict[str, object] = {"updated_at": utcnow()}
            if edit.story_text:
                update["story_text"] = edit.story_text
                update["is_customer_edited_story_text"] = True
            if edit.scene_description:
                update["scene_description"] = edit.scene_description
                update["is_customer_edited_scene_description"] = True
            pages.append(page.model_copy(update=update, deep=True))
            if len(update) > 1:
                edited.append(page_id)
        return pages, edited

    def _edited_characters(self) -> tuple[list[Character], list[str]]:
        characters: list[Character] = []
        edited: list[str] = []
        for character_id, character in self._characters.items():
            copy = character.model_copy(deep=True)
            attributes = self._character_edits.get(character_id)
            if attributes:
                for name, value in attributes.items():
                    setattr(copy, name, value)
                copy.updated_at = utcnow()
                edited.append(character_id)
            note = self._character_feedback.get(character_id)
            if note:
                record_feedback(copy, note)
                if character_id not in edited:
                    edited.append(character_id)
            characters.append(copy)
        return characters, edited

    def submit(self) -> SubmissionResult:
        """Validate and apply every buffered edit, returning the updated copies.

        Raises:
            InvalidStateError: The project is not awaiting a character review.
            ValidationError: A secondary character is missing attribute fields.
        """

        status = normalize(self.project.status)
        if status not in REVIEW_STATUSES:
            raise InvalidStateError(
                "Project is not in review status",
                expected=sorted(item.value for item in REVIEW_STATUSES),
            )

        pages, edited_pages = self._edited_pages()
        characters, edited_characters = self._edited_characters()

        secondary = [character for character in characters if not character.is_main]
        for character in secondary:
            missing = missing_fields(character, CHARACTER_ATTRIBUTE_FIELDS)
            if missing:
                label = character.name or character.id
                raise ValidationError(
                    f"Character {label} is missing required fields: {', '.join(missing)}"
                )

        if any(not character.has_image for character in secondary):
            action = TransitionAction.SUBMIT_CHARACTER_DETAILS
        elif any(has_pending_feedback(character) for character in characters):
            action = TransitionAction.CUSTOMER_REQUESTED_CHARACTER_REVISION
        else:
            action = TransitionAction.APPROVE_CHARACTERS

        project = self.project.model_copy(deep=True)
        context = build_context(pages, characters, illustration_phase=False)
        previous = apply_transition(project, action, context=context)
        project.updated_at = utcnow()

        logger.info(
            "Customer review submitted",
            extra={
                "project_id": project.id,
                "status": project.status.value,
                "edited_pages": len(edited_pages),
                "edited_characters": len(edited_characters),
            },
        )
        return SubmissionResult(
            project=project,
            previous_status=previous,
            status=project.status,
            pages=pages,
            characters=characters,
            edited_page_ids=edited_pages,
            edited_character_ids=edited_characters,
        )


__all__ = ["PageEdit", "ReviewSession", "SubmissionResult"]
