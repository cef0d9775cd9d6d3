"""Admin-side entity edits whose rules span more than one field."""

from __future__ import annotations

from typing import Any, Iterable, Mapping, Optional, Sequence

from storybook_schemas import (
    Character,
    IllustrationType,
    Page,
    TextIntegration,
    utcnow,
)

from .exceptions import InvalidStateError, ValidationError

PAGE_EDITABLE_FIELDS = frozenset(
    {"story_text", "scene_description", "character_ids", "character_actions"}
)


def set_illustration_type(
    page: Page,
    illustration_type: IllustrationType | str | None,
    *,
    text_integration: TextIntegration | str | None = None,
) -> Page:
    """Set the rendering mode of a page.

    A spread always carries integrated text, so choosing ``spread`` overrides
    any requested ``text_integration``.
    """

    try:
        kind = IllustrationType(illustration_type) if illustration_type else None
        integration = TextIntegration(text_integration) if text_integration else None
    except ValueError as exc:
        raise ValidationError(str(exc)) from exc

    page.illustration_type = kind
    if kind is IllustrationType.SPREAD:
        page.text_integration = TextIntegration.INTEGRATED
    elif integration is not None:
        page.text_integration = integration
    page.updated_at = utcnow()
    return page


def apply_page_update(page: Page, changes: Mapping[str, Any]) -> Page:
    unknown = sorted(set(changes) - PAGE_EDITABLE_FIELDS)
    if unknown:
        raise ValidationError(f"Fields cannot be edited: {', '.join(unknown)}")
    updated = page.model_validate({**page.model_dump(), **changes, "updated_at": utcnow()})
    for name in changes:
        setattr(page, name, getattr(updated, name))
    page.updated_at = updated.updated_at
    return page


def ensure_character_deletable(character: Character) -> None:
    if character.is_main:
        raise InvalidStateError("The main character cannot be deleted")
    if character.has_customer_image:
        raise InvalidStateError(
            "Character cannot be deleted after images were shared with the customer"
        )


def ensure_single_main(existing: Iterable[Character], candidate: Character) -> None:
    if candidate.is_main and any(character.is_main for character in existing):
        raise InvalidStateError("Project already has a main character")


def build_pages(
    project_id: str, parsed: Sequence[Mapping[str, Any]]
) -> list[Page]:
    """Create page entities from parser output, numbered and sorted."""

    pages: list[Page] = []
    seen: set[int] = set()
    for index, item in enumerate(parsed, start=1):
        number = int(item.get("page_number") or index)
        if number in seen:
            raise ValidationError(f"Duplicate page number {number}")
        seen.add(number)
        description: Optional[str] = item.get("scene_description") or None
        pages.append(
            Page(
                project_id=project_id,
                page_number=number,
                story_text=item.get("story_text") or "",
                scene_description=description,
                description_auto_generated=bool(item.get("description_auto_generated")),
            )
        )
    return sorted(pages, key=lambda page: page.page_number)


__all__ = [
    "PAGE_EDITABLE_FIELDS",
    "apply_page_update",
    "build_pages",
    "ensure_character_deletable",
    "ensure_single_main",
    "set_illustration_type",
]
