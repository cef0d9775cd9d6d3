"""Silent push of working images to the customer-visible copies.

A push copies URLs only: status, counters, feedback history and
notifications are never touched.
"""

from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable, Collection, Sequence

from storybook_schemas import Character, Page, Project, PushItemResult, PushReport, SendPhase

from .exceptions import InvalidStateError, ValidationError

logger = logging.getLogger(__name__)

SaveUpdate = Callable[[str, dict[str, Any]], Awaitable[Any]]


def ensure_push_allowed(
    project: Project,
    phase: SendPhase,
    pending_candidates: Collection[str] = (),
) -> None:
    """Raise unless a silent push is legal for ``phase``.

    ``pending_candidates`` holds the ids of pages with a regeneration
    comparison still awaiting a keep/revert decision.
    """

    if phase is SendPhase.CHARACTERS:
        if project.character_send_count < 1:
            raise InvalidStateError(
                "Cannot push - characters have not been sent to customer yet"
            )
        return

    if project.illustration_send_count < 1:
        raise InvalidStateError(
            "Cannot push - illustrations have not been sent to customer yet"
        )
    if pending_candidates:
        raise InvalidStateError(
            "Cannot push while a regeneration comparison is pending "
            f"({len(pending_candidates)} page(s) awaiting keep/revert)"
        )


def build_push_update(entity: Page | Character, phase: SendPhase) -> dict[str, str]:
    """Field copy that publishes ``entity``; empty when there is nothing to copy."""

    update: dict[str, str] = {}
    if phase is SendPhase.ILLUSTRATIONS:
        if not isinstance(entity, Page):
            raise ValidationError("Illustration push expects pages")
        if entity.illustration_url:
            update["customer_illustration_url"] = entity.illustration_url
        if entity.sketch_url:
            update["customer_sketch_url"] = entity.sketch_url
        return update

    if not isinstance(entity, Character):
        raise ValidationError("Character push expects characters")
    if entity.image_url:
        update["customer_image_url"] = entity.image_url
    if entity.sketch_url:
        update["customer_sketch_url"] = entity.sketch_url
    return update


def _label(entity: Page | Character) -> str:
    if isinstance(entity, Page):
        return f"Page {entity.page_number}"
    return entity.name or ("Main character" if entity.is_main else "Character")


async def push_entities(
    entities: Sequence[Page | Character],
    phase: SendPhase,
    save: SaveUpdate,
) -> PushReport:
    """Apply the push entity by entity, reporting each outcome separately.

    One entity failing to save never prevents the others from being pushed.
    """

    report = PushReport(phase=phase)
    for entity in entities:
        update = build_push_update(entity, phase)
        label = _label(entity)
        if not update:
            report.items.append(
                PushItemResult(entity_id=entity.id, label=label, success=True, skipped=True)
            )
            continue
        try:
            await save(entity.id, update)
        except Exception as exc:  # noqa: BLE001 - reported per entity
            logger.warning(
                "Push failed for entity",
                extra={"entity_id": entity.id, "phase": phase.value, "error": str(exc)},
            )
            report.items.append(
                PushItemResult(entity_id=entity.id, label=label, success=False, error=str(exc))
            )
            continue
        for field_name, value in update.items():
            setattr(entity, field_name, value)
        report.items.append(PushItemResult(entity_id=entity.id, label=label, success=True))

    logger.info(
        "Silent push finished",
        extra={
            "phase": phase.value,
            "updated_count": report.updated_count,
            "failed_count": len(report.failed_ids),
        },
    )
    return report


__all__ = ["SaveUpdate", "build_push_update", "ensure_push_allowed", "push_entities"]
