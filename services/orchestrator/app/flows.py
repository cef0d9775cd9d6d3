"""Prefect flows coordinating batch generation for a project."""

from __future__ import annotations

import logging
from typing import Optional, Sequence

from prefect import flow

from storybook_observability import Notifier, log_context, record_status_transition
from storybook_schemas import (
    BatchReport,
    NotificationKind,
    ProjectStatus,
    TransitionAction,
    utcnow,
)
from storybook_store import EntityStore
from storybook_workflow import apply_transition

from .batch import BatchGenerator, pages_needing_illustration
from .jobs import CharacterJob, IllustrationJob

logger = logging.getLogger(__name__)
SERVICE_NAME = "orchestrator"


@flow(name="storybook-illustration-batch", version="0.1.0", validate_parameters=False)
async def run_illustration_batch(
    project_id: str,
    job: IllustrationJob,
    generator: BatchGenerator,
    page_ids: Optional[Sequence[str]] = None,
) -> BatchReport:
    with log_context(project_id=project_id, batch_id=generator.batch_id):
        pages = await job.store.list_pages(project_id)
        if page_ids:
            wanted = set(page_ids)
            selected = [page for page in pages if page.id in wanted]
        else:
            selected = pages_needing_illustration(pages)

        logger.info("Starting illustration batch", extra={"page_count": len(selected)})
        return await generator.run(selected)


async def finish_character_generation(
    store: EntityStore,
    project_id: str,
    report: BatchReport,
    notifier: Optional[Notifier] = None,
) -> Optional[ProjectStatus]:
    """Fire ``character_generation_finished`` when the project is still generating."""

    project = await store.require_project(project_id)
    if project.status is not ProjectStatus.CHARACTER_GENERATION:
        logger.info(
            "Skipping generation-finished transition",
            extra={"project_id": project_id, "status": project.status.value},
        )
        return None

    previous = apply_transition(project, TransitionAction.CHARACTER_GENERATION_FINISHED)
    project.updated_at = utcnow()
    await store.save_project(project)
    record_status_transition(previous.value, project.status.value, service_name=SERVICE_NAME)

    if notifier is not None:
        await notifier.send(
            NotificationKind.CHARACTER_GENERATION_COMPLETE,
            {
                "project_id": project.id,
                "book_title": project.book_title,
                "completed": report.completed,
                "failed": report.failed,
            },
        )
    return project.status


@flow(name="storybook-character-generation", version="0.1.0", validate_parameters=False)
async def run_character_generation(
    project_id: str,
    job: CharacterJob,
    generator: BatchGenerator,
    character_ids: Optional[Sequence[str]] = None,
    notifier: Optional[Notifier] = None,
) -> BatchReport:
    with log_context(project_id=project_id, batch_id=generator.batch_id):
        characters = await job.store.list_characters(project_id)
        if character_ids:
            wanted = set(character_ids)
            selected = [character for character in characters if character.id in wanted]
        else:
            selected = [character for character in characters if not character.has_image]

        logger.info("Starting character generation", extra={"character_count": len(selected)})
        report = await generator.run(selected)
        if not report.cancelled:
            await finish_character_generation(job.store, project_id, report, notifier)
        return report
