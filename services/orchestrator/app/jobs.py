"""Generation jobs: one illustration-plus-sketch (or character image) per entity."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from time import perf_counter
from typing import Optional, Sequence

from storybook_observability import log_context, observe_generation, observe_provider_response
from storybook_providers import ClassifiedError, ImageProvider, ImageRequest, classify_generation_error
from storybook_schemas import (
    Character,
    GenerationErrorKind,
    GenerationFailure,
    GenerationStep,
    GenerationSuccess,
    JobState,
    Page,
    Project,
    RegenerationCandidate,
    RegenerationDecision,
    utcnow,
)
from storybook_store import EntityStore
from storybook_workflow import InvalidStateError, NotFoundError, StorageError, resolve_and_archive

from .prompts import build_character_prompt, build_illustration_prompt, build_sketch_prompt
from .storage import ObjectStorage, object_key

logger = logging.getLogger(__name__)
SERVICE_NAME = "orchestrator"

Outcome = GenerationSuccess | GenerationFailure


def classify_job_error(exc: BaseException) -> ClassifiedError:
    if isinstance(exc, StorageError):
        return ClassifiedError(
            kind=GenerationErrorKind.STORAGE_ERROR,
            message="Failed to save the generated image - please try again",
            technical_details=str(exc),
        )
    return classify_generation_error(exc)


@dataclass(slots=True)
class ConfirmResult:
    page: Page
    decision: RegenerationDecision
    sketch: Optional[Outcome] = None


class CandidateRegistry:
    """Regenerated illustrations awaiting a keep/revert decision, one per page."""

    def __init__(self) -> None:
        self._items: dict[str, RegenerationCandidate] = {}

    def add(self, candidate: RegenerationCandidate) -> None:
        self._items[candidate.page_id] = candidate

    def get(self, page_id: str) -> Optional[RegenerationCandidate]:
        return self._items.get(page_id)

    def pop(self, page_id: str) -> RegenerationCandidate:
        candidate = self._items.pop(page_id, None)
        if candidate is None:
            raise NotFoundError("Regeneration candidate", page_id)
        return candidate

    def for_project(self, project_id: str) -> list[RegenerationCandidate]:
        return [item for item in self._items.values() if item.project_id == project_id]

    def pending_page_ids(self, project_id: str) -> list[str]:
        return [item.page_id for item in self.for_project(project_id)]


class _ImageJob:
    kind = "illustration"

    def __init__(
        self,
        store: EntityStore,
        storage: ObjectStorage,
        provider: ImageProvider,
        *,
        service_name: str = SERVICE_NAME,
    ) -> None:
        self.store = store
        self.storage = storage
        self.provider = provider
        self.service_name = service_name
        self.states: dict[str, JobState] = {}

    def _references(self, urls: Sequence[Optional[str]]) -> list[str]:
        unique = list(dict.fromkeys(url for url in urls if url))
        limit = self.provider.capabilities().max_reference_images
        return unique[:limit] if limit else unique

    async def _render(self, request: ImageRequest) -> tuple[bytes, str]:
        response = await self.provider.generate(request)
        observe_provider_response(
            kind="sketch" if request.is_sketch else self.kind,
            provider=self.provider.name,
            service_name=self.service_name,
            response=response,
        )
        return response.image_bytes, response.content_type

    async def _upload(self, project_id: str, folder: str, name: str, request: ImageRequest) -> str:
        data, content_type = await self._render(request)
        key = object_key(project_id, folder, name, content_type)
        return await self.storage.upload(key, data, content_type)

    def _failure(
        self,
        entity_id: str,
        exc: BaseException,
        step: GenerationStep,
        started: float,
        illustration_url: Optional[str] = None,
    ) -> GenerationFailure:
        classified = classify_job_error(exc)
        failure = classified.to_failure(
            entity_id=entity_id, step=step, illustration_url=illustration_url
        )
        self.states[entity_id] = JobState.FAILED
        logger.warning(
            "Generation failed",
            extra={
                "entity_id": entity_id,
                "step": step.value,
                "kind": classified.kind.value,
                "error": classified.technical_details,
            },
        )
        observe_generation(
            self.kind,
            "failure",
            perf_counter() - started,
            service_name=self.service_name,
            error_kind=classified.kind.value,
        )
        return failure

    def _success(self, entity_id: str, image_url: str, sketch_url: str, started: float) -> GenerationSuccess:
        self.states[entity_id] = JobState.DONE
        observe_generation(self.kind, "success", perf_counter() - started, service_name=self.service_name)
        logger.info("Generation finished", extra={"entity_id": entity_id})
        return GenerationSuccess(entity_id=entity_id, illustration_url=image_url, sketch_url=sketch_url)


class IllustrationJob(_ImageJob):
    """Generates a page illustration, persists it, then derives the sketch from it."""

    kind = "illustration"

    def __init__(
        self,
        store: EntityStore,
        storage: ObjectStorage,
        provider: ImageProvider,
        *,
        candidates: Optional[CandidateRegistry] = None,
        service_name: str = SERVICE_NAME,
    ) -> None:
        super().__init__(store, storage, provider, service_name=service_name)
        self.candidates = candidates if candidates is not None else CandidateRegistry()

    async def __call__(self, page: Page) -> Outcome:
        return await self.run(page)

    async def _context(self, page: Page) -> tuple[Project, list[Character]]:
        project = await self.store.require_project(page.project_id)
        characters = await self.store.list_characters(page.project_id)
        return project, characters

    async def _illustrate(self, page: Page) -> str:
        project, characters = await self._context(page)
        on_page = [
            character
            for character in characters
            if not page.character_ids or character.id in page.character_ids
        ]
        feedback = page.feedback_notes if not page.is_resolved else None
        request = ImageRequest(
            prompt=build_illustration_prompt(project, page, characters, feedback=feedback),
            reference_image_urls=self._references(
                [character.image_url for character in on_page] + list(project.style_reference_urls)
            ),
            aspect_ratio=project.illustration_aspect_ratio,
            metadata={"page_id": page.id, "page_number": page.page_number},
        )
        return await self._upload(
            page.project_id, f"pages/{page.page_number}", "illustration", request
        )

    async def _persist_error(self, page_id: str, failure: GenerationFailure) -> None:
        try:
            await self.store.update_page_fields(page_id, {"generation_error": failure})
        except Exception:
            logger.exception("Failed to record generation error", extra={"page_id": page_id})
            raise

    async def _sketch_step(self, page: Page, started: float) -> Outcome:
        self.states[page.id] = JobState.GENERATING_SKETCH
        try:
            request = ImageRequest(
                prompt=build_sketch_prompt(),
                source_image_url=page.illustration_url,
                metadata={"page_id": page.id, "page_number": page.page_number},
            )
            sketch_url = await self._upload(
                page.project_id, f"pages/{page.page_number}", "sketch", request
            )
            await self.store.update_page_fields(
                page.id, {"sketch_url": sketch_url, "generation_error": None}
            )
        except Exception as exc:  # noqa: BLE001 - converted into a per-page failure
            failure = self._failure(
                page.id, exc, GenerationStep.SKETCH, started, illustration_url=page.illustration_url
            )
            await self._persist_error(page.id, failure)
            return failure
        return self._success(page.id, page.illustration_url or "", sketch_url, started)

    async def run(self, page: Page) -> Outcome:
        """Generate the illustration and its sketch for ``page``.

        The illustration is uploaded and stored on the page before the sketch
        is requested, so a sketch failure never loses a finished illustration.
        """

        started = perf_counter()
        with log_context(project_id=page.project_id, page_id=page.id):
            self.states[page.id] = JobState.GENERATING_ILLUSTRATION
            try:
                illustration_url = await self._illustrate(page)
                page = await self.store.update_page_fields(
                    page.id, {"illustration_url": illustration_url}
                )
            except Exception as exc:  # noqa: BLE001 - converted into a per-page failure
                failure = self._failure(page.id, exc, GenerationStep.ILLUSTRATION, started)
                await self._persist_error(page.id, failure)
                return failure
            return await self._sketch_step(page, started)

    async def regenerate(self, page: Page) -> RegenerationCandidate | Outcome:
        """Produce a new illustration for comparison without replacing the current one."""

        if not page.has_illustration:
            return await self.run(page)

        started = perf_counter()
        with log_context(project_id=page.project_id, page_id=page.id):
            self.states[page.id] = JobState.GENERATING_ILLUSTRATION
            try:
                new_url = await self._illustrate(page)
            except Exception as exc:  # noqa: BLE001 - converted into a per-page failure
                failure = self._failure(page.id, exc, GenerationStep.ILLUSTRATION, started)
                await self._persist_error(page.id, failure)
                return failure

            candidate = RegenerationCandidate(
                page_id=page.id,
                project_id=page.project_id,
                old_url=page.illustration_url,
                new_url=new_url,
            )
            self.candidates.add(candidate)
            self.states[page.id] = JobState.DONE
            logger.info("Regeneration candidate ready", extra={"new_url": new_url})
            return candidate

    async def confirm(self, page_id: str, decision: RegenerationDecision | str) -> ConfirmResult:
        """Keep or discard the pending candidate for ``page_id``.

        ``keep_new`` stores the new illustration, archives pending feedback and
        then regenerates the sketch; ``revert_old`` writes nothing.
        """

        decision = RegenerationDecision(decision)
        candidate = self.candidates.pop(page_id)
        page = await self.store.require_page(page_id)

        with log_context(project_id=page.project_id, page_id=page.id):
            if decision is RegenerationDecision.REVERT_OLD:
                logger.info("Regeneration reverted")
                return ConfirmResult(page=page, decision=decision)

            project = await self.store.require_project(page.project_id)
            resolve_and_archive(page, revision_round=project.illustration_send_count)
            page.illustration_url = candidate.new_url
            page.generation_error = None
            page.updated_at = utcnow()
            await self.store.save_page(page)
            logger.info("Regeneration kept", extra={"new_url": candidate.new_url})

            sketch = await self._sketch_step(page, perf_counter())
            page = await self.store.require_page(page_id)
            return ConfirmResult(page=page, decision=decision, sketch=sketch)

    async def generate_sketch(self, page: Page) -> Outcome:
        if not page.has_illustration:
            raise InvalidStateError("Page has no illustration to sketch")
        with log_context(project_id=page.project_id, page_id=page.id):
            return await self._sketch_step(page, perf_counter())


class CharacterJob(_ImageJob):
    """Generates a character image and its sketch."""

    kind = "character"

    async def __call__(self, character: Character) -> Outcome:
        return await self.run(character)

    async def _persist_error(self, character_id: str, failure: GenerationFailure) -> None:
        try:
            await self.store.update_character_fields(character_id, {"generation_error": failure})
        except Exception:
            logger.exception(
                "Failed to record generation error", extra={"character_id": character_id}
            )
            raise

    async def run(self, character: Character) -> Outcome:
        started = perf_counter()
        folder = f"characters/{character.id}"
        with log_context(project_id=character.project_id, character_id=character.id):
            self.states[character.id] = JobState.GENERATING_ILLUSTRATION
            try:
                project = await self.store.require_project(character.project_id)
                characters = await self.store.list_characters(character.project_id)
                main_images = [
                    other.image_url
                    for other in characters
                    if other.is_main and other.id != character.id
                ]
                request = ImageRequest(
                    prompt=build_character_prompt(project, character),
                    reference_image_urls=self._references(
                        [character.reference_photo_url, *main_images, *project.style_reference_urls]
                    ),
                    metadata={"character_id": character.id},
                )
                image_url = await self._upload(character.project_id, folder, "image", request)
                character = await self.store.update_character_fields(
                    character.id, {"image_url": image_url}
                )
            except Exception as exc:  # noqa: BLE001 - converted into a per-character failure
                failure = self._failure(character.id, exc, GenerationStep.ILLUSTRATION, started)
                await self._persist_error(character.id, failure)
                return failure

            self.states[character.id] = JobState.GENERATING_SKETCH
            try:
                request = ImageRequest(
                    prompt=build_sketch_prompt(),
                    source_image_url=image_url,
                    metadata={"character_id": character.id},
                )
                sketch_url = await self._upload(character.project_id, folder, "sketch", request)
                await self.store.update_character_fields(
                    character.id, {"sketch_url": sketch_url, "generation_error": None}
                )
            except Exception as exc:  # noqa: BLE001 - converted into a per-character failure
                failure = self._failure(
                    character.id, exc, GenerationStep.SKETCH, started, illustration_url=image_url
                )
                await self._persist_error(character.id, failure)
                return failure
            return self._success(character.id, image_url, sketch_url, started)


__all__ = [
    "CandidateRegistry",
    "CharacterJob",
    "ConfirmResult",
    "IllustrationJob",
    "classify_job_error",
]
