"""Tests for the illustration, sketch and character generation jobs."""

import pytest

from storybook_providers import ImageProvider, ImageRequest, ImageResponse, ProviderCapabilities
from storybook_providers.exceptions import ProviderResponseError
from storybook_providers.mock import MOCK_PNG
from storybook_schemas import (
    GenerationErrorKind,
    GenerationStep,
    JobState,
    RegenerationCandidate,
    RegenerationDecision,
)
from storybook_store import InMemoryEntityStore
from storybook_workflow import InvalidStateError, NotFoundError, StorageError, record_feedback

from services.orchestrator.app.jobs import CandidateRegistry, CharacterJob, IllustrationJob
from services.orchestrator.app.storage import MemoryObjectStorage, ObjectStorage

from tests.utils.factories import make_character, make_pages, make_project


pytestmark = pytest.mark.anyio("asyncio")


@pytest.fixture
def anyio_backend():
    return "asyncio"


class _StubImageProvider(ImageProvider):
    name = "stub"

    def __init__(self, store=None, *, fail_sketch=None, fail_illustration=None, max_refs=4) -> None:
        self.store = store
        self.fail_sketch = fail_sketch
        self.fail_illustration = fail_illustration
        self.max_refs = max_refs
        self.requests: list[ImageRequest] = []
        self.persisted_at_sketch: list[str | None] = []

    def capabilities(self) -> ProviderCapabilities:
        return ProviderCapabilities(
            supports_reference_images=True,
            supports_aspect_ratio=True,
            max_reference_images=self.max_refs,
        )

    async def generate(self, request: ImageRequest) -> ImageResponse:
        self.requests.append(request)
        if request.is_sketch:
            page_id = request.metadata.get("page_id")
            if self.store is not None and page_id:
                page = await self.store.get_page(page_id)
                self.persisted_at_sketch.append(page.illustration_url if page else None)
            if self.fail_sketch:
                raise ProviderResponseError(self.fail_sketch)
        elif self.fail_illustration:
            raise ProviderResponseError(self.fail_illustration)
        return ImageResponse(
            image_bytes=MOCK_PNG,
            content_type="image/png",
            raw={},
            model="stub-model",
            cost_usd=0.04,
            latency_ms=12.0,
        )


class _BrokenStorage(ObjectStorage):
    async def upload(self, key: str, data: bytes, content_type: str) -> str:
        raise StorageError("bucket is read-only")


@pytest.fixture
async def seeded():
    store = InMemoryEntityStore()
    project = make_project("characters_approved", style_reference_urls=["https://cdn.test/style.png"])
    await store.create_project(project)
    pages = make_pages(project, 3)
    await store.replace_pages(project.id, pages)
    main = make_character(project, is_main=True, image_url="https://cdn.test/main.png")
    await store.save_character(main)
    return store, project, pages


async def test_illustration_then_sketch_from_persisted_url(seeded) -> None:
    store, _, pages = seeded
    provider = _StubImageProvider(store)
    storage = MemoryObjectStorage()
    job = IllustrationJob(store, storage, provider)

    outcome = await job(pages[0])

    assert outcome.outcome == "success"
    stored = await store.require_page(pages[0].id)
    assert stored.illustration_url == outcome.illustration_url
    assert stored.sketch_url == outcome.sketch_url
    assert stored.generation_error is None
    assert len(provider.requests) == 2
    illustration_request, sketch_request = provider.requests
    assert not illustration_request.is_sketch
    assert sketch_request.source_image_url == stored.illustration_url
    assert provider.persisted_at_sketch == [stored.illustration_url]
    assert "https://cdn.test/main.png" in illustration_request.reference_image_urls
    assert storage.read(stored.sketch_url) == MOCK_PNG
    assert job.states[pages[0].id] is JobState.DONE


async def test_sketch_failure_keeps_the_illustration(seeded) -> None:
    store, _, pages = seeded
    provider = _StubImageProvider(store, fail_sketch="Request timed out")
    job = IllustrationJob(store, MemoryObjectStorage(), provider)

    outcome = await job.run(pages[1])

    assert outcome.outcome == "failure"
    assert outcome.step is GenerationStep.SKETCH
    assert outcome.kind is GenerationErrorKind.TIMEOUT
    stored = await store.require_page(pages[1].id)
    assert stored.illustration_url
    assert outcome.illustration_url == stored.illustration_url
    assert stored.sketch_url is None
    assert stored.generation_error.step is GenerationStep.SKETCH


async def test_illustration_failure_never_requests_a_sketch(seeded) -> None:
    store, _, pages = seeded
    provider = _StubImageProvider(store, fail_illustration="No image generated")
    job = IllustrationJob(store, MemoryObjectStorage(), provider)

    outcome = await job.run(pages[0])

    assert outcome.kind is GenerationErrorKind.NO_IMAGE_PRODUCED
    assert all(not request.is_sketch for request in provider.requests)
    stored = await store.require_page(pages[0].id)
    assert stored.illustration_url is None
    assert stored.generation_error.kind is GenerationErrorKind.NO_IMAGE_PRODUCED
    assert job.states[pages[0].id] is JobState.FAILED


async def test_upload_failure_is_a_storage_error(seeded) -> None:
    store, _, pages = seeded
    job = IllustrationJob(store, _BrokenStorage(), _StubImageProvider(store))

    outcome = await job.run(pages[0])

    assert outcome.kind is GenerationErrorKind.STORAGE_ERROR
    assert "read-only" in outcome.technical_details


async def test_reference_images_respect_provider_limit(seeded) -> None:
    store, project, pages = seeded
    for index in range(4):
        await store.save_character(
            make_character(project, name=f"Friend {index}", image_url=f"https://cdn.test/f{index}.png")
        )
    provider = _StubImageProvider(store, max_refs=2)

    await IllustrationJob(store, MemoryObjectStorage(), provider).run(pages[0])

    assert len(provider.requests[0].reference_image_urls) == 2


async def test_regeneration_does_not_touch_the_page(seeded) -> None:
    store, _, pages = seeded
    candidates = CandidateRegistry()
    job = IllustrationJob(store, MemoryObjectStorage(), _StubImageProvider(store), candidates=candidates)
    await job.run(pages[0])
    before = await store.require_page(pages[0].id)

    candidate = await job.regenerate(before)

    assert isinstance(candidate, RegenerationCandidate)
    assert candidate.old_url == before.illustration_url
    assert candidate.new_url != before.illustration_url
    after = await store.require_page(pages[0].id)
    assert after.illustration_url == before.illustration_url
    assert after.sketch_url == before.sketch_url
    assert candidates.pending_page_ids(before.project_id) == [before.id]


async def test_revert_discards_the_candidate(seeded) -> None:
    store, _, pages = seeded
    job = IllustrationJob(store, MemoryObjectStorage(), _StubImageProvider(store))
    await job.run(pages[0])
    before = await store.require_page(pages[0].id)
    await job.regenerate(before)

    result = await job.confirm(before.id, "revert_old")

    assert result.decision is RegenerationDecision.REVERT_OLD
    assert result.page.illustration_url == before.illustration_url
    assert job.candidates.get(before.id) is None
    with pytest.raises(NotFoundError):
        await job.confirm(before.id, RegenerationDecision.KEEP_NEW)


async def test_keep_new_archives_feedback_and_redraws_sketch(seeded) -> None:
    store, project, pages = seeded
    project.illustration_send_count = 2
    await store.save_project(project)
    provider = _StubImageProvider(store)
    job = IllustrationJob(store, MemoryObjectStorage(), provider)
    await job.run(pages[0])
    page = await store.require_page(pages[0].id)
    record_feedback(page, "The moon should be full")
    await store.save_page(page)

    candidate = await job.regenerate(page)
    assert "The moon should be full" in provider.requests[-1].prompt
    result = await job.confirm(page.id, RegenerationDecision.KEEP_NEW)

    assert result.sketch.outcome == "success"
    assert result.page.illustration_url == candidate.new_url
    assert result.page.sketch_url == result.sketch.sketch_url
    assert result.page.feedback_notes is None
    assert result.page.feedback_history[0].revision_round == 2
    assert provider.requests[-1].source_image_url == candidate.new_url


async def test_regenerate_without_illustration_runs_full_job(seeded) -> None:
    store, _, pages = seeded
    job = IllustrationJob(store, MemoryObjectStorage(), _StubImageProvider(store))

    outcome = await job.regenerate(pages[2])

    assert outcome.outcome == "success"
    assert job.candidates.get(pages[2].id) is None


async def test_sketch_only_needs_an_illustration(seeded) -> None:
    store, _, pages = seeded
    job = IllustrationJob(store, MemoryObjectStorage(), _StubImageProvider(store))

    with pytest.raises(InvalidStateError):
        await job.generate_sketch(pages[0])


async def test_character_job_generates_image_and_sketch(seeded) -> None:
    store, project, _ = seeded
    pearl = make_character(project, reference_photo_url="https://cdn.test/photo.jpg")
    await store.save_character(pearl)
    provider = _StubImageProvider()

    outcome = await CharacterJob(store, MemoryObjectStorage(), provider)(pearl)

    assert outcome.outcome == "success"
    stored = await store.require_character(pearl.id)
    assert stored.image_url == outcome.illustration_url
    assert stored.sketch_url == outcome.sketch_url
    references = provider.requests[0].reference_image_urls
    assert references[:2] == ["https://cdn.test/photo.jpg", "https://cdn.test/main.png"]
    assert "Grandma Pearl" in provider.requests[0].prompt
    assert provider.requests[1].source_image_url == stored.image_url
