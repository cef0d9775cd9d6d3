"""Tests for the silent push of working images."""

import pytest

from storybook_schemas import ProjectStatus, SendPhase
from storybook_workflow import (
    InvalidStateError,
    ValidationError,
    build_push_update,
    ensure_push_allowed,
    push_entities,
)

from tests.utils.factories import make_character, make_pages, make_project


pytestmark = pytest.mark.anyio("asyncio")


@pytest.fixture
def anyio_backend():
    return "asyncio"


def test_push_requires_a_prior_send() -> None:
    project = make_project(ProjectStatus.CHARACTER_REVIEW)
    with pytest.raises(InvalidStateError):
        ensure_push_allowed(project, SendPhase.CHARACTERS)
    with pytest.raises(InvalidStateError):
        ensure_push_allowed(project, SendPhase.ILLUSTRATIONS)

    project.character_send_count = 1
    ensure_push_allowed(project, SendPhase.CHARACTERS)


def test_push_refused_while_regeneration_is_pending() -> None:
    project = make_project(ProjectStatus.SKETCHES_REVIEW, illustration_send_count=1)

    with pytest.raises(InvalidStateError) as exc:
        ensure_push_allowed(project, SendPhase.ILLUSTRATIONS, pending_candidates=["page-1"])

    assert "1 page(s)" in exc.value.message
    ensure_push_allowed(project, SendPhase.ILLUSTRATIONS, pending_candidates=[])


def test_push_update_rejects_mismatched_entities() -> None:
    project = make_project()
    page = make_pages(project, 1, illustrated=1)[0]
    character = make_character(project)

    with pytest.raises(ValidationError):
        build_push_update(character, SendPhase.ILLUSTRATIONS)
    with pytest.raises(ValidationError):
        build_push_update(page, SendPhase.CHARACTERS)

    assert build_push_update(page, SendPhase.ILLUSTRATIONS) == {
        "customer_illustration_url": page.illustration_url,
        "customer_sketch_url": page.sketch_url,
    }


async def test_push_reports_each_page_separately() -> None:
    project = make_project(ProjectStatus.SKETCHES_REVIEW, illustration_send_count=1)
    pages = make_pages(project, 4, illustrated=3)
    saved: dict[str, dict] = {}

    async def save(page_id: str, update: dict) -> None:
        if page_id == pages[1].id:
            raise RuntimeError("database unavailable")
        saved[page_id] = update

    report = await push_entities(pages, SendPhase.ILLUSTRATIONS, save)

    assert report.updated_count == 2
    assert report.failed_ids == [pages[1].id]
    assert [item.label for item in report.items] == ["Page 1", "Page 2", "Page 3", "Page 4"]
    assert report.items[3].skipped
    assert report.items[1].error == "database unavailable"
    assert set(saved) == {pages[0].id, pages[2].id}
    assert pages[0].customer_illustration_url == pages[0].illustration_url
    assert pages[1].customer_illustration_url is None
    assert project.illustration_send_count == 1
    assert project.status is ProjectStatus.SKETCHES_REVIEW


async def test_push_characters_copies_image_and_sketch() -> None:
    project = make_project(ProjectStatus.CHARACTER_REVIEW, character_send_count=1)
    character = make_character(
        project,
        image_url="https://cdn.test/pearl-v3.png",
        sketch_url="https://cdn.test/pearl-v3-sketch.png",
    )
    updates = []

    async def save(character_id: str, update: dict) -> None:
        updates.append((character_id, update))

    report = await push_entities([character], SendPhase.CHARACTERS, save)

    assert report.updated_count == 1
    assert updates == [
        (
            character.id,
            {
                "customer_image_url": "https://cdn.test/pearl-v3.png",
                "customer_sketch_url": "https://cdn.test/pearl-v3-sketch.png",
            },
        )
    ]
    assert character.customer_image_url == "https://cdn.test/pearl-v3.png"
