"""Tests for the in-memory entity store."""

import pytest

from storybook_store import InMemoryEntityStore, create_store
from storybook_workflow import NotFoundError, ValidationError

from tests.utils.factories import make_character, make_pages, make_project


pytestmark = pytest.mark.anyio("asyncio")


@pytest.fixture
def anyio_backend():
    return "asyncio"


async def test_returned_entities_are_detached() -> None:
    store = InMemoryEntityStore()
    project = make_project()
    await store.create_project(project)

    loaded = await store.require_project(project.id)
    loaded.book_title = "Changed"

    assert (await store.require_project(project.id)).book_title == "The Lighthouse Cat"


async def test_pages_are_listed_in_order_and_replaced_together() -> None:
    store = InMemoryEntityStore()
    project = make_project()
    await store.create_project(project)
    await store.replace_pages(project.id, list(reversed(make_pages(project, 3))))

    assert [page.page_number for page in await store.list_pages(project.id)] == [1, 2, 3]

    replaced = await store.replace_pages(project.id, make_pages(project, 1))
    assert len(replaced) == 1


async def test_duplicate_page_numbers_are_rejected() -> None:
    store = InMemoryEntityStore()
    project = make_project()
    await store.create_project(project)
    await store.replace_pages(project.id, make_pages(project, 2))

    duplicate = make_pages(project, 1)[0]
    with pytest.raises(ValidationError):
        await store.save_page(duplicate)


async def test_update_fields_and_missing_entities() -> None:
    store = InMemoryEntityStore()
    project = make_project()
    await store.create_project(project)
    page = make_pages(project, 1)[0]
    await store.save_page(page)

    updated = await store.update_page_fields(page.id, {"illustration_url": "https://cdn.test/p1.png"})

    assert updated.illustration_url == "https://cdn.test/p1.png"
    assert updated.updated_at >= page.updated_at
    with pytest.raises(NotFoundError):
        await store.update_page_fields("missing", {"sketch_url": "x"})
    with pytest.raises(NotFoundError):
        await store.require_character("missing")


async def test_characters_list_main_first_and_token_lookup() -> None:
    store = InMemoryEntityStore()
    project = make_project(review_token="abc")
    await store.create_project(project)
    await store.save_character(make_character(project))
    await store.save_character(make_character(project, is_main=True))

    characters = await store.list_characters(project.id)

    assert characters[0].is_main
    assert (await store.require_project_by_token("abc")).id == project.id
    assert await store.get_project_by_token("") is None


def test_create_store_without_database_is_in_memory(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("DATABASE_URL", raising=False)
    assert isinstance(create_store(), InMemoryEntityStore)
