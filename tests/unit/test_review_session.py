"""Tests for the customer review session."""

import pytest

from storybook_schemas import ProjectStatus
from storybook_workflow import (
    InvalidStateError,
    NotFoundError,
    ReviewSession,
    ValidationError,
)

from tests.utils.factories import make_character, make_pages, make_project


S = ProjectStatus


def _setup(status=S.CHARACTER_REVIEW, *, with_images=True):
    project = make_project(status, character_send_count=1)
    pages = make_pages(project, 2)
    main = make_character(project, is_main=True, image_url="https://cdn.test/main.png")
    secondary = make_character(
        project, image_url="https://cdn.test/pearl.png" if with_images else None
    )
    return project, pages, [main, secondary]


def test_submit_outside_review_is_rejected() -> None:
    project, pages, characters = _setup(S.SKETCHES_REVIEW)
    with pytest.raises(InvalidStateError):
        ReviewSession(project, pages, characters).submit()


def test_submit_without_feedback_approves_characters() -> None:
    project, pages, characters = _setup()

    result = ReviewSession(project, pages, characters).submit()

    assert result.status is S.CHARACTERS_APPROVED
    assert result.message == "Characters approved successfully"
    assert not result.needs_generation
    assert project.status is S.CHARACTER_REVIEW


def test_character_feedback_requests_revision() -> None:
    project, pages, characters = _setup()
    session = ReviewSession(project, pages, characters)
    session.character_feedback(characters[1].id, "Her glasses should be square")

    result = session.submit()

    assert result.status is S.CHARACTER_REVISION_NEEDED
    assert result.edited_character_ids == [characters[1].id]
    assert result.characters[1].feedback_notes == "Her glasses should be square"
    assert characters[1].feedback_notes is None


def test_secondary_without_image_starts_generation() -> None:
    project, pages, characters = _setup(with_images=False)
    session = ReviewSession(project, pages, characters)
    session.edit_character(characters[1].id, hair_color="white")

    result = session.submit()

    assert result.status is S.CHARACTER_GENERATION
    assert result.needs_generation
    assert result.characters[1].hair_color == "white"
    assert characters[1].hair_color == "silver"


def test_missing_secondary_fields_block_submit() -> None:
    project, pages, characters = _setup()
    session = ReviewSession(project, pages, characters)
    session.edit_character(characters[1].id, eye_color="  ")

    with pytest.raises(ValidationError) as exc:
        session.submit()

    assert "eye_color" in exc.value.message


def test_main_character_is_read_only() -> None:
    project, pages, characters = _setup()
    session = ReviewSession(project, pages, characters)

    with pytest.raises(InvalidStateError):
        session.edit_character(characters[0].id, name="Max")
    with pytest.raises(ValidationError):
        session.edit_character(characters[1].id, image_url="https://evil.test/x.png")


def test_page_edits_are_flagged() -> None:
    project, pages, characters = _setup()
    session = ReviewSession(project, pages, characters)
    session.edit_page(pages[0].id, story_text="Once upon a tide")

    result = session.submit()

    edited = result.pages[0]
    assert edited.story_text == "Once upon a tide"
    assert edited.is_customer_edited_story_text
    assert not edited.is_customer_edited_scene_description
    assert result.edited_page_ids == [pages[0].id]
    assert pages[0].story_text == "Page 1 text"


def test_unknown_entities_raise_not_found() -> None:
    project, pages, characters = _setup()
    session = ReviewSession(project, pages, characters)

    with pytest.raises(NotFoundError):
        session.edit_page("missing", story_text="x")
    with pytest.raises(NotFoundError):
        session.character_feedback("missing", "note")
    assert not session.has_changes
