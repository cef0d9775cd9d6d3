"""Tests for the feedback ledger shared by pages and characters."""

import pytest

from storybook_schemas import AdminReplyType, MessageAuthor
from storybook_workflow import (
    InvalidStateError,
    ValidationError,
    accept_admin_reply,
    add_admin_comment,
    add_admin_reply,
    add_customer_follow_up,
    delete_admin_reply,
    edit_admin_reply,
    has_pending_feedback,
    record_feedback,
    resolve_and_archive,
    should_increment_send_count,
)

from tests.utils.factories import make_character, make_pages, make_project


@pytest.fixture
def page():
    project = make_project()
    return make_pages(project, 1, illustrated=1)[0]


def test_record_feedback_sets_pending_note(page) -> None:
    record_feedback(page, "  The cat should be orange  ")

    assert page.feedback_notes == "The cat should be orange"
    assert page.is_resolved is False
    assert has_pending_feedback(page)
    assert page.conversation_thread[0].type is MessageAuthor.CUSTOMER


def test_blank_feedback_is_rejected(page) -> None:
    with pytest.raises(ValidationError):
        record_feedback(page, "   ")
    assert page.feedback_notes is None


def test_archive_is_idempotent(page) -> None:
    record_feedback(page, "Add a moon")

    assert resolve_and_archive(page, revision_round=1) is True
    history = list(page.feedback_history)
    assert resolve_and_archive(page, revision_round=2) is False

    assert page.feedback_history == history
    assert len(history) == 1
    assert history[0].note == "Add a moon"
    assert history[0].revision_round == 1
    assert page.is_resolved is True
    assert page.feedback_notes is None


def test_full_conversation_is_archived_on_accept(page) -> None:
    record_feedback(page, "Can the boat be red?")
    add_admin_reply(page, "Red clashes with the sunset, how about blue?")
    add_customer_follow_up(page, "Blue works, but darker please")
    add_admin_reply(page, "Navy it is")

    accept_admin_reply(page, revision_round=0)

    entry = page.feedback_history[-1]
    assert entry.note == "Blue works, but darker please"
    assert [message.type for message in entry.conversation_thread] == [
        MessageAuthor.CUSTOMER,
        MessageAuthor.ADMIN,
        MessageAuthor.CUSTOMER,
        MessageAuthor.ADMIN,
    ]
    assert page.admin_reply is None
    assert page.conversation_thread == []
    assert page.is_resolved


def test_admin_cannot_reply_twice_in_a_row(page) -> None:
    record_feedback(page, "Bigger waves")
    add_admin_reply(page, "Sure")
    with pytest.raises(InvalidStateError):
        add_admin_reply(page, "Also, anything else?")


def test_reply_requires_unresolved_feedback(page) -> None:
    with pytest.raises(InvalidStateError):
        add_admin_reply(page, "Hello")

    record_feedback(page, "Bigger waves")
    resolve_and_archive(page)
    with pytest.raises(InvalidStateError):
        add_admin_reply(page, "Done")


def test_edit_reply_rewrites_last_thread_message(page) -> None:
    record_feedback(page, "Remove the bird")
    add_admin_reply(page, "We will remove it")

    edit_admin_reply(page, "We will move it to the background instead")

    assert page.admin_reply == "We will move it to the background instead"
    assert page.conversation_thread[-1].text == page.admin_reply
    assert len(page.conversation_thread) == 2


def test_delete_reply_removes_it_from_the_thread(page) -> None:
    record_feedback(page, "Remove the bird")
    add_admin_reply(page, "We will remove it")

    delete_admin_reply(page)

    assert page.admin_reply is None
    assert page.admin_reply_type is None
    assert [message.type for message in page.conversation_thread] == [MessageAuthor.CUSTOMER]
    add_admin_reply(page, "Second attempt")


def test_follow_up_requires_an_admin_reply(page) -> None:
    record_feedback(page, "Remove the bird")
    with pytest.raises(InvalidStateError):
        add_customer_follow_up(page, "Hello?")


def test_resolve_can_keep_reply_as_comment(page) -> None:
    record_feedback(page, "Brighter colours")
    add_admin_reply(page, "Will do for the next round")

    resolve_and_archive(page, convert_reply=True)

    assert page.admin_reply == "Will do for the next round"
    assert page.admin_reply_type is AdminReplyType.COMMENT


def test_comment_only_on_resolved_feedback(page) -> None:
    with pytest.raises(InvalidStateError):
        add_admin_comment(page, "FYI")

    record_feedback(page, "Brighter colours")
    resolve_and_archive(page)
    add_admin_comment(page, "Colours adjusted in this version")

    assert page.admin_reply_type is AdminReplyType.COMMENT
    with pytest.raises(InvalidStateError):
        add_admin_comment(page, "Another one")


def test_new_feedback_cycle_clears_old_comment(page) -> None:
    record_feedback(page, "Brighter colours")
    resolve_and_archive(page)
    add_admin_comment(page, "Colours adjusted")

    record_feedback(page, "Now too bright")

    assert page.admin_reply is None
    assert [message.text for message in page.conversation_thread] == ["Now too bright"]


def test_character_feedback_has_no_thread() -> None:
    project = make_project()
    character = make_character(project)

    record_feedback(character, "Give her a hat")
    resolve_and_archive(character, revision_round=0)

    assert character.feedback_history[0].conversation_thread is None


def test_send_count_moves_only_for_unpublished_images() -> None:
    project = make_project()
    pages = make_pages(project, 2, illustrated=2)
    for page in pages:
        page.customer_illustration_url = page.illustration_url

    assert should_increment_send_count(pages) is False

    pages[1].illustration_url = "https://cdn.test/p2-v2.png"
    assert should_increment_send_count(pages) is True


def test_main_character_image_is_excluded_when_asked() -> None:
    project = make_project()
    main = make_character(project, is_main=True, image_url="https://cdn.test/main.png")
    secondary = make_character(project)

    assert should_increment_send_count([main, secondary]) is True
    assert should_increment_send_count([main, secondary], exclude_main=True) is False
