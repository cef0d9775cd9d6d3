"""Tests for merging cached entities with change-stream records."""

from datetime import timedelta

from storybook_workflow import reconcile

from tests.utils.factories import make_pages, make_project


def _pair():
    project = make_project()
    remote = make_pages(project, 1)[0]
    local = remote.model_copy(deep=True)
    return local, remote


def test_remote_wins_when_local_is_not_newer() -> None:
    local, remote = _pair()
    local.feedback_notes = "Local note"
    remote.story_text = "Server text"

    merged = reconcile(local, remote)

    assert merged is remote
    assert merged.feedback_notes is None


def test_newer_local_keeps_only_sticky_fields() -> None:
    local, remote = _pair()
    local.feedback_notes = "Pending note"
    local.is_resolved = False
    local.story_text = "Local text"
    local.updated_at = remote.updated_at + timedelta(seconds=5)
    remote.story_text = "Server text"
    remote.is_resolved = True

    merged = reconcile(local, remote)

    assert merged.feedback_notes == "Pending note"
    assert merged.is_resolved is False
    assert merged.story_text == "Server text"
    assert merged.updated_at == remote.updated_at
