"""Tests for the project status machine, gating and page visibility."""

import pytest

from storybook_schemas import (
    FeedbackHistoryEntry,
    Project,
    ProjectStatus,
    TransitionAction,
    ViewerRole,
)
from storybook_workflow import (
    GatingInput,
    InvalidStateError,
    TransitionContext,
    ValidationError,
    apply_transition,
    build_gating_input,
    compute_gating,
    is_illustration_phase,
    normalize,
    send_sketches,
    visible_pages,
)

from tests.utils.factories import make_character, make_pages, make_project


S = ProjectStatus
A = TransitionAction


@pytest.mark.parametrize(
    ("legacy", "canonical"),
    [
        ("trial_review", S.SKETCHES_REVIEW),
        ("illustration_review", S.SKETCHES_REVIEW),
        ("trial_revision", S.SKETCHES_REVISION),
        ("illustration_revision_needed", S.SKETCHES_REVISION),
        ("trial_approved", S.CHARACTERS_APPROVED),
        ("illustrations_generating", S.CHARACTERS_APPROVED),
    ],
)
def test_legacy_statuses_normalize_on_read(legacy: str, canonical: ProjectStatus) -> None:
    assert normalize(legacy) is canonical
    assert Project(status=legacy).status is canonical


def test_unknown_status_is_a_validation_error() -> None:
    with pytest.raises(ValidationError):
        normalize("shipping")


def test_illustration_phase_membership() -> None:
    assert is_illustration_phase("trial_review")
    assert is_illustration_phase(S.ILLUSTRATION_APPROVED)
    assert not is_illustration_phase(S.CHARACTER_REVIEW)
    assert not is_illustration_phase(S.COMPLETED)


@pytest.mark.parametrize(
    ("source", "action", "target"),
    [
        (S.DRAFT, A.REQUEST_INPUT, S.CHARACTER_GENERATION),
        (S.CHARACTER_GENERATION, A.CHARACTER_GENERATION_FINISHED, S.CHARACTER_GENERATION_COMPLETE),
        (S.CHARACTER_GENERATION_COMPLETE, A.SEND_CHARACTERS, S.CHARACTER_REVIEW),
        (S.CHARACTER_REVIEW, A.CUSTOMER_REQUESTED_CHARACTER_REVISION, S.CHARACTER_REVISION_NEEDED),
        (S.CHARACTER_REVISION_NEEDED, A.CHARACTERS_REGENERATED, S.CHARACTERS_REGENERATED),
        (S.CHARACTERS_REGENERATED, A.APPROVE_CHARACTERS, S.CHARACTERS_APPROVED),
        (S.SKETCHES_REVIEW, A.CUSTOMER_REQUESTED_SKETCH_REVISION, S.SKETCHES_REVISION),
        (S.SKETCHES_REVISION, A.APPROVE_ILLUSTRATIONS, S.ILLUSTRATION_APPROVED),
    ],
)
def test_legal_transitions(source: ProjectStatus, action: TransitionAction, target: ProjectStatus) -> None:
    project = make_project(source)
    previous = apply_transition(project, action)
    assert previous is source
    assert project.status is target


def test_illegal_transition_leaves_status_untouched() -> None:
    project = make_project(S.COMPLETED)
    with pytest.raises(InvalidStateError) as exc:
        apply_transition(project, A.SEND_CHARACTERS)
    assert project.status is S.COMPLETED
    assert exc.value.status_code == 409
    assert "draft" in exc.value.expected


def test_unknown_action_is_rejected() -> None:
    with pytest.raises(ValidationError):
        apply_transition(make_project(), "publish_everything")


def test_transitions_accept_legacy_source_status() -> None:
    project = make_project("trial_review")
    apply_transition(project, "customer_requested_sketch_revision")
    assert project.status is S.SKETCHES_REVISION


def test_send_sketches_requires_every_page_generated() -> None:
    project = make_project(S.CHARACTERS_APPROVED)
    pages = make_pages(project, 4, illustrated=3)

    with pytest.raises(InvalidStateError) as exc:
        send_sketches(project, pages)

    assert "3/4" in exc.value.message
    assert project.status is S.CHARACTERS_APPROVED
    assert project.illustration_send_count == 0
    assert all(page.customer_illustration_url is None for page in pages)


def test_send_sketches_with_zero_pages_is_rejected() -> None:
    project = make_project(S.CHARACTERS_APPROVED)
    with pytest.raises(InvalidStateError):
        apply_transition(project, A.SEND_SKETCHES, context=TransitionContext(page_count=0))
    assert project.status is S.CHARACTERS_APPROVED


def test_skip_to_illustrations_requires_no_secondary_characters() -> None:
    project = make_project(S.CHARACTER_GENERATION_COMPLETE)
    with pytest.raises(InvalidStateError):
        apply_transition(
            project,
            A.APPROVE_CHARACTERS,
            context=TransitionContext(secondary_character_count=2),
        )
    assert project.status is S.CHARACTER_GENERATION_COMPLETE

    apply_transition(
        project, A.APPROVE_CHARACTERS, context=TransitionContext(secondary_character_count=0)
    )
    assert project.status is S.CHARACTERS_APPROVED


def test_approve_illustrations_blocked_by_unresolved_feedback() -> None:
    project = make_project(S.SKETCHES_REVIEW)
    with pytest.raises(InvalidStateError):
        apply_transition(
            project,
            A.APPROVE_ILLUSTRATIONS,
            context=TransitionContext(has_unresolved_feedback=True),
        )
    assert project.status is S.SKETCHES_REVIEW


def test_gating_is_pure() -> None:
    data = GatingInput(
        status=S.SKETCHES_REVIEW,
        send_count=2,
        has_unresolved_feedback=True,
        generated_count=6,
        page_count=6,
    )
    first = compute_gating(data)
    second = compute_gating(data)

    assert first == second
    assert first.revision_round == 1
    assert first.status_tag == "Sketches Feedback"
    assert first.is_reviewable and first.is_illustration_phase


def test_gating_for_partially_generated_illustrations() -> None:
    gating = compute_gating(
        GatingInput(status=S.CHARACTERS_APPROVED, generated_count=2, page_count=5)
    )
    assert gating.send_label == "send_sketches"
    assert gating.send_button_disabled
    assert gating.status_tag == "Generating..."
    assert A.SEND_SKETCHES not in gating.allowed_actions


def test_gating_when_all_pages_are_generated() -> None:
    gating = compute_gating(
        GatingInput(status=S.CHARACTERS_APPROVED, generated_count=5, page_count=5)
    )
    assert not gating.send_button_disabled
    assert gating.status_tag == "Sketches Ready"
    assert A.SEND_SKETCHES in gating.allowed_actions


def test_gating_resend_needs_resolved_feedback() -> None:
    waiting = compute_gating(GatingInput(status=S.SKETCHES_REVIEW, send_count=1))
    assert waiting.send_label == "resend_sketches"
    assert waiting.send_button_disabled
    assert waiting.status_tag == "Wait: Sketches Review"

    ready = compute_gating(
        GatingInput(status=S.SKETCHES_REVIEW, send_count=1, has_resolved_feedback=True)
    )
    assert not ready.send_button_disabled


def test_gating_for_terminal_and_setup_statuses() -> None:
    approved = compute_gating(GatingInput(status=S.ILLUSTRATION_APPROVED, send_count=3))
    assert approved.send_label is None
    assert approved.send_button_disabled
    assert approved.is_approved

    draft = compute_gating(GatingInput(status=S.DRAFT))
    assert draft.send_label == "send_characters"
    assert not draft.send_button_disabled
    assert draft.status_tag == "Project Setup"

    generating = compute_gating(GatingInput(status=S.CHARACTER_GENERATION))
    assert generating.is_processing
    assert generating.send_button_disabled


def test_gating_normalizes_legacy_status() -> None:
    gating = compute_gating(GatingInput(status="illustration_review", send_count=1))  # type: ignore[arg-type]
    assert gating.status is S.SKETCHES_REVIEW


def test_unknown_secondary_count_never_offers_skip() -> None:
    unknown = compute_gating(GatingInput(status=S.DRAFT))
    assert A.APPROVE_CHARACTERS not in unknown.allowed_actions

    none_left = compute_gating(GatingInput(status=S.DRAFT, secondary_character_count=0))
    assert A.APPROVE_CHARACTERS in none_left.allowed_actions


def test_build_gating_input_uses_phase_counters() -> None:
    project = make_project(
        S.SKETCHES_REVIEW, character_send_count=2, illustration_send_count=1
    )
    pages = make_pages(project, 3, illustrated=3)
    pages[1].feedback_notes = "Make the sky darker"
    characters = [make_character(project, is_main=True), make_character(project)]

    data = build_gating_input(project, pages, characters)

    assert data.send_count == 1
    assert data.generated_count == 3
    assert data.page_count == 3
    assert data.has_unresolved_feedback
    assert data.secondary_character_count == 1


def test_admin_sees_only_first_page_before_any_illustration() -> None:
    project = make_project(S.CHARACTERS_APPROVED)
    pages = make_pages(project, 4)

    visible = visible_pages(ViewerRole.ADMIN, project.status, list(reversed(pages)))

    assert [page.page_number for page in visible] == [1]


def test_admin_sees_every_page_once_first_is_illustrated() -> None:
    project = make_project(S.CHARACTERS_APPROVED)
    pages = make_pages(project, 4, illustrated=1)

    visible = visible_pages("admin", project.status, pages)

    assert [page.page_number for page in visible] == [1, 2, 3, 4]


def test_customer_sees_published_pages_before_commit() -> None:
    project = make_project(S.CHARACTERS_APPROVED)
    pages = make_pages(project, 4)
    pages[2].customer_illustration_url = "https://cdn.test/p3.png"

    visible = visible_pages(ViewerRole.CUSTOMER, project.status, pages)

    assert [page.page_number for page in visible] == [1, 3]


def test_customer_sees_every_page_after_commit() -> None:
    project = make_project(S.SKETCHES_REVIEW)
    pages = make_pages(project, 3)

    assert len(visible_pages(ViewerRole.CUSTOMER, "trial_review", pages)) == 3
    assert visible_pages(ViewerRole.CUSTOMER, project.status, []) == []


def test_character_resend_waits_for_customer_feedback() -> None:
    waiting = compute_gating(GatingInput(status=S.CHARACTER_REVIEW, send_count=1))
    assert waiting.send_label == "resend_characters"
    assert waiting.send_button_disabled
    assert waiting.status_tag == "Waiting for Review"

    feedback = compute_gating(
        GatingInput(status=S.CHARACTER_REVIEW, send_count=1, has_unresolved_feedback=True)
    )
    assert not feedback.send_button_disabled
    assert feedback.status_tag == "Customer Feedback Received"


def test_resolved_feedback_counts_only_until_it_is_sent() -> None:
    project = make_project(S.SKETCHES_REVIEW, illustration_send_count=1)
    pages = make_pages(project, 1, illustrated=1)
    pages[0].feedback_history = [
        FeedbackHistoryEntry(note="Brighter colours", revision_round=1, delivered=True)
    ]
    pages[0].is_resolved = True

    assert not build_gating_input(project, pages, []).has_resolved_feedback

    pages[0].feedback_history.append(FeedbackHistoryEntry(note="Bigger moon", revision_round=1))
    assert build_gating_input(project, pages, []).has_resolved_feedback
