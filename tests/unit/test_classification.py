"""Tests for provider error classification."""

import pytest

from storybook_providers import NoImageProducedError, ProviderError, classify_generation_error
from storybook_providers.classification import DEFAULT_MESSAGE, OVERLOADED_MESSAGE
from storybook_schemas import GenerationErrorKind, GenerationStep


K = GenerationErrorKind


@pytest.mark.parametrize(
    ("raw", "kind"),
    [
        ("429 Too Many Requests", K.RATE_LIMITED),
        ("RESOURCE_EXHAUSTED: quota exceeded", K.RATE_LIMITED),
        ("Request was blocked by safety filters", K.CONTENT_POLICY_BLOCKED),
        ("Prompt violates content policy", K.CONTENT_POLICY_BLOCKED),
        ("No image generated", K.NO_IMAGE_PRODUCED),
        ("Billing account disabled for project", K.BILLING_ISSUE),
        ("Read timed out after 120s", K.TIMEOUT),
        ("DEADLINE_EXCEEDED", K.TIMEOUT),
        ("connect ECONNREFUSED 10.0.0.1:443", K.NETWORK_ERROR),
        ("Something odd happened", K.UNKNOWN),
    ],
)
def test_error_kinds(raw: str, kind: GenerationErrorKind) -> None:
    assert classify_generation_error(raw).kind is kind


def test_classification_is_deterministic() -> None:
    raw = "Error 429: rate limit reached for gpt-image-1"
    assert classify_generation_error(raw) == classify_generation_error(raw)


def test_overloaded_service_gets_retry_message() -> None:
    classified = classify_generation_error("503 Service Unavailable: model is overloaded")

    assert classified.kind is K.RATE_LIMITED
    assert classified.is_overloaded
    assert classified.message == OVERLOADED_MESSAGE


def test_keywords_match_whole_words_only() -> None:
    classified = classify_generation_error("delimited payload could not be parsed")

    assert classified.kind is K.UNKNOWN
    assert classified.message == DEFAULT_MESSAGE


def test_upstream_message_is_preferred() -> None:
    raw = 'Gemini error: {"error": {"code": 400, "message": "Prompt is too long"}}'

    classified = classify_generation_error(raw)

    assert classified.message == "Prompt is too long"
    assert classified.technical_details == raw


def test_exceptions_are_classified_by_text() -> None:
    assert classify_generation_error(NoImageProducedError()).kind is K.NO_IMAGE_PRODUCED
    assert classify_generation_error(ProviderError()).technical_details == "ProviderError"


def test_to_failure_keeps_step_and_illustration() -> None:
    failure = classify_generation_error("timeout").to_failure(
        entity_id="page-1",
        step=GenerationStep.SKETCH,
        illustration_url="https://cdn.test/p1.png",
    )

    assert failure.kind is K.TIMEOUT
    assert failure.step is GenerationStep.SKETCH
    assert failure.illustration_url == "https://cdn.test/p1.png"
    assert failure.technical_details == "timeout"
