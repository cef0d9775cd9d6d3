"""Map raw provider failures onto a small, user-facing taxonomy.

Classification is deterministic: the same raw text always yields the same
kind and message. The raw text is always kept as technical details.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Optional, Pattern

from storybook_schemas import GenerationErrorKind, GenerationFailure, GenerationStep

K = GenerationErrorKind

OVERLOADED_MESSAGE = (
    "The image service is currently overloaded. Generation will work again once it "
    "recovers; please retry in a few minutes."
)
DEFAULT_MESSAGE = "Generation failed - please try again"


def _words(*patterns: str) -> Pattern[str]:
    return re.compile("|".join(rf"\b(?:{pattern})\b" for pattern in patterns))


_OVERLOADED = _words("503", "unavailable", "overloaded", "high demand")
_UPSTREAM_MESSAGE = re.compile(r'\{[\s\S]*?"message"\s*:\s*"((?:[^"\\]|\\.)+)"[\s\S]*\}')

_RULES: tuple[tuple[GenerationErrorKind, Pattern[str], str], ...] = (
    (
        K.RATE_LIMITED,
        _words(r"rate(?:[\s_-]?limit(?:ed|s)?)?", "quota", r"limit(?:ed|s)?", "429",
               "resource[_ ]exhausted", "too many requests"),
        "Too many requests - please wait a moment and try again",
    ),
    (
        K.CONTENT_POLICY_BLOCKED,
        _words("safety", "blocked", "moderation", "policy"),
        "Content flagged by safety filters - please revise the description",
    ),
    (
        K.NO_IMAGE_PRODUCED,
        _words("no image generated", "no image produced", "missing image data"),
        "No image was generated - try editing the description",
    ),
    (
        K.BILLING_ISSUE,
        _words("billing", "payment", "disabled", "402"),
        "Billing issue with the image service - please check the account",
    ),
    (
        K.TIMEOUT,
        _words("timeout", "timed out", r"deadline[_ ]exceeded"),
        "Request timed out - please try again",
    ),
    (
        K.NETWORK_ERROR,
        _words("network", "connection", r"econn\w*", "dns"),
        "Network error - please check your connection and try again",
    ),
)


@dataclass(frozen=True, slots=True)
class ClassifiedError:
    kind: GenerationErrorKind
    message: str
    technical_details: str
    is_overloaded: bool = False

    def to_failure(
        self,
        *,
        entity_id: Optional[str] = None,
        step: GenerationStep = GenerationStep.ILLUSTRATION,
        illustration_url: Optional[str] = None,
    ) -> GenerationFailure:
        return GenerationFailure(
            entity_id=entity_id,
            kind=self.kind,
            message=self.message,
            technical_details=self.technical_details,
            step=step,
            illustration_url=illustration_url,
        )


def extract_upstream_message(raw: str) -> Optional[str]:
    """Return the ``message`` of an embedded JSON error body, if present."""

    match = _UPSTREAM_MESSAGE.search(raw)
    if not match:
        return None
    message = match.group(1).replace('\\"', '"').strip()
    return message or None


def classify_generation_error(raw: object) -> ClassifiedError:
    """Classify ``raw`` (an exception or error text) into the taxonomy."""

    text = str(raw) if raw is not None else ""
    if isinstance(raw, BaseException) and not text:
        text = type(raw).__name__
    lowered = text.lower()

    if _OVERLOADED.search(lowered):
        return ClassifiedError(
            kind=K.RATE_LIMITED,
            message=OVERLOADED_MESSAGE,
            technical_details=text,
            is_overloaded=True,
        )

    kind = K.UNKNOWN
    message = DEFAULT_MESSAGE
    for rule_kind, pattern, friendly in _RULES:
        if pattern.search(lowered):
            kind, message = rule_kind, friendly
            break

    upstream = extract_upstream_message(text)
    if upstream:
        message = upstream

    return ClassifiedError(kind=kind, message=message, technical_details=text)


__all__ = [
    "ClassifiedError",
    "DEFAULT_MESSAGE",
    "OVERLOADED_MESSAGE",
    "classify_generation_error",
    "extract_upstream_message",
]
