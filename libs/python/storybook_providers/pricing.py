"""Static pricing tables and helpers for estimating image generation cost."""

from __future__ import annotations

from typing import Dict, Mapping

# USD per generated image.
_OPENAI_PRICING: Mapping[str, float] = {
    "gpt-image-1": 0.042,
    "gpt-image-1-mini": 0.011,
    "dall-e-3": 0.04,
}

_GEMINI_PRICING: Mapping[str, float] = {
    "gemini-2.5-flash-image": 0.039,
    "gemini-2.5-flash-image-preview": 0.039,
    "gemini-3-pro-image-preview": 0.134,
}

_PROVIDER_PRICING: Dict[str, Mapping[str, float]] = {
    "openai": _OPENAI_PRICING,
    "gemini": _GEMINI_PRICING,
}


def estimate_cost(provider: str, model: str, images: int = 1) -> float | None:
    """Approximate cost in USD for a provider response.

    Args:
        provider: Provider identifier ("openai", "gemini", "mock", etc.).
        model: Concrete model name, used to select the right pricing row.
        images: Number of images billed for the request.

    Returns:
        Estimated USD cost, or ``None`` when pricing is unknown.
    """

    provider_key = (provider or "").lower()
    if provider_key == "mock":
        return 0.0

    table = _PROVIDER_PRICING.get(provider_key)
    if not table:
        return None

    per_image = table.get((model or "").lower())
    if per_image is None:
        return None

    return round(per_image * max(images, 0), 6)


__all__ = ["estimate_cost"]
