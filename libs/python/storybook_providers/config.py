"""Configuration models and helpers for provider selection."""

from __future__ import annotations

import os
from typing import Any

from pydantic import BaseModel, Field, ValidationError

PROVIDER_ENV_VAR = "IMAGE_PROVIDER"
DEFAULT_PROVIDER = "mock"

_DEFAULT_MODELS = {
    "gemini": "gemini-2.5-flash-image",
    "openai": "gpt-image-1",
    "mock": "mock",
}


class ProviderSettings(BaseModel):
    """Per-call default parameters."""

    aspect_ratio: str | None = Field(
        None, description="Default aspect ratio, e.g. '16:9'; projects may override it"
    )
    timeout_seconds: float = Field(120.0, gt=0)
    image_size: str | None = Field(
        None, description="Explicit output size for providers that take one (OpenAI)"
    )


class ProviderConfig(BaseModel):
    """Configuration for a single provider instance."""

    name: str
    api_key: str
    model: str
    sketch_model: str | None = Field(
        None, description="Model used for the sketch pass; falls back to ``model``"
    )
    settings: ProviderSettings = Field(default_factory=ProviderSettings)

    class Config:
        frozen = True

    @property
    def effective_sketch_model(self) -> str:
        return self.sketch_model or self.model


def load_provider_config(prefix: str | None = None) -> ProviderConfig:
    """Load configuration from environment variables.

    Args:
        prefix: Optional prefix for environment variables (default uses provider name).

    Environment variables used (assuming prefix "GEMINI"):
        GEMINI_API_KEY
        GEMINI_MODEL (optional, defaults per provider)
        GEMINI_SKETCH_MODEL (optional)
        GEMINI_TIMEOUT_SECONDS (optional)
        GEMINI_ASPECT_RATIO (optional)
        GEMINI_IMAGE_SIZE (optional)

    Returns:
        ProviderConfig object populated from environment variables.

    Raises:
        ValidationError: If required variables are missing or invalid.
    """

    provider_name = (prefix or os.getenv(PROVIDER_ENV_VAR, DEFAULT_PROVIDER)).upper()
    env_prefix = provider_name

    def read_env(key: str, default: Any | None = None) -> Any:
        value = os.getenv(f"{env_prefix}_{key}", default)
        if isinstance(value, str):
            value = value.strip()
            if not value:
                return default
        return value

    name = provider_name.lower()
    if name == "mock":
        api_key = read_env("API_KEY", "mock")
    else:
        api_key = read_env("API_KEY")
    model = read_env("MODEL", _DEFAULT_MODELS.get(name))
    if not api_key or not model:
        raise ValidationError.from_exception_data(
            "ProviderConfig",
            [
                {
                    "loc": ("api_key",),
                    "input": env_prefix,
                    "type": "missing",
                }
            ],
        )

    timeout_raw = read_env("TIMEOUT_SECONDS", 120.0)
    try:
        timeout_seconds = float(timeout_raw)
    except (TypeError, ValueError) as exc:  # pragma: no cover - environment misconfiguration
        raise ValidationError.from_exception_data(
            "ProviderSettings",
            [
                {
                    "loc": ("timeout_seconds",),
                    "input": timeout_raw,
                    "type": "float_parsing",
                }
            ],
        ) from exc

    settings = ProviderSettings(
        aspect_ratio=read_env("ASPECT_RATIO"),
        timeout_seconds=timeout_seconds,
        image_size=read_env("IMAGE_SIZE"),
    )

    return ProviderConfig(
        name=name,
        api_key=api_key,
        model=model,
        sketch_model=read_env("SKETCH_MODEL"),
        settings=settings,
    )
