"""Utilities for resolving the image provider used by the orchestrator."""

from __future__ import annotations

import os

from storybook_providers import (
    ImageProvider,
    ProviderConfig,
    ProviderFactory,
    ProviderSettings,
    load_provider_config,
)

from .models import ProviderOverride


def resolve_provider_config(override: ProviderOverride | None = None) -> ProviderConfig:
    provider_name = override.name if override and override.name else os.getenv("IMAGE_PROVIDER", "mock")

    if provider_name and provider_name.lower() == "mock":
        return ProviderConfig(
            name="mock",
            api_key="mock",
            model="mock",
            settings=ProviderSettings(),
        )

    if override and override.name:
        config = load_provider_config(prefix=override.name)
    else:
        config = load_provider_config()

    update_kwargs = {}
    if override:
        if override.model:
            update_kwargs["model"] = override.model
        if override.sketch_model:
            update_kwargs["sketch_model"] = override.sketch_model
        if override.aspect_ratio:
            update_kwargs["settings"] = config.settings.model_copy(
                update={"aspect_ratio": override.aspect_ratio}
            )

    if update_kwargs:
        config = config.model_copy(update=update_kwargs)

    return config


def create_provider(override: ProviderOverride | None = None) -> ImageProvider:
    return ProviderFactory.create(resolve_provider_config(override))
