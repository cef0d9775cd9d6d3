"""Lookup of image providers by the name used in ``IMAGE_PROVIDER``."""

from __future__ import annotations

from typing import Dict, Type

from .base import ImageProvider
from .config import ProviderConfig, load_provider_config
from .exceptions import ProviderConfigError
from .gemini import GeminiProvider
from .mock import MockProvider
from .openai import OpenAIProvider

_REGISTRY: Dict[str, Type[ImageProvider]] = {
    "gemini": GeminiProvider,
    "openai": OpenAIProvider,
    "mock": MockProvider,
}


class ProviderFactory:
    """Builds the configured image provider."""

    @staticmethod
    def names() -> list[str]:
        return sorted(_REGISTRY)

    @staticmethod
    def register(name: str, provider_cls: Type[ImageProvider]) -> None:
        _REGISTRY[name.lower()] = provider_cls

    @staticmethod
    def create(config: ProviderConfig | None = None) -> ImageProvider:
        config = config or load_provider_config()
        try:
            provider_cls = _REGISTRY[config.name.lower()]
        except KeyError:
            raise ProviderConfigError(
                f"Unknown image provider '{config.name}' "
                f"(available: {', '.join(ProviderFactory.names())})"
            ) from None
        return provider_cls(config)
