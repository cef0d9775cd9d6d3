"""Unified image-generation provider abstraction for Gemini and OpenAI."""

from .base import ImageProvider, ImageRequest, ImageResponse, ProviderCapabilities
from .classification import ClassifiedError, classify_generation_error
from .config import ProviderConfig, ProviderSettings, load_provider_config
from .exceptions import NoImageProducedError, ProviderError
from .factory import ProviderFactory
from .mock import MockProvider

__all__ = [
    "ImageProvider",
    "ImageRequest",
    "ImageResponse",
    "ProviderCapabilities",
    "ClassifiedError",
    "classify_generation_error",
    "ProviderConfig",
    "ProviderSettings",
    "load_provider_config",
    "NoImageProducedError",
    "ProviderError",
    "ProviderFactory",
    "MockProvider",
]
