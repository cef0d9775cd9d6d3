"""OpenAI Images API provider implementation."""

from __future__ import annotations

import base64
import time
from typing import Any, Dict

from openai import AsyncOpenAI

from .base import (
    ImageProvider,
    ImageRequest,
    ImageResponse,
    ProviderCapabilities,
    download_images,
)
from .config import ProviderConfig
from .exceptions import NoImageProducedError
from .pricing import estimate_cost

_ASPECT_TO_SIZE = {
    "1:1": "1024x1024",
    "3:2": "1536x1024",
    "4:3": "1536x1024",
    "16:9": "1536x1024",
    "2:3": "1024x1536",
    "3:4": "1024x1536",
    "9:16": "1024x1536",
}


class OpenAIProvider(ImageProvider):
    name = "openai"

    def __init__(self, config: ProviderConfig) -> None:
        self._config = config
        self._client = AsyncOpenAI(
            api_key=config.api_key, timeout=config.settings.timeout_seconds
        )

    def capabilities(self) -> ProviderCapabilities:
        return ProviderCapabilities(
            supports_reference_images=True,
            supports_aspect_ratio=False,
            max_reference_images=16,
        )

    def _size_for(self, aspect_ratio: str | None) -> str:
        if self._config.settings.image_size:
            return self._config.settings.image_size
        return _ASPECT_TO_SIZE.get(aspect_ratio or "", "auto")

    async def generate(self, request: ImageRequest) -> ImageResponse:
        urls = [request.source_image_url] if request.is_sketch else list(request.reference_image_urls)
        model = self._config.effective_sketch_model if request.is_sketch else self._config.model

        params: Dict[str, Any] = {
            "model": model,
            "prompt": request.prompt,
            "size": self._size_for(request.aspect_ratio or self._config.settings.aspect_ratio),
            "n": 1,
        }

        start = time.perf_counter()
        if urls:
            images = await download_images(urls, timeout=self._config.settings.timeout_seconds)
            params["image"] = [
                (f"reference-{index}.png", data, content_type)
                for index, (data, content_type) in enumerate(images)
            ]
            response = await self._client.images.edit(**params)
        else:
            response = await self._client.images.generate(**params)
        latency_ms = (time.perf_counter() - start) * 1000

        try:
            encoded = response.data[0].b64_json
        except (IndexError, AttributeError, TypeError) as err:
            raise NoImageProducedError("OpenAI response missing image data") from err
        if not encoded:
            raise NoImageProducedError("OpenAI response missing image data")

        return ImageResponse(
            image_bytes=base64.b64decode(encoded),
            content_type="image/png",
            raw=response,
            model=model,
            cost_usd=estimate_cost(provider=self._config.name, model=model),
            latency_ms=latency_ms,
        )
