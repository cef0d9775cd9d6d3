"""Google Gemini image provider implementation."""

from __future__ import annotations

import time
from typing import Any

from google import genai
from google.genai import types

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


class GeminiProvider(ImageProvider):
    name = "gemini"

    def __init__(self, config: ProviderConfig) -> None:
        self._config = config
        self._client = genai.Client(
            api_key=config.api_key,
            http_options=types.HttpOptions(timeout=int(config.settings.timeout_seconds * 1000)),
        )

    def capabilities(self) -> ProviderCapabilities:
        return ProviderCapabilities(
            supports_reference_images=True,
            supports_aspect_ratio=True,
            max_reference_images=14,
        )

    async def generate(self, request: ImageRequest) -> ImageResponse:
        urls = [request.source_image_url] if request.is_sketch else list(request.reference_image_urls)
        images = await download_images(urls, timeout=self._config.settings.timeout_seconds)

        contents: list[Any] = [request.prompt]
        for data, content_type in images:
            contents.append(types.Part.from_bytes(data=data, mime_type=content_type))

        model = self._config.effective_sketch_model if request.is_sketch else self._config.model
        config_kwargs: dict[str, Any] = {"response_modalities": ["IMAGE"]}
        aspect_ratio = request.aspect_ratio or self._config.settings.aspect_ratio
        if aspect_ratio:
            config_kwargs["image_config"] = types.ImageConfig(aspect_ratio=aspect_ratio)

        start = time.perf_counter()
        response = await self._client.aio.models.generate_content(
            model=model,
            contents=contents,
            config=types.GenerateContentConfig(**config_kwargs),
        )
        latency_ms = (time.perf_counter() - start) * 1000

        image_bytes, content_type = self._extract_image(response)
        return ImageResponse(
            image_bytes=image_bytes,
            content_type=content_type,
            raw=response,
            model=model,
            cost_usd=estimate_cost(provider=self._config.name, model=model),
            latency_ms=latency_ms,
        )

    @staticmethod
    def _extract_image(response: Any) -> tuple[bytes, str]:
        candidates = getattr(response, "candidates", None) or []
        for candidate in candidates:
            content = getattr(candidate, "content", None)
            for part in getattr(content, "parts", None) or []:
                inline = getattr(part, "inline_data", None)
                if inline is not None and getattr(inline, "data", None):
                    return inline.data, getattr(inline, "mime_type", None) or "image/png"

        reason = ""
        feedback = getattr(response, "prompt_feedback", None)
        if feedback is not None and getattr(feedback, "block_reason", None):
            reason = f"blocked by safety filters ({feedback.block_reason})"
        elif candidates:
            finish = getattr(candidates[0], "finish_reason", None)
            if finish:
                reason = f"finish reason {finish}"
        raise NoImageProducedError(reason)
