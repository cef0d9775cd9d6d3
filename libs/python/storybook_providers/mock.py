"""Deterministic mock provider for tests and offline development."""

from __future__ import annotations

import base64

from .base import ImageProvider, ImageRequest, ImageResponse, ProviderCapabilities
from .config import ProviderConfig, ProviderSettings
from .exceptions import ProviderError

# 1x1 transparent PNG.
MOCK_PNG = base64.b64decode(
    "iVBORw0KGgoAAAANSUhEUgAAAAEAAAABCAYAAAAfFcSJAAAADUlEQVR42mNkYPhfDwAChwGA60e6kgAAAABJRU5ErkJggg=="
)


class MockProvider(ImageProvider):
    name = "mock"

    def __init__(self, config: ProviderConfig | None = None, *, error: str | None = None) -> None:
        if config is None:
            config = ProviderConfig(
                name="mock", api_key="mock", model="mock", settings=ProviderSettings()
            )
        self._config = config
        self._error = error
        self.requests: list[ImageRequest] = []

    def capabilities(self) -> ProviderCapabilities:
        return ProviderCapabilities(
            supports_reference_images=True,
            supports_aspect_ratio=True,
            max_reference_images=4,
        )

    async def generate(self, request: ImageRequest) -> ImageResponse:
        self.requests.append(request)
        if self._error:
            raise ProviderError(self._error)
        return ImageResponse(
            image_bytes=MOCK_PNG,
            content_type="image/png",
            raw={"mock": True, "sketch": request.is_sketch, "prompt": request.prompt[:80]},
            model="mock",
            cost_usd=0.0,
            latency_ms=1.0,
        )
