"""Core interfaces and dataclasses for image-generation providers."""

from __future__ import annotations

import base64
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, MutableMapping, Optional, Sequence

import httpx

from .exceptions import ProviderResponseError


@dataclass(slots=True)
class ImageRequest:
    """Normalized request passed to providers.

    Without ``source_image_url`` the request produces a full illustration; with
    it, the provider redraws that image as a pencil sketch.
    """

    prompt: str
    reference_image_urls: Sequence[str] = ()
    source_image_url: Optional[str] = None
    aspect_ratio: str | None = None
    metadata: MutableMapping[str, Any] = field(default_factory=dict)

    @property
    def is_sketch(self) -> bool:
        return bool(self.source_image_url)


@dataclass(slots=True)
class ImageResponse:
    """Standard response returned by providers."""

    image_bytes: bytes
    content_type: str
    raw: Any
    model: str
    cost_usd: float | None = None
    latency_ms: float | None = None
    received_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass(slots=True)
class ProviderCapabilities:
    """Capability flags used when choosing a provider."""

    supports_reference_images: bool = False
    supports_aspect_ratio: bool = False
    max_reference_images: int | None = None


class ImageProvider(ABC):
    """Abstract base class implemented by concrete providers."""

    name: str

    @abstractmethod
    def capabilities(self) -> ProviderCapabilities:
        """Return capability metadata."""

    @abstractmethod
    async def generate(self, request: ImageRequest) -> ImageResponse:
        """Generate an illustration, or a sketch when a source image is given."""

    def generate_sync(self, request: ImageRequest) -> ImageResponse:
        """Blocking helper for contexts without async support."""

        import asyncio

        return asyncio.run(self.generate(request))


def decode_data_url(url: str) -> tuple[bytes, str]:
    header, _, payload = url.partition(",")
    content_type = header[5:].split(";")[0] or "image/png"
    return base64.b64decode(payload), content_type


async def download_images(
    urls: Sequence[str], *, timeout: float = 30.0
) -> list[tuple[bytes, str]]:
    """Fetch reference or source images so they can be attached inline."""

    images: list[tuple[bytes, str]] = []
    async with httpx.AsyncClient(timeout=timeout, follow_redirects=True) as client:
        for url in urls:
            if not url:
                continue
            if url.startswith("data:"):
                images.append(decode_data_url(url))
                continue
            response = await client.get(url)
            if response.status_code >= 400:
                raise ProviderResponseError(
                    f"Failed to download image ({response.status_code}): {url}"
                )
            content_type = response.headers.get("content-type", "image/png").split(";")[0]
            images.append((response.content, content_type))
    return images
