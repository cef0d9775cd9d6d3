"""Object storage for generated images."""

from __future__ import annotations

import asyncio
import logging
import mimetypes
import os
from abc import ABC, abstractmethod
from pathlib import Path, PurePosixPath
from uuid import uuid4

from storybook_workflow.exceptions import StorageError

logger = logging.getLogger(__name__)

DEFAULT_STORAGE_ROOT = os.getenv("STORAGE_ROOT", "./data/storage")
DEFAULT_PUBLIC_BASE_URL = os.getenv("STORAGE_PUBLIC_BASE_URL", "http://localhost:8090/files")


def object_key(project_id: str, folder: str, name: str, content_type: str) -> str:
    """Build a unique key such as ``<project>/pages/3/illustration-1a2b3c4d.png``."""

    extension = mimetypes.guess_extension(content_type or "") or ".png"
    if extension == ".jpe":
        extension = ".jpg"
    return f"{project_id}/{folder}/{name}-{uuid4().hex[:8]}{extension}"


def _checked_key(key: str) -> str:
    path = PurePosixPath(key)
    if not key or path.is_absolute() or ".." in path.parts:
        raise StorageError(f"Invalid object key: {key!r}")
    return str(path)


class ObjectStorage(ABC):
    @abstractmethod
    async def upload(self, key: str, data: bytes, content_type: str) -> str:
        """Store ``data`` under ``key`` and return its public URL."""


class LocalObjectStorage(ObjectStorage):
    """Writes objects below a directory served over HTTP at ``public_base_url``."""

    def __init__(
        self,
        root: str | os.PathLike[str] = DEFAULT_STORAGE_ROOT,
        public_base_url: str = DEFAULT_PUBLIC_BASE_URL,
    ) -> None:
        self.root = Path(root)
        self.public_base_url = public_base_url.rstrip("/")

    def _write(self, key: str, data: bytes) -> None:
        target = self.root / key
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(data)

    async def upload(self, key: str, data: bytes, content_type: str) -> str:
        key = _checked_key(key)
        if not data:
            raise StorageError("Refusing to upload an empty object")
        try:
            await asyncio.to_thread(self._write, key, data)
        except OSError as exc:
            logger.exception("Failed to write object", extra={"key": key})
            raise StorageError(f"Failed to store {key}: {exc}") from exc
        return f"{self.public_base_url}/{key}"


class MemoryObjectStorage(ObjectStorage):
    """Keeps objects in a dict; used by tests and local runs without a disk."""

    def __init__(self, public_base_url: str = "memory://objects") -> None:
        self.public_base_url = public_base_url.rstrip("/")
        self.objects: dict[str, tuple[bytes, str]] = {}

    async def upload(self, key: str, data: bytes, content_type: str) -> str:
        key = _checked_key(key)
        if not data:
            raise StorageError("Refusing to upload an empty object")
        self.objects[key] = (data, content_type)
        return f"{self.public_base_url}/{key}"

    def read(self, url_or_key: str) -> bytes:
        key = url_or_key.removeprefix(f"{self.public_base_url}/")
        try:
            return self.objects[key][0]
        except KeyError as exc:
            raise StorageError(f"Object not found: {key}") from exc


def create_storage() -> ObjectStorage:
    backend = os.getenv("STORAGE_BACKEND", "local").lower()
    if backend == "memory":
        return MemoryObjectStorage()
    return LocalObjectStorage()
