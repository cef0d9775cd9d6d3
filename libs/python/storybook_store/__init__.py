"""Entity store implementations for projects, pages and characters."""

from __future__ import annotations

import os
from typing import Optional

from .base import EntityStore
from .memory import InMemoryEntityStore


def create_store(database_url: Optional[str] = None) -> EntityStore:
    """Return a PostgreSQL store when a database URL is configured, else in-memory."""

    url = database_url if database_url is not None else os.getenv("DATABASE_URL")
    if url:
        from .postgres import PostgresEntityStore

        return PostgresEntityStore(url)
    return InMemoryEntityStore()


__all__ = ["EntityStore", "InMemoryEntityStore", "create_store"]
