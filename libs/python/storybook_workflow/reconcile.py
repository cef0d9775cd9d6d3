"""Merge rule for locally cached entities and records arriving from change streams."""

from __future__ import annotations

from typing import TypeVar

from pydantic import BaseModel

STICKY_FIELDS: tuple[str, ...] = ("feedback_notes", "is_resolved")

ModelT = TypeVar("ModelT", bound=BaseModel)


def reconcile(local: ModelT, remote: ModelT) -> ModelT:
    """Return ``remote`` unless ``local`` is strictly newer.

    When the local copy is newer, only the sticky fields are taken from it;
    everything else still follows the remote record.
    """

    local_at = getattr(local, "updated_at", None)
    remote_at = getattr(remote, "updated_at", None)
    if local_at is None or remote_at is None or not local_at > remote_at:
        return remote

    sticky = {
        name: getattr(local, name)
        for name in STICKY_FIELDS
        if name in type(remote).model_fields
    }
    if not sticky:
        return remote
    return remote.model_copy(update=sticky)


__all__ = ["STICKY_FIELDS", "reconcile"]
