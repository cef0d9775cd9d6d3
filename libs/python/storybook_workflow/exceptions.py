"""Domain exceptions raised by workflow actions.

Each error carries the HTTP status the API surfaces it with, so route handlers
can translate any :class:`WorkflowError` into ``{"error": message}`` uniformly.
"""

from __future__ import annotations

from typing import Iterable, TYPE_CHECKING

if TYPE_CHECKING:  # pragma: no cover - imported for type checking only
    from storybook_providers.classification import ClassifiedError


class WorkflowError(RuntimeError):
    """Base error for workflow actions."""

    status_code: int = 500

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ValidationError(WorkflowError):
    """A required field is missing or empty."""

    status_code = 400


class InvalidStateError(WorkflowError):
    """The action is not legal for the current status or resolution state."""

    status_code = 409

    def __init__(self, message: str, *, expected: Iterable[str] = ()) -> None:
        self.expected = tuple(str(getattr(item, "value", item)) for item in expected)
        if self.expected:
            message = f"{message} (expected: {', '.join(self.expected)})"
        super().__init__(message)


class NotFoundError(WorkflowError):
    """An entity id does not resolve."""

    status_code = 404

    def __init__(self, entity: str, entity_id: str) -> None:
        super().__init__(f"{entity} not found")
        self.entity = entity
        self.entity_id = entity_id


class GenerationError(WorkflowError):
    """The image provider failed; carries the classified error."""

    status_code = 502

    def __init__(self, classified: "ClassifiedError") -> None:
        super().__init__(classified.message)
        self.classified = classified


class StorageError(WorkflowError):
    """Uploading or downloading an object failed."""

    status_code = 502
