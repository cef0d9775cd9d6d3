"""Result types carried between generation jobs, batches, and the API."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, Field, computed_field

from ..enums import GenerationErrorKind, GenerationStep, SendPhase


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class GenerationSuccess(BaseModel):
    """Both artifacts exist for the entity."""

    outcome: Literal["success"] = "success"
    entity_id: str
    illustration_url: str
    sketch_url: str
    finished_at: datetime = Field(default_factory=_utcnow)


class GenerationFailure(BaseModel):
    """Classified failure, keeping the raw error for support diagnosis."""

    outcome: Literal["failure"] = "failure"
    entity_id: Optional[str] = None
    kind: GenerationErrorKind = GenerationErrorKind.UNKNOWN
    message: str
    technical_details: str = ""
    step: GenerationStep = GenerationStep.ILLUSTRATION
    illustration_url: Optional[str] = Field(
        None, description="Set when the illustration persisted before the sketch step failed"
    )
    finished_at: datetime = Field(default_factory=_utcnow)


GenerationOutcome = Annotated[
    Union[GenerationSuccess, GenerationFailure], Field(discriminator="outcome")
]


class RegenerationCandidate(BaseModel):
    """Freshly generated illustration awaiting a keep/revert decision."""

    page_id: str
    project_id: str
    old_url: Optional[str] = None
    new_url: str
    created_at: datetime = Field(default_factory=_utcnow)


class BatchProgress(BaseModel):
    """Live snapshot emitted after every job completion."""

    total: int = Field(..., ge=0)
    completed: int = Field(0, ge=0)
    failed: int = Field(0, ge=0)
    running_ids: list[str] = Field(default_factory=list)
    cancel_requested: bool = False


class BatchReport(BaseModel):
    """Terminal report for a batch run."""

    batch_id: Optional[str] = None
    total: int = Field(..., ge=0)
    completed: int = Field(0, ge=0)
    failed: int = Field(0, ge=0)
    cancelled: bool = False
    outcomes: dict[str, GenerationOutcome] = Field(default_factory=dict)

    @property
    def not_started(self) -> int:
        return self.total - self.completed - self.failed


class PushItemResult(BaseModel):
    entity_id: str
    label: Optional[str] = None
    success: bool
    skipped: bool = False
    error: Optional[str] = None


class PushReport(BaseModel):
    """Per-entity outcome of a silent sync."""

    phase: SendPhase
    items: list[PushItemResult] = Field(default_factory=list)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def updated_count(self) -> int:
        return sum(1 for item in self.items if item.success and not item.skipped)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def failed_ids(self) -> list[str]:
        return [item.entity_id for item in self.items if not item.success]
