"""Pydantic models for the orchestrator API."""

from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel, Field

from storybook_schemas import RegenerationDecision


class ProviderOverride(BaseModel):
    name: Optional[str] = Field(None, description="Provider identifier: gemini, openai, mock")
    model: Optional[str] = None
    sketch_model: Optional[str] = None
    aspect_ratio: Optional[str] = Field(None, description="e.g. '3:4' or '16:9'")


class GenerateRequest(BaseModel):
    provider: ProviderOverride | None = None


class BatchRequest(BaseModel):
    page_ids: Optional[List[str]] = Field(
        None, description="Pages to generate; defaults to every page missing artwork"
    )
    provider: ProviderOverride | None = None


class CharacterBatchRequest(BaseModel):
    character_ids: Optional[List[str]] = Field(
        None, description="Characters to generate; defaults to every character without an image"
    )
    provider: ProviderOverride | None = None


class ConfirmRequest(BaseModel):
    decision: RegenerationDecision


class BatchStarted(BaseModel):
    batch_id: str
    project_id: str
    kind: str
    state: str
