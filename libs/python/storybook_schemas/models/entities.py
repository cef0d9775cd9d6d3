"""Domain models describing projects, pages, and characters."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional
from uuid import uuid4

from pydantic import BaseModel, Field, field_validator

from ..enums import (
    AdminReplyType,
    IllustrationType,
    MessageAuthor,
    ProjectStatus,
    TextIntegration,
    normalize_status,
)
from .generation import GenerationFailure

CHARACTER_ATTRIBUTE_FIELDS: tuple[str, ...] = (
    "age",
    "gender",
    "skin_color",
    "hair_color",
    "hair_style",
    "eye_color",
    "clothing",
    "accessories",
    "special_features",
)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return str(uuid4())


class ConversationMessage(BaseModel):
    """Single message in the customer/admin exchange on a page."""

    type: MessageAuthor
    text: str = Field(..., min_length=1)
    at: datetime = Field(default_factory=utcnow)


class FeedbackHistoryEntry(BaseModel):
    """Resolved feedback note archived from ``feedback_notes``."""

    note: str
    created_at: datetime = Field(default_factory=utcnow)
    revision_round: Optional[int] = Field(None, ge=0)
    conversation_thread: Optional[list[ConversationMessage]] = None
    # Set once a send has carried this resolution to the customer.
    delivered: bool = False


class CharacterAction(BaseModel):
    """What a character is doing on a given page, fed into generation prompts."""

    action: Optional[str] = None
    pose: Optional[str] = None
    emotion: Optional[str] = None


class Project(BaseModel):
    """A single illustrated book moving through the production pipeline."""

    id: str = Field(default_factory=new_id)
    book_title: str = Field("Untitled Project", max_length=300)
    author_firstname: Optional[str] = None
    author_lastname: Optional[str] = None
    author_email: Optional[str] = None
    author_phone: Optional[str] = None
    status: ProjectStatus = ProjectStatus.DRAFT
    review_token: Optional[str] = None
    character_send_count: int = Field(0, ge=0)
    illustration_send_count: int = Field(0, ge=0)
    illustration_aspect_ratio: Optional[str] = None
    illustration_text_integration: Optional[str] = None
    style_reference_urls: list[str] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @field_validator("status", mode="before")
    @classmethod
    def normalise_status(cls, value: object) -> object:
        # Legacy rows are accepted here so that business logic never sees them.
        if isinstance(value, str):
            return normalize_status(value)
        return value

    @property
    def author_name(self) -> str:
        name = f"{self.author_firstname or ''} {self.author_lastname or ''}".strip()
        return name or "Customer"


class _FeedbackFields(BaseModel):
    feedback_notes: Optional[str] = None
    feedback_history: list[FeedbackHistoryEntry] = Field(default_factory=list)
    is_resolved: bool = False
    generation_error: Optional[GenerationFailure] = None

    @field_validator("feedback_history", mode="before")
    @classmethod
    def default_history(cls, value: object) -> object:
        return value if value is not None else []


class Page(_FeedbackFields):
    """One illustrated page of a manuscript."""

    id: str = Field(default_factory=new_id)
    project_id: str
    page_number: int = Field(..., ge=1)
    story_text: str = ""
    scene_description: Optional[str] = None
    original_story_text: Optional[str] = None
    original_scene_description: Optional[str] = None
    description_auto_generated: bool = False
    character_ids: list[str] = Field(default_factory=list)
    character_actions: dict[str, CharacterAction] = Field(default_factory=dict)

    illustration_url: Optional[str] = None
    sketch_url: Optional[str] = None
    customer_illustration_url: Optional[str] = None
    customer_sketch_url: Optional[str] = None

    admin_reply: Optional[str] = None
    admin_reply_at: Optional[datetime] = None
    admin_reply_type: Optional[AdminReplyType] = None
    conversation_thread: list[ConversationMessage] = Field(default_factory=list)

    illustration_type: Optional[IllustrationType] = None
    text_integration: Optional[TextIntegration] = None

    is_customer_edited_story_text: bool = False
    is_customer_edited_scene_description: bool = False
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @field_validator("conversation_thread", "character_ids", mode="before")
    @classmethod
    def default_list(cls, value: object) -> object:
        return value if value is not None else []

    @field_validator("character_actions", mode="before")
    @classmethod
    def default_mapping(cls, value: object) -> object:
        return value if value is not None else {}

    @property
    def has_illustration(self) -> bool:
        return bool(self.illustration_url and self.illustration_url.strip())


class Character(_FeedbackFields):
    """A story character, either the main character or a secondary one."""

    id: str = Field(default_factory=new_id)
    project_id: str
    name: Optional[str] = Field(None, max_length=200)
    role: Optional[str] = None
    story_role: Optional[str] = None
    is_main: bool = False
    appears_in: list[str] = Field(default_factory=list)

    age: Optional[str] = None
    gender: Optional[str] = None
    skin_color: Optional[str] = None
    hair_color: Optional[str] = None
    hair_style: Optional[str] = None
    eye_color: Optional[str] = None
    clothing: Optional[str] = None
    accessories: Optional[str] = None
    special_features: Optional[str] = None

    image_url: Optional[str] = None
    sketch_url: Optional[str] = None
    customer_image_url: Optional[str] = None
    customer_sketch_url: Optional[str] = None
    reference_photo_url: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @field_validator("appears_in", mode="before")
    @classmethod
    def default_list(cls, value: object) -> object:
        return value if value is not None else []

    @property
    def has_image(self) -> bool:
        return bool(self.image_url and self.image_url.strip())

    @property
    def has_customer_image(self) -> bool:
        return bool(self.customer_image_url or self.customer_sketch_url)
