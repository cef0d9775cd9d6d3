"""Entity store interface shared by the API and the orchestrator."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Mapping, Optional, Sequence

from storybook_schemas import Character, Page, Project
from storybook_workflow.exceptions import NotFoundError


class EntityStore(ABC):
    """Durable records for projects, pages and characters.

    Every method returns detached copies: mutating a returned entity has no
    effect until it is saved back.
    """

    # Projects

    @abstractmethod
    async def create_project(self, project: Project) -> Project: ...

    @abstractmethod
    async def get_project(self, project_id: str) -> Optional[Project]: ...

    @abstractmethod
    async def get_project_by_token(self, review_token: str) -> Optional[Project]: ...

    @abstractmethod
    async def list_projects(self) -> list[Project]: ...

    @abstractmethod
    async def save_project(self, project: Project) -> Project: ...

    # Pages

    @abstractmethod
    async def list_pages(self, project_id: str) -> list[Page]:
        """Pages of a project ordered by page number."""

    @abstractmethod
    async def get_page(self, page_id: str) -> Optional[Page]: ...

    @abstractmethod
    async def save_page(self, page: Page) -> Page: ...

    @abstractmethod
    async def replace_pages(self, project_id: str, pages: Sequence[Page]) -> list[Page]:
        """Drop every page of the project and insert ``pages`` in one step."""

    @abstractmethod
    async def update_page_fields(self, page_id: str, fields: Mapping[str, Any]) -> Page: ...

    # Characters

    @abstractmethod
    async def list_characters(self, project_id: str) -> list[Character]:
        """Characters of a project, main character first."""

    @abstractmethod
    async def get_character(self, character_id: str) -> Optional[Character]: ...

    @abstractmethod
    async def save_character(self, character: Character) -> Character: ...

    @abstractmethod
    async def delete_character(self, character_id: str) -> bool: ...

    @abstractmethod
    async def update_character_fields(
        self, character_id: str, fields: Mapping[str, Any]
    ) -> Character: ...

    async def close(self) -> None:
        return None

    # Lookups that raise

    async def require_project(self, project_id: str) -> Project:
        project = await self.get_project(project_id)
        if project is None:
            raise NotFoundError("Project", project_id)
        return project

    async def require_project_by_token(self, review_token: str) -> Project:
        project = await self.get_project_by_token(review_token)
        if project is None:
            raise NotFoundError("Project", review_token)
        return project

    async def require_page(self, page_id: str) -> Page:
        page = await self.get_page(page_id)
        if page is None:
            raise NotFoundError("Page", page_id)
        return page

    async def require_character(self, character_id: str) -> Character:
        character = await self.get_character(character_id)
        if character is None:
            raise NotFoundError("Character", character_id)
        return character

    async def save_pages(self, pages: Sequence[Page]) -> list[Page]:
        return [await self.save_page(page) for page in pages]

    async def save_characters(self, characters: Sequence[Character]) -> list[Character]:
        return [await self.save_character(character) for character in characters]


def sort_characters(characters: Sequence[Character]) -> list[Character]:
    return sorted(characters, key=lambda character: (not character.is_main, character.created_at))
