"""In-process entity store for tests and local development."""

from __future__ import annotations

import asyncio
from typing import Any, Mapping, Optional, Sequence

from storybook_schemas import Character, Page, Project, utcnow
from storybook_workflow.exceptions import NotFoundError, ValidationError

from .base import EntityStore, sort_characters


class InMemoryEntityStore(EntityStore):
    def __init__(self) -> None:
        self._projects: dict[str, Project] = {}
        self._pages: dict[str, Page] = {}
        self._characters: dict[str, Character] = {}
        self._lock = asyncio.Lock()

    async def create_project(self, project: Project) -> Project:
        async with self._lock:
            if project.id in self._projects:
                raise ValidationError(f"Project {project.id} already exists")
            self._projects[project.id] = project.model_copy(deep=True)
        return project.model_copy(deep=True)

    async def get_project(self, project_id: str) -> Optional[Project]:
        project = self._projects.get(project_id)
        return project.model_copy(deep=True) if project else None

    async def get_project_by_token(self, review_token: str) -> Optional[Project]:
        for project in self._projects.values():
            if review_token and project.review_token == review_token:
                return project.model_copy(deep=True)
        return None

    async def list_projects(self) -> list[Project]:
        projects = sorted(self._projects.values(), key=lambda item: item.created_at, reverse=True)
        return [project.model_copy(deep=True) for project in projects]

    async def save_project(self, project: Project) -> Project:
        async with self._lock:
            if project.id not in self._projects:
                raise NotFoundError("Project", project.id)
            self._projects[project.id] = project.model_copy(deep=True)
        return project

    async def list_pages(self, project_id: str) -> list[Page]:
        pages = [page for page in self._pages.values() if page.project_id == project_id]
        pages.sort(key=lambda page: page.page_number)
        return [page.model_copy(deep=True) for page in pages]

    async def get_page(self, page_id: str) -> Optional[Page]:
        page = self._pages.get(page_id)
        return page.model_copy(deep=True) if page else None

    async def save_page(self, page: Page) -> Page:
        async with self._lock:
            for other in self._pages.values():
                if (
                    other.id != page.id
                    and other.project_id == page.project_id
                    and other.page_number == page.page_number
                ):
                    raise ValidationError(f"Page number {page.page_number} already exists")
            self._pages[page.id] = page.model_copy(deep=True)
        return page

    async def replace_pages(self, project_id: str, pages: Sequence[Page]) -> list[Page]:
        async with self._lock:
            for page_id in [pid for pid, page in self._pages.items() if page.project_id == project_id]:
                del self._pages[page_id]
            for page in pages:
                self._pages[page.id] = page.model_copy(deep=True)
        return await self.list_pages(project_id)

    async def update_page_fields(self, page_id: str, fields: Mapping[str, Any]) -> Page:
        async with self._lock:
            page = self._pages.get(page_id)
            if page is None:
                raise NotFoundError("Page", page_id)
            updated = page.model_copy(update={**fields, "updated_at": utcnow()}, deep=True)
            self._pages[page_id] = updated
        return updated.model_copy(deep=True)

    async def list_characters(self, project_id: str) -> list[Character]:
        characters = [c for c in self._characters.values() if c.project_id == project_id]
        return [character.model_copy(deep=True) for character in sort_characters(characters)]

    async def get_character(self, character_id: str) -> Optional[Character]:
        character = self._characters.get(character_id)
        return character.model_copy(deep=True) if character else None

    async def save_character(self, character: Character) -> Character:
        async with self._lock:
            self._characters[character.id] = character.model_copy(deep=True)
        return character

    async def delete_character(self, character_id: str) -> bool:
        async with self._lock:
            return self._characters.pop(character_id, None) is not None

    async def update_character_fields(
        self, character_id: str, fields: Mapping[str, Any]
    ) -> Character:
        async with self._lock:
            character = self._characters.get(character_id)
            if character is None:
                raise NotFoundError("Character", character_id)
            updated = character.model_copy(update={**fields, "updated_at": utcnow()}, deep=True)
            self._characters[character_id] = updated
        return updated.model_copy(deep=True)
