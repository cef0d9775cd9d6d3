"""PostgreSQL-backed entity store built on a psycopg connection pool."""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Mapping, Optional, Sequence

from psycopg.rows import dict_row
from psycopg_pool import ConnectionPool

from storybook_schemas import Character, Page, Project, utcnow
from storybook_workflow.exceptions import NotFoundError

from .base import EntityStore
from .schema import initialise_schema

logger = logging.getLogger(__name__)


def _document(model: Project | Page | Character) -> str:
    return json.dumps(model.model_dump(mode="json"), ensure_ascii=False)


def _load(model_cls, row: Optional[dict[str, Any]]):
    if row is None:
        return None
    data = row["data"]
    if isinstance(data, str):
        data = json.loads(data)
    return model_cls.model_validate(data)


class PostgresEntityStore(EntityStore):
    """Entity store over psycopg; blocking calls run in worker threads."""

    def __init__(self, conninfo: str, *, min_size: int = 1, max_size: int = 10) -> None:
        # psycopg connection URLs do not use SQLAlchemy's driver suffix.
        self._pool = ConnectionPool(
            conninfo.replace("+psycopg", ""), min_size=min_size, max_size=max_size, open=True
        )
        initialise_schema(self._pool)

    async def close(self) -> None:
        await asyncio.to_thread(self._pool.close)

    # Projects

    def _upsert_project(self, project: Project) -> None:
        with self._pool.connection() as conn, conn.cursor() as cur:
            cur.execute(
                """
                INSERT INTO projects (
                    id, status, review_token, character_send_count,
                    illustration_send_count, data, created_at, updated_at
                )
                VALUES (%s, %s, %s, %s, %s, %s::jsonb, %s, %s)
                ON CONFLICT (id) DO UPDATE SET
                    status = EXCLUDED.status,
                    review_token = EXCLUDED.review_token,
                    character_send_count = EXCLUDED.character_send_count,
                    illustration_send_count = EXCLUDED.illustration_send_count,
                    data = EXCLUDED.data,
                    updated_at = EXCLUDED.updated_at
                """,
                (
                    project.id,
                    project.status.value,
                    project.review_token,
                    project.character_send_count,
                    project.illustration_send_count,
                    _document(project),
                    project.created_at,
                    project.updated_at,
                ),
            )

    def _fetch_project(self, column: str, value: str) -> Optional[Project]:
        with self._pool.connection() as conn, conn.cursor(row_factory=dict_row) as cur:
            cur.execute(f"SELECT data FROM projects WHERE {column} = %s", (value,))
            return _load(Project, cur.fetchone())

    def _fetch_projects(self) -> list[Project]:
        with self._pool.connection() as conn, conn.cursor(row_factory=dict_row) as cur:
            cur.execute("SELECT data FROM projects ORDER BY created_at DESC")
            return [_load(Project, row) for row in cur.fetchall()]

    async def create_project(self, project: Project) -> Project:
        await asyncio.to_thread(self._upsert_project, project)
        return project

    async def get_project(self, project_id: str) -> Optional[Project]:
        return await asyncio.to_thread(self._fetch_project, "id", project_id)

    async def get_project_by_token(self, review_token: str) -> Optional[Project]:
        if not review_token:
            return None
        return await asyncio.to_thread(self._fetch_project, "review_token", review_token)

    async def list_projects(self) -> list[Project]:
        return await asyncio.to_thread(self._fetch_projects)

    async def save_project(self, project: Project) -> Project:
        await asyncio.to_thread(self._upsert_project, project)
        return project

    # Pages

    @staticmethod
    def _upsert_page_sql(cur, page: Page) -> None:
        cur.execute(
            """
            INSERT INTO pages (id, project_id, page_number, data, updated_at)
            VALUES (%s, %s, %s, %s::jsonb, %s)
            ON CONFLICT (id) DO UPDATE SET
                page_number = EXCLUDED.page_number,
                data = EXCLUDED.data,
                updated_at = EXCLUDED.updated_at
            """,
            (page.id, page.project_id, page.page_number, _document(page), page.updated_at),
        )

    def _upsert_page(self, page: Page) -> None:
        with self._pool.connection() as conn, conn.cursor() as cur:
            self._upsert_page_sql(cur, page)

    def _fetch_pages(self, project_id: str) -> list[Page]:
        with self._pool.connection() as conn, conn.cursor(row_factory=dict_row) as cur:
            cur.execute(
                "SELECT data FROM pages WHERE project_id = %s ORDER BY page_number",
                (project_id,),
            )
            return [_load(Page, row) for row in cur.fetchall()]

    def _fetch_page(self, page_id: str) -> Optional[Page]:
        with self._pool.connection() as conn, conn.cursor(row_factory=dict_row) as cur:
            cur.execute("SELECT data FROM pages WHERE id = %s", (page_id,))
            return _load(Page, cur.fetchone())

    def _replace_pages(self, project_id: str, pages: Sequence[Page]) -> None:
        with self._pool.connection() as conn:
            with conn.transaction(), conn.cursor() as cur:
                cur.execute("DELETE FROM pages WHERE project_id = %s", (project_id,))
                for page in pages:
                    self._upsert_page_sql(cur, page)

    async def list_pages(self, project_id: str) -> list[Page]:
        return await asyncio.to_thread(self._fetch_pages, project_id)

    async def get_page(self, page_id: str) -> Optional[Page]:
        return await asyncio.to_thread(self._fetch_page, page_id)

    async def save_page(self, page: Page) -> Page:
        await asyncio.to_thread(self._upsert_page, page)
        return page

    async def replace_pages(self, project_id: str, pages: Sequence[Page]) -> list[Page]:
        await asyncio.to_thread(self._replace_pages, project_id, pages)
        logger.info(
            "Replaced project pages", extra={"project_id": project_id, "page_count": len(pages)}
        )
        return await self.list_pages(project_id)

    async def update_page_fields(self, page_id: str, fields: Mapping[str, Any]) -> Page:
        page = await self.get_page(page_id)
        if page is None:
            raise NotFoundError("Page", page_id)
        updated = page.model_copy(update={**fields, "updated_at": utcnow()})
        await self.save_page(updated)
        return updated

    # Characters

    def _upsert_character(self, character: Character) -> None:
        with self._pool.connection() as conn, conn.cursor() as cur:
            cur.execute(
                """
                INSERT INTO characters (id, project_id, is_main, data, created_at, updated_at)
                VALUES (%s, %s, %s, %s::jsonb, %s, %s)
                ON CONFLICT (id) DO UPDATE SET
                    data = EXCLUDED.data,
                    updated_at = EXCLUDED.updated_at
                """,
                (
                    character.id,
                    character.project_id,
                    character.is_main,
                    _document(character),
                    character.created_at,
                    character.updated_at,
                ),
            )

    def _fetch_characters(self, project_id: str) -> list[Character]:
        with self._pool.connection() as conn, conn.cursor(row_factory=dict_row) as cur:
            cur.execute(
                """
                SELECT data FROM characters
                WHERE project_id = %s
                ORDER BY is_main DESC, created_at ASC
                """,
                (project_id,),
            )
            return [_load(Character, row) for row in cur.fetchall()]

    def _fetch_character(self, character_id: str) -> Optional[Character]:
        with self._pool.connection() as conn, conn.cursor(row_factory=dict_row) as cur:
            cur.execute("SELECT data FROM characters WHERE id = %s", (character_id,))
            return _load(Character, cur.fetchone())

    def _delete_character(self, character_id: str) -> bool:
        with self._pool.connection() as conn, conn.cursor() as cur:
            cur.execute("DELETE FROM characters WHERE id = %s", (character_id,))
            return cur.rowcount > 0

    async def list_characters(self, project_id: str) -> list[Character]:
        return await asyncio.to_thread(self._fetch_characters, project_id)

    async def get_character(self, character_id: str) -> Optional[Character]:
        return await asyncio.to_thread(self._fetch_character, character_id)

    async def save_character(self, character: Character) -> Character:
        await asyncio.to_thread(self._upsert_character, character)
        return character

    async def delete_character(self, character_id: str) -> bool:
        return await asyncio.to_thread(self._delete_character, character_id)

    async def update_character_fields(
        self, character_id: str, fields: Mapping[str, Any]
    ) -> Character:
        character = await self.get_character(character_id)
        if character is None:
            raise NotFoundError("Character", character_id)
        updated = character.model_copy(update={**fields, "updated_at": utcnow()})
        await self.save_character(updated)
        return updated
