"""DDL for the PostgreSQL entity store."""

from __future__ import annotations

from psycopg_pool import ConnectionPool

# Key columns are kept relational for lookups and uniqueness; the full
# entity document lives in ``data``.
SCHEMA_DDL = """
CREATE TABLE IF NOT EXISTS projects (
    id TEXT PRIMARY KEY,
    status TEXT NOT NULL,
    review_token TEXT UNIQUE,
    character_send_count INTEGER NOT NULL DEFAULT 0 CHECK (character_send_count >= 0),
    illustration_send_count INTEGER NOT NULL DEFAULT 0 CHECK (illustration_send_count >= 0),
    data JSONB NOT NULL,
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
);

CREATE TABLE IF NOT EXISTS pages (
    id TEXT PRIMARY KEY,
    project_id TEXT NOT NULL REFERENCES projects(id) ON DELETE CASCADE,
    page_number INTEGER NOT NULL CHECK (page_number >= 1),
    data JSONB NOT NULL,
    updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    UNIQUE (project_id, page_number)
);

CREATE TABLE IF NOT EXISTS characters (
    id TEXT PRIMARY KEY,
    project_id TEXT NOT NULL REFERENCES projects(id) ON DELETE CASCADE,
    is_main BOOLEAN NOT NULL DEFAULT FALSE,
    data JSONB NOT NULL,
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
);

CREATE INDEX IF NOT EXISTS idx_pages_project ON pages (project_id, page_number);
CREATE INDEX IF NOT EXISTS idx_characters_project ON characters (project_id);
CREATE UNIQUE INDEX IF NOT EXISTS idx_characters_one_main
    ON characters (project_id) WHERE is_main;
"""


def initialise_schema(pool: ConnectionPool) -> None:
    """Create the store tables when they do not exist yet."""

    with pool.connection() as conn, conn.cursor() as cur:
        cur.execute(SCHEMA_DDL)
