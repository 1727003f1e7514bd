import logging
import os
import time

from sqlalchemy import (MetaData, Table, Column, Integer, String, Text, Boolean, Index, inspect, text)
from sqlalchemy.ext.asyncio import create_async_engine

logger = logging.getLogger(__name__)

metadata = MetaData()

pastes = Table(
    "pastes",
    metadata,
    Column("id", Integer, primary_key=True),
    Column("token", String),
    Column("title", Text, nullable=False),
    Column("content", Text, nullable=False),
    Column("language", String),
    Column("created_at", Integer, nullable=False, server_default=text("(strftime('%s','now'))")),
    Column("expires_at", Integer),
    Column("views", Integer, nullable=False, server_default=text("0")),
    Column("max_views", Integer),
    Column("is_public", Boolean, nullable=False, server_default=text("0")),
    Column("original_duration", Integer, nullable=False, server_default=text("86400")),
    Index("idx_pastes_token", "token", unique=True),
    Index("idx_pastes_expires_at", "expires_at", "id"),
    Index("idx_pastes_public", "is_public", "created_at"),
    # ids are never handed out twice, even after the newest row is deleted
    sqlite_autoincrement=True,
)


def ensure_db_dir(db_path: str):
    # ensure folder exists before any DB IO
    parent = os.path.dirname(os.path.abspath(db_path))
    os.makedirs(parent, exist_ok=True)


# -- migrations -------------------------------------------------------------
#
# Each migration takes a sync Connection and returns True when it changed
# something. All of them are safe to run against a database they have
# already been applied to, so the whole list runs on every startup.


def _columns(conn) -> set:
    return {c["name"] for c in inspect(conn).get_columns("pastes")}


def _add_column(conn, name: str, ddl: str) -> bool:
    if name in _columns(conn):
        return False
    conn.execute(text(f"ALTER TABLE pastes ADD COLUMN {name} {ddl}"))
    return True


def create_pastes_table(conn) -> bool:
    if inspect(conn).has_table("pastes"):
        return False
    metadata.create_all(conn)
    return True


def add_token_column(conn) -> bool:
    return _add_column(conn, "token", "TEXT")


def add_expires_at_column(conn) -> bool:
    return _add_column(conn, "expires_at", "INTEGER")


def add_language_column(conn) -> bool:
    return _add_column(conn, "language", "TEXT")


def create_token_unique_index(conn) -> bool:
    if any(ix["name"] == "idx_pastes_token" for ix in inspect(conn).get_indexes("pastes")):
        return False
    conn.execute(text("CREATE UNIQUE INDEX IF NOT EXISTS idx_pastes_token ON pastes(token)"))
    return True


def backfill_expires_at(conn) -> bool:
    res = conn.execute(
        text("UPDATE pastes SET expires_at = :now WHERE expires_at IS NULL"),
        {"now": int(time.time())},
    )
    return res.rowcount > 0


def backfill_language(conn) -> bool:
    res = conn.execute(text("UPDATE pastes SET language = 'auto' WHERE language IS NULL"))
    return res.rowcount > 0


def add_views_column(conn) -> bool:
    return _add_column(conn, "views", "INTEGER NOT NULL DEFAULT 0")


def add_max_views_column(conn) -> bool:
    return _add_column(conn, "max_views", "INTEGER")


def add_is_public_column(conn) -> bool:
    return _add_column(conn, "is_public", "INTEGER NOT NULL DEFAULT 0")


def add_original_duration_column(conn) -> bool:
    if not _add_column(conn, "original_duration", "INTEGER NOT NULL DEFAULT 86400"):
        return False
    # existing rows get their real lifetime where it can be derived
    conn.execute(text(
        "UPDATE pastes SET original_duration = expires_at - created_at "
        "WHERE expires_at IS NOT NULL AND created_at IS NOT NULL AND expires_at > created_at"
    ))
    return True


MIGRATIONS = [
    ("create_pastes_table", create_pastes_table),
    ("add_token_column", add_token_column),
    ("add_expires_at_column", add_expires_at_column),
    ("add_language_column", add_language_column),
    ("create_token_unique_index", create_token_unique_index),
    ("backfill_expires_at", backfill_expires_at),
    ("backfill_language", backfill_language),
    ("add_views_column", add_views_column),
    ("add_max_views_column", add_max_views_column),
    ("add_is_public_column", add_is_public_column),
    ("add_original_duration_column", add_original_duration_column),
]


def run_migrations(conn) -> list:
    """Apply every migration in order on a sync connection. Returns the names that changed something."""
    applied = []
    for name, migration in MIGRATIONS:
        if migration(conn):
            logger.info("Applied schema migration %s", name)
            applied.append(name)
    return applied


async def init_db(db_url: str) -> list:
    """Bring the schema up to date using SQLAlchemy async engine. Call this at application startup."""
    async_engine = create_async_engine(db_url, echo=False)
    try:
        async with async_engine.begin() as conn:
            return await conn.run_sync(run_migrations)
    finally:
        await async_engine.dispose()
