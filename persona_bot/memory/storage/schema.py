from __future__ import annotations

import logging
from pathlib import Path

import aiosqlite

from .utils import _sqlite_memory_connection

logger = logging.getLogger("persona_bot")

NAMESPACED_TABLES = ("global_memory", "user_memory", "facts", "relationships")


class MemorySchemaMixin:
    SCHEMA_VERSION = 1

    def __init__(self, db_path: Path) -> None:
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

    async def init(self) -> None:
        async with _sqlite_memory_connection(self.db_path) as db:
            await db.execute("PRAGMA journal_mode=WAL")
            async with db.execute("PRAGMA user_version") as cursor:
                row = await cursor.fetchone()
            version = int(row[0]) if row else 0

            if version > self.SCHEMA_VERSION:
                raise RuntimeError(
                    "SQLite schema version mismatch detected (database is newer than this bot build). "
                    f"Found user_version={version}, supported={self.SCHEMA_VERSION}."
                )

            await self._create_schema(db)
            await self._migrate_schema(db)
            await self._create_indexes(db)
            if version != self.SCHEMA_VERSION:
                await db.execute(f"PRAGMA user_version = {self.SCHEMA_VERSION}")
            await db.commit()
        logger.info("Memory database loaded from %s", self.db_path)

    async def _create_schema(self, db: aiosqlite.Connection) -> None:
        await db.executescript(
            """
            CREATE TABLE IF NOT EXISTS global_memory (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                character_id TEXT NOT NULL DEFAULT 'default',
                content TEXT NOT NULL,
                created_at DATETIME NOT NULL DEFAULT CURRENT_TIMESTAMP,
                UNIQUE(character_id, content)
            );

            CREATE TABLE IF NOT EXISTS user_memory (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                character_id TEXT NOT NULL DEFAULT 'default',
                user_id TEXT NOT NULL,
                key TEXT NOT NULL,
                value TEXT NOT NULL,
                created_at DATETIME NOT NULL DEFAULT CURRENT_TIMESTAMP,
                UNIQUE(character_id, user_id, key)
            );

            CREATE TABLE IF NOT EXISTS facts (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                character_id TEXT NOT NULL DEFAULT 'default',
                topic TEXT NOT NULL,
                content TEXT NOT NULL,
                created_at DATETIME NOT NULL DEFAULT CURRENT_TIMESTAMP,
                UNIQUE(character_id, topic)
            );

            CREATE TABLE IF NOT EXISTS relationships (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                character_id TEXT NOT NULL DEFAULT 'default',
                user_id_1 TEXT NOT NULL,
                user_id_2 TEXT NOT NULL,
                relationship_type TEXT NOT NULL,
                description TEXT NOT NULL DEFAULT '',
                created_at DATETIME NOT NULL DEFAULT CURRENT_TIMESTAMP,
                UNIQUE(character_id, user_id_1, user_id_2, relationship_type)
            );
            """
        )

    async def _create_indexes(self, db: aiosqlite.Connection) -> None:
        await db.executescript(
            """
            CREATE INDEX IF NOT EXISTS idx_global_memory_character_created
            ON global_memory(character_id, created_at DESC);

            CREATE INDEX IF NOT EXISTS idx_user_memory_character_user
            ON user_memory(character_id, user_id);

            CREATE INDEX IF NOT EXISTS idx_relationships_character_users
            ON relationships(character_id, user_id_1, user_id_2);
            """
        )

    async def _table_columns(self, db: aiosqlite.Connection, table_name: str) -> set[str]:
        cols: set[str] = set()
        try:
            async with db.execute(f"PRAGMA table_info({table_name})") as cursor:
                rows = await cursor.fetchall()
        except aiosqlite.Error:
            return cols
        for row in rows:
            cols.add(str(row[1]))
        return cols

    async def _add_column_if_missing(self, db: aiosqlite.Connection, table_name: str, column_sql: str) -> None:
        column_name = str(column_sql.split()[0]).strip()
        if not column_name:
            return
        cols = await self._table_columns(db, table_name)
        if column_name in cols:
            return
        try:
            await db.execute(f"ALTER TABLE {table_name} ADD COLUMN {column_sql}")
        except aiosqlite.OperationalError as exc:
            # A concurrent starter may have added it between the check and the ALTER.
            logger.debug("Skipping column %s.%s (%s)", table_name, column_name, exc)
            return
        logger.info("Migrated %s: added column %s", table_name, column_name)

    async def _migrate_schema(self, db: aiosqlite.Connection) -> None:
        for table in NAMESPACED_TABLES:
            await self._add_column_if_missing(db, table, "character_id TEXT NOT NULL DEFAULT 'default'")
