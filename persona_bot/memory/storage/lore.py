from __future__ import annotations

from typing import Dict, List

import aiosqlite

from .utils import _clean_text, _sqlite_memory_connection


class MemoryGlobalMixin:
    """Append-only lore/gossip log. First writer wins, duplicates are dropped."""

    GLOBAL_MEMORY_READ_LIMIT = 50

    async def add_global(self, character_id: str, content: str) -> bool:
        cleaned = _clean_text(content)
        if not cleaned:
            return False
        async with _sqlite_memory_connection(self.db_path) as db:
            cursor = await db.execute(
                """
                INSERT OR IGNORE INTO global_memory (character_id, content)
                VALUES (?, ?)
                """,
                (character_id, cleaned),
            )
            await db.commit()
            return cursor.rowcount > 0

    async def get_global(self, character_id: str, limit: int | None = None) -> List[Dict[str, str]]:
        bounded = self.GLOBAL_MEMORY_READ_LIMIT if limit is None else max(1, min(int(limit), self.GLOBAL_MEMORY_READ_LIMIT))
        async with _sqlite_memory_connection(self.db_path) as db:
            db.row_factory = aiosqlite.Row
            async with db.execute(
                """
                SELECT content, created_at
                FROM global_memory
                WHERE character_id = ?
                ORDER BY created_at DESC, id DESC
                LIMIT ?
                """,
                (character_id, bounded),
            ) as cursor:
                rows = await cursor.fetchall()

        return [{"content": str(row["content"]), "created_at": str(row["created_at"])} for row in rows]
