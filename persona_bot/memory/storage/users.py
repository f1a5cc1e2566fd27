from __future__ import annotations

from typing import Dict, List

import aiosqlite

from .utils import _clean_text, _sqlite_memory_connection


class MemoryUserFactsMixin:
    async def set_user_memory(self, character_id: str, user_id: str, key: str, value: str) -> None:
        async with _sqlite_memory_connection(self.db_path) as db:
            await db.execute(
                """
                INSERT OR REPLACE INTO user_memory (character_id, user_id, key, value)
                VALUES (?, ?, ?, ?)
                """,
                (character_id, _clean_text(user_id), _clean_text(key), str(value or "").strip()),
            )
            await db.commit()

    async def get_user_memory(self, character_id: str, user_id: str) -> List[Dict[str, str]]:
        async with _sqlite_memory_connection(self.db_path) as db:
            db.row_factory = aiosqlite.Row
            async with db.execute(
                """
                SELECT key, value
                FROM user_memory
                WHERE character_id = ? AND user_id = ?
                ORDER BY id ASC
                """,
                (character_id, user_id),
            ) as cursor:
                rows = await cursor.fetchall()

        return [{"key": str(row["key"]), "value": str(row["value"])} for row in rows]
