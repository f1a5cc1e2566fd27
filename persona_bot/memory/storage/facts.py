from __future__ import annotations

from typing import Dict, List

import aiosqlite

from .utils import _clean_text, _sqlite_memory_connection


class MemoryFactsMixin:
    """Curated per-persona facts keyed by topic.

    Extraction never writes here; rows come from operators or seeding.
    """

    FACTS_READ_LIMIT = 20

    async def upsert_fact(self, character_id: str, topic: str, content: str) -> None:
        async with _sqlite_memory_connection(self.db_path) as db:
            await db.execute(
                """
                INSERT OR REPLACE INTO facts (character_id, topic, content)
                VALUES (?, ?, ?)
                """,
                (character_id, _clean_text(topic), str(content or "").strip()),
            )
            await db.commit()

    async def get_facts(self, character_id: str) -> List[Dict[str, str]]:
        async with _sqlite_memory_connection(self.db_path) as db:
            db.row_factory = aiosqlite.Row
            async with db.execute(
                """
                SELECT topic, content
                FROM facts
                WHERE character_id = ?
                ORDER BY id ASC
                LIMIT ?
                """,
                (character_id, self.FACTS_READ_LIMIT),
            ) as cursor:
                rows = await cursor.fetchall()

        return [{"topic": str(row["topic"]), "content": str(row["content"])} for row in rows]
