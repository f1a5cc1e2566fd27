from __future__ import annotations

from typing import Dict, List

import aiosqlite

from .utils import _clean_text, _sqlite_memory_connection


class MemoryRelationshipsMixin:
    async def add_relationship(
        self,
        character_id: str,
        user_id_1: str,
        user_id_2: str,
        relationship_type: str,
        description: str,
    ) -> None:
        async with _sqlite_memory_connection(self.db_path) as db:
            await db.execute(
                """
                INSERT OR REPLACE INTO relationships (
                    character_id, user_id_1, user_id_2, relationship_type, description
                )
                VALUES (?, ?, ?, ?, ?)
                """,
                (
                    character_id,
                    _clean_text(user_id_1),
                    _clean_text(user_id_2),
                    _clean_text(relationship_type),
                    str(description or "").strip(),
                ),
            )
            await db.commit()

    async def get_relationships(self, character_id: str, user_id: str) -> List[Dict[str, str]]:
        async with _sqlite_memory_connection(self.db_path) as db:
            db.row_factory = aiosqlite.Row
            async with db.execute(
                """
                SELECT user_id_1, user_id_2, relationship_type, description
                FROM relationships
                WHERE (user_id_1 = ? OR user_id_2 = ?) AND character_id = ?
                ORDER BY id ASC
                """,
                (user_id, user_id, character_id),
            ) as cursor:
                rows = await cursor.fetchall()

        return [
            {
                "user_id_1": str(row["user_id_1"]),
                "user_id_2": str(row["user_id_2"]),
                "relationship_type": str(row["relationship_type"]),
                "description": str(row["description"]),
            }
            for row in rows
        ]
