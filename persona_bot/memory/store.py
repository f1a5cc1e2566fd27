from __future__ import annotations

import aiosqlite

from .storage.facts import MemoryFactsMixin
from .storage.lore import MemoryGlobalMixin
from .storage.relationships import MemoryRelationshipsMixin
from .storage.schema import MemorySchemaMixin
from .storage.users import MemoryUserFactsMixin


class MemoryStore(
    MemorySchemaMixin,
    MemoryGlobalMixin,
    MemoryUserFactsMixin,
    MemoryFactsMixin,
    MemoryRelationshipsMixin,
):
    """Persistent persona memory: lore/gossip, per-user facts, curated facts and relationships.

    Every table is namespaced by ``character_id`` so personas sharing one file never read
    each other's rows. Uniqueness constraints make every write idempotent under retry.
    """

    backend_name = "sqlite"

    async def ping(self) -> None:
        async with aiosqlite.connect(self.db_path) as db:
            await db.execute("SELECT 1")
