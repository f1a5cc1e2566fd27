from .short_term import ShortTermMemory
from .store import MemoryStore

__all__ = ["MemoryStore", "ShortTermMemory"]
