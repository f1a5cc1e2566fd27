from .facts import MemoryFactsMixin
from .lore import MemoryGlobalMixin
from .relationships import MemoryRelationshipsMixin
from .schema import MemorySchemaMixin
from .users import MemoryUserFactsMixin

__all__ = [
    "MemorySchemaMixin",
    "MemoryGlobalMixin",
    "MemoryUserFactsMixin",
    "MemoryFactsMixin",
    "MemoryRelationshipsMixin",
]
