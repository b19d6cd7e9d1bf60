from .base import EntryStore
from .conf_store import ConfStore
from .memory import MemoryEntryStore
from .redis_store import RedisEntryStore

__all__ = ["ConfStore", "EntryStore", "MemoryEntryStore", "RedisEntryStore"]
