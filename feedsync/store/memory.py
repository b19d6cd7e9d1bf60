from __future__ import annotations

from typing import Any, Dict, List, Optional

from ..core.models import Entry, Feed
from .base import EntryStore


class MemoryEntryStore(EntryStore):
    """Flüchtiger Speicher, z. B. für Tests oder einen Lauf ohne Redis."""

    def __init__(self) -> None:
        super().__init__("memory")
        self._feeds: Dict[str, Feed] = {}
        self._entries: Dict[str, Entry] = {}

    async def _get_feed(self, feed_id: str) -> Optional[Feed]:
        return self._feeds.get(feed_id)

    async def _all_feeds(self) -> List[Feed]:
        return list(self._feeds.values())

    async def _put_feed(self, feed: Feed) -> None:
        self._feeds[feed.id] = feed

    async def _remove_feed(self, feed_id: str) -> None:
        self._feeds.pop(feed_id, None)
        for entry_id in [e.id for e in self._entries.values() if e.feed_id == feed_id]:
            del self._entries[entry_id]

    async def _get_entry(self, entry_id: str) -> Optional[Entry]:
        return self._entries.get(entry_id)

    async def _all_entries(self) -> List[Entry]:
        return list(self._entries.values())

    async def _put_entry(self, entry: Entry) -> None:
        self._entries[entry.id] = entry

    async def _patch_entry(self, entry_id: str, fields: Dict[str, Any]) -> None:
        self._entries[entry_id] = self._entries[entry_id].model_copy(update=fields)

    async def _entry_count(self) -> int:
        return len(self._entries)
