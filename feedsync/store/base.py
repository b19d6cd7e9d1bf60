from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Collection, Dict, List, Optional

from ..core.flow import StateFlow
from ..core.models import CONTENT_FIELDS, Entry, EntryRow, Feed, PendingFlags

logger = logging.getLogger("feedsync.store")


class EntryStore(ABC):
    """Gemeinsame Schnittstelle für Feed- und Eintragsspeicher.

    Unterklassen liefern nur die Primitive (Lesen, Schreiben einzelner
    Datensätze bzw. Felder). Filter, Upsert-Logik und die Serialisierung der
    Schreibzugriffe liegen hier. Jeder Schreibzugriff läuft unter einem
    gemeinsamen Lock; bedingte Updates (compare-and-set) lesen und schreiben
    innerhalb desselben Locks.
    """

    def __init__(self, name: str) -> None:
        self.name = name
        self._lock = asyncio.Lock()
        self._count: StateFlow[int] = StateFlow(0, distinct=False)
        self._writes = 0
        self._skipped = 0

    # -- Primitive ---------------------------------------------------------

    @abstractmethod
    async def _get_feed(self, feed_id: str) -> Optional[Feed]:
        raise NotImplementedError

    @abstractmethod
    async def _all_feeds(self) -> List[Feed]:
        raise NotImplementedError

    @abstractmethod
    async def _put_feed(self, feed: Feed) -> None:
        raise NotImplementedError

    @abstractmethod
    async def _remove_feed(self, feed_id: str) -> None:
        """Entfernt den Feed samt allen zugehörigen Einträgen."""
        raise NotImplementedError

    @abstractmethod
    async def _get_entry(self, entry_id: str) -> Optional[Entry]:
        raise NotImplementedError

    @abstractmethod
    async def _all_entries(self) -> List[Entry]:
        """Alle Einträge in Einfügereihenfolge."""
        raise NotImplementedError

    @abstractmethod
    async def _put_entry(self, entry: Entry) -> None:
        raise NotImplementedError

    @abstractmethod
    async def _patch_entry(self, entry_id: str, fields: Dict[str, Any]) -> None:
        """Schreibt nur die übergebenen Felder, in einem Schritt."""
        raise NotImplementedError

    @abstractmethod
    async def _entry_count(self) -> int:
        raise NotImplementedError

    async def close(self) -> None:
        return None

    # -- Änderungssignal ---------------------------------------------------

    def select_count(self) -> StateFlow[int]:
        """Anzahl der Einträge; meldet sich nach jedem Schreibzugriff neu."""
        return self._count

    async def _changed(self) -> None:
        self._writes += 1
        self._count.set(await self._entry_count())

    # -- Feeds ---------------------------------------------------------------

    async def select_all_feeds(self) -> List[Feed]:
        return await self._all_feeds()

    async def select_feed_by_id(self, feed_id: str) -> Optional[Feed]:
        return await self._get_feed(feed_id)

    async def upsert_feed(self, feed: Feed) -> bool:
        async with self._lock:
            if await self._get_feed(feed.id) == feed:
                self._skipped += 1
                return False
            await self._put_feed(feed)
            await self._changed()
        return True

    async def update_feed_overrides(
        self,
        feed_id: str,
        *,
        show_preview_images: Optional[bool],
        open_entries_in_browser: Optional[bool],
    ) -> bool:
        async with self._lock:
            feed = await self._get_feed(feed_id)
            if feed is None:
                return False
            await self._put_feed(
                feed.model_copy(
                    update={
                        "ext_show_preview_images": show_preview_images,
                        "ext_open_entries_in_browser": open_entries_in_browser,
                    }
                )
            )
            await self._changed()
        return True

    async def delete_feed(self, feed_id: str) -> bool:
        async with self._lock:
            if await self._get_feed(feed_id) is None:
                return False
            await self._remove_feed(feed_id)
            await self._changed()
        logger.info("feed deleted store=%s feed=%s", self.name, feed_id)
        return True

    # -- Einträge lesen ------------------------------------------------------

    async def select_entry(self, entry_id: str) -> Optional[Entry]:
        return await self._get_entry(entry_id)

    async def select_by_feed_id_and_read_and_bookmarked(
        self,
        feed_id: str,
        read: Collection[bool],
        bookmarked: bool,
    ) -> List[EntryRow]:
        return await self._select_rows(
            lambda entry: entry.feed_id == feed_id
            and entry.read in read
            and entry.bookmarked == bookmarked
        )

    async def select_by_read_and_bookmarked(
        self,
        read: Collection[bool],
        bookmarked: bool,
    ) -> List[EntryRow]:
        return await self._select_rows(
            lambda entry: entry.read in read and entry.bookmarked == bookmarked
        )

    async def select_pending_flags(self) -> List[PendingFlags]:
        pending: List[PendingFlags] = []
        for entry in await self._all_entries():
            if entry.read_synced and entry.bookmarked_synced:
                continue
            pending.append(
                PendingFlags(
                    id=entry.id,
                    read=None if entry.read_synced else entry.read,
                    bookmarked=None if entry.bookmarked_synced else entry.bookmarked,
                )
            )
        return pending

    async def select_max_published(self, feed_id: str) -> Optional[datetime]:
        published = [e.published for e in await self._all_entries() if e.feed_id == feed_id]
        return max(published) if published else None

    async def _select_rows(self, predicate) -> List[EntryRow]:
        feeds = {feed.id: feed for feed in await self._all_feeds()}
        rows: List[EntryRow] = []
        for entry in await self._all_entries():
            if not predicate(entry):
                continue
            feed = feeds.get(entry.feed_id)
            rows.append(
                EntryRow(
                    **entry.model_dump(),
                    feed_title=feed.title if feed else "",
                    ext_show_preview_images=feed.ext_show_preview_images if feed else None,
                    ext_open_entries_in_browser=feed.ext_open_entries_in_browser if feed else None,
                )
            )
        return rows

    # -- Einträge schreiben --------------------------------------------------

    async def upsert_entry(self, entry: Entry) -> bool:
        """Neu anlegen oder Inhalt auffrischen.

        Bei bestehenden Einträgen werden nur ``CONTENT_FIELDS`` geschrieben;
        ``published``, ``feed_id`` und die Markierungen bleiben unverändert.
        """
        async with self._lock:
            existing = await self._get_entry(entry.id)
            if existing is None:
                await self._put_entry(entry)
                await self._changed()
                return True
            changes = {
                name: getattr(entry, name)
                for name in CONTENT_FIELDS
                if getattr(entry, name) != getattr(existing, name)
            }
            if not changes:
                self._skipped += 1
                return False
            await self._patch_entry(entry.id, changes)
            await self._changed()
        return True

    async def update_read_and_read_synced(self, entry_id: str, read: bool, read_synced: bool) -> bool:
        return await self._patch_if(entry_id, {"read": read, "read_synced": read_synced})

    async def update_bookmarked_and_bookmarked_synced(
        self,
        entry_id: str,
        bookmarked: bool,
        bookmarked_synced: bool,
    ) -> bool:
        return await self._patch_if(
            entry_id,
            {"bookmarked": bookmarked, "bookmarked_synced": bookmarked_synced},
        )

    async def update_read_by_bookmarked(self, read: bool, bookmarked: bool) -> int:
        return await self._mark_many(lambda e: e.bookmarked == bookmarked, read)

    async def update_read_by_feed_id(self, read: bool, feed_id: str) -> int:
        return await self._mark_many(lambda e: e.feed_id == feed_id, read)

    async def mark_read_synced(self, entry_id: str, read: bool) -> bool:
        """Bestätigt einen übertragenen Wert, sofern er noch aktuell ist."""
        return await self._patch_if(
            entry_id,
            {"read_synced": True},
            lambda e: e.read == read and not e.read_synced,
        )

    async def mark_bookmarked_synced(self, entry_id: str, bookmarked: bool) -> bool:
        return await self._patch_if(
            entry_id,
            {"bookmarked_synced": True},
            lambda e: e.bookmarked == bookmarked and not e.bookmarked_synced,
        )

    async def update_read_if_synced(self, entry_id: str, read: bool) -> bool:
        """Übernimmt einen entfernten Wert nur, wenn lokal nichts aussteht."""
        return await self._patch_if(
            entry_id,
            {"read": read, "read_synced": True},
            lambda e: e.read_synced and e.read != read,
        )

    async def update_bookmarked_if_synced(self, entry_id: str, bookmarked: bool) -> bool:
        return await self._patch_if(
            entry_id,
            {"bookmarked": bookmarked, "bookmarked_synced": True},
            lambda e: e.bookmarked_synced and e.bookmarked != bookmarked,
        )

    async def _patch_if(self, entry_id: str, fields: Dict[str, Any], condition=None) -> bool:
        async with self._lock:
            entry = await self._get_entry(entry_id)
            if entry is None:
                return False
            if condition is not None and not condition(entry):
                return False
            await self._patch_entry(entry_id, fields)
            await self._changed()
        return True

    async def _mark_many(self, predicate, read: bool) -> int:
        updated = 0
        async with self._lock:
            for entry in await self._all_entries():
                if not predicate(entry) or entry.read == read:
                    continue
                await self._patch_entry(entry.id, {"read": read, "read_synced": False})
                updated += 1
            if updated:
                await self._changed()
        return updated

    def stats(self) -> dict:
        return {
            "store": self.name,
            "writes": self._writes,
            "skipped": self._skipped,
            "entries": self._count.value,
        }
