from __future__ import annotations

import logging
from typing import Iterable, Optional

from ..core.models import FLAGS_ONLY, BelongToFeed, Bookmarked, EntriesFilter, NotBookmarked
from ..store.base import EntryStore
from .coordinator import SyncCoordinator

logger = logging.getLogger("feedsync.mutator")


class FlagMutator:
    """Lokale, optimistische Änderungen an ``read``/``bookmarked``.

    Jede Änderung setzt das zugehörige ``*_synced`` im selben Schreibzugriff
    zurück und stößt danach einen reinen Markierungs-Sync an. Auf dessen
    Ergebnis wird nicht gewartet; scheitert er, holt der nächste Sync es nach.
    """

    def __init__(self, store: EntryStore, coordinator: SyncCoordinator) -> None:
        self._store = store
        self._coordinator = coordinator

    async def set_read(self, ids: Iterable[str], read: bool) -> int:
        updated = 0
        for entry_id in ids:
            if await self._store.update_read_and_read_synced(entry_id, read, False):
                updated += 1
        self._request_sync()
        return updated

    async def set_bookmarked(self, entry_id: str, bookmarked: bool) -> bool:
        updated = await self._store.update_bookmarked_and_bookmarked_synced(entry_id, bookmarked, False)
        self._request_sync()
        return updated

    async def mark_all_read(self, scope: Optional[EntriesFilter]) -> int:
        if scope is None:
            return 0
        if isinstance(scope, NotBookmarked):
            updated = await self._store.update_read_by_bookmarked(read=True, bookmarked=False)
        elif isinstance(scope, Bookmarked):
            updated = await self._store.update_read_by_bookmarked(read=True, bookmarked=True)
        elif isinstance(scope, BelongToFeed):
            updated = await self._store.update_read_by_feed_id(read=True, feed_id=scope.feed_id)
        else:
            raise TypeError(f"Unbekannter Filter: {scope!r}")
        logger.info("marked all read scope=%s entries=%s", type(scope).__name__, updated)
        self._request_sync()
        return updated

    def _request_sync(self) -> None:
        self._coordinator.launch(FLAGS_ONLY)
