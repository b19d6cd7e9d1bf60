from __future__ import annotations

import logging
from typing import List, Optional

from ..core.models import ENTRIES_ONLY, Feed
from ..sources.base import FeedSource
from ..store.base import EntryStore
from .coordinator import SyncCoordinator
from .reconciler import Reconciler

logger = logging.getLogger("feedsync.subscriptions")


class SubscriptionManager:
    """An- und Abmelden von Feeds sowie deren Anzeige-Einstellungen."""

    def __init__(
        self,
        store: EntryStore,
        source: FeedSource,
        reconciler: Reconciler,
        coordinator: SyncCoordinator,
    ) -> None:
        self._store = store
        self._source = source
        self._reconciler = reconciler
        self._coordinator = coordinator

    async def subscribe(self, url: str) -> Feed:
        """Abonniert ``url``. Scheitert der Abruf, wird kein Feed angelegt."""
        descriptor = await self._source.fetch_feed(url)
        await self._reconciler.apply_remote_feeds([descriptor])
        feed = await self._store.select_feed_by_id(descriptor.id)
        if feed is None:
            raise LookupError(f"Feed nach dem Anlegen nicht gefunden: {descriptor.id}")
        logger.info("subscribed feed=%s url=%s", feed.id, url)
        self._coordinator.launch(ENTRIES_ONLY)
        return feed

    async def unsubscribe(self, feed_id: str) -> bool:
        await self._source.unsubscribe(feed_id)
        return await self._store.delete_feed(feed_id)

    async def get_feeds(self) -> List[Feed]:
        return await self._store.select_all_feeds()

    async def set_display_overrides(
        self,
        feed_id: str,
        *,
        show_preview_images: Optional[bool] = None,
        open_entries_in_browser: Optional[bool] = None,
    ) -> bool:
        return await self._store.update_feed_overrides(
            feed_id,
            show_preview_images=show_preview_images,
            open_entries_in_browser=open_entries_in_browser,
        )
