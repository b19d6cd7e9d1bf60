from __future__ import annotations

import logging
from datetime import datetime
from typing import Iterable, List, Optional

from ..core.models import Entry, EntryDescriptor, Feed, FeedDescriptor, FlagState, PendingFlags
from ..store.base import EntryStore
from ..utils import now_utc

logger = logging.getLogger("feedsync.reconciler")


class Reconciler:
    """Führt entfernte Daten und ausstehende lokale Markierungen zusammen.

    Konfliktregel für Markierungen: solange ``*_synced`` lokal falsch ist,
    gewinnt der lokale Wert. Erst nach bestätigter Übertragung darf der
    entfernte Stand ihn wieder überschreiben. Geschrieben wird ausschließlich
    feldweise über die bedingten Updates des Speichers.
    """

    def __init__(self, store: EntryStore) -> None:
        self._store = store

    async def apply_remote_feeds(
        self,
        feeds: Iterable[FeedDescriptor],
        *,
        prune: bool = False,
        listed_at: Optional[datetime] = None,
    ) -> int:
        """Übernimmt entfernte Feeds.

        Mit ``prune`` werden lokale Feeds entfernt, die in ``feeds`` fehlen.
        Ist ``listed_at`` gesetzt, bleiben Feeds verschont, die ab diesem
        Zeitpunkt abonniert wurden; die Liste kann sie noch nicht enthalten.
        """
        changed = 0
        seen = set()
        for descriptor in feeds:
            seen.add(descriptor.id)
            existing = await self._store.select_feed_by_id(descriptor.id)
            feed = Feed(
                id=descriptor.id,
                url=descriptor.url,
                title=descriptor.title,
                site_url=descriptor.site_url,
                subscribed_at=existing.subscribed_at if existing else now_utc(),
                ext_show_preview_images=existing.ext_show_preview_images if existing else None,
                ext_open_entries_in_browser=existing.ext_open_entries_in_browser if existing else None,
            )
            if await self._store.upsert_feed(feed):
                changed += 1
        if prune:
            for feed in await self._store.select_all_feeds():
                if feed.id in seen or _subscribed_since(feed, listed_at):
                    continue
                if await self._store.delete_feed(feed.id):
                    changed += 1
        if changed:
            logger.info("feeds applied changed=%s prune=%s", changed, prune)
        return changed

    async def apply_remote_entries(self, feed_id: str, entries: Iterable[EntryDescriptor]) -> int:
        changed = 0
        remote_flags: List[FlagState] = []
        for descriptor in entries:
            entry = Entry(
                id=descriptor.id,
                feed_id=descriptor.feed_id or feed_id,
                title=descriptor.title,
                link=descriptor.link,
                summary=descriptor.summary,
                published=descriptor.published,
                og_image_url=descriptor.og_image_url,
                og_image_width=descriptor.og_image_width,
                og_image_height=descriptor.og_image_height,
                links=descriptor.links,
                read=bool(descriptor.read),
                bookmarked=bool(descriptor.bookmarked),
            )
            if await self._store.upsert_entry(entry):
                changed += 1
            if descriptor.read is not None or descriptor.bookmarked is not None:
                remote_flags.append(
                    FlagState(id=descriptor.id, read=descriptor.read, bookmarked=descriptor.bookmarked)
                )
        changed += await self.reconcile_flags([], remote_flags)
        if changed:
            logger.info("entries applied feed=%s changed=%s", feed_id, changed)
        return changed

    async def reconcile_flags(
        self,
        pushed: Iterable[PendingFlags],
        remote: Optional[Iterable[FlagState]],
    ) -> int:
        changed = 0
        confirmed = 0
        for flags in pushed:
            if flags.read is not None and await self._store.mark_read_synced(flags.id, flags.read):
                confirmed += 1
            if flags.bookmarked is not None and await self._store.mark_bookmarked_synced(
                flags.id, flags.bookmarked
            ):
                confirmed += 1
        for state in remote or []:
            if state.read is not None and await self._store.update_read_if_synced(state.id, state.read):
                changed += 1
            if state.bookmarked is not None and await self._store.update_bookmarked_if_synced(
                state.id, state.bookmarked
            ):
                changed += 1
        if confirmed or changed:
            logger.info("flags reconciled confirmed=%s overwritten=%s", confirmed, changed)
        return confirmed + changed


def _subscribed_since(feed: Feed, listed_at: Optional[datetime]) -> bool:
    return listed_at is not None and feed.subscribed_at is not None and feed.subscribed_at >= listed_at
