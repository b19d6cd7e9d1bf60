from __future__ import annotations

import asyncio
import logging
from contextlib import suppress
from dataclasses import dataclass
from typing import Callable, Iterable, List, Optional, Union

from pydantic import BaseModel, ConfigDict

from ..core.flow import StateFlow, combine_latest
from ..core.models import (
    BelongToFeed,
    Bookmarked,
    Conf,
    EntriesFilter,
    EntryRow,
    Feed,
    Link,
    SortOrder,
)
from ..errors import InvariantError, StoreError
from ..store.base import EntryStore
from ..store.conf_store import ConfStore
from ..sync import coordinator as sync
from ..sync.mutator import FlagMutator

logger = logging.getLogger("feedsync.entries")

DATE_TIME_FORMAT = "%d.%m.%Y %H:%M"


class EntryItem(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    show_image: bool
    crop_image: bool
    image_url: Optional[str] = None
    image_width: int = 0
    image_height: int = 0
    title: str
    subtitle: str
    summary: str
    read: bool
    open_in_browser: bool
    use_built_in_browser: bool
    links: List[Link] = []


@dataclass(frozen=True)
class LoadingCachedEntries:
    pass


@dataclass(frozen=True)
class InitialSync:
    message: str


@dataclass(frozen=True)
class ShowingCachedEntries:
    feed: Optional[Feed]
    entries: List[EntryItem]
    show_background_progress: bool
    conf: Conf
    scroll_to_top: bool = False
    sync_error: Optional[BaseException] = None


@dataclass(frozen=True)
class FailedToSync:
    cause: BaseException


State = Union[LoadingCachedEntries, InitialSync, ShowingCachedEntries, FailedToSync]


def sort_rows(rows: Iterable[EntryRow], order: SortOrder) -> List[EntryRow]:
    """Sortiert stabil nach ``published``; Gleichstände behalten die Speicherreihenfolge."""
    if order == SortOrder.ascending:
        return sorted(rows, key=lambda row: row.published)
    if order == SortOrder.descending:
        return sorted(rows, key=lambda row: row.published, reverse=True)
    raise InvariantError(f"Unbekannte Sortierreihenfolge: {order!r}")


def to_item(row: EntryRow, conf: Conf) -> EntryItem:
    show_image = row.ext_show_preview_images
    open_in_browser = row.ext_open_entries_in_browser
    return EntryItem(
        id=row.id,
        show_image=conf.show_preview_images if show_image is None else show_image,
        crop_image=conf.crop_preview_images,
        image_url=row.og_image_url,
        image_width=row.og_image_width,
        image_height=row.og_image_height,
        title=row.title,
        subtitle=f"{row.feed_title} · {row.published.strftime(DATE_TIME_FORMAT)}",
        summary=row.summary or "",
        read=row.read,
        open_in_browser=False if open_in_browser is None else open_in_browser,
        use_built_in_browser=conf.use_built_in_browser,
        links=row.links,
    )


class EntriesModel:
    """Berechnet die Eintragsliste aus Filter, Konfiguration, Sync-Zustand und Speicher.

    Jeder Schnappschuss der Eingänge startet eine Neuberechnung; eine noch
    laufende ältere wird abgebrochen und ihr Ergebnis verworfen.
    """

    def __init__(
        self,
        conf_store: ConfStore,
        store: EntryStore,
        coordinator: sync.SyncCoordinator,
        mutator: FlagMutator,
    ) -> None:
        self._conf_store = conf_store
        self._store = store
        self._coordinator = coordinator
        self._mutator = mutator
        self.filter: StateFlow[Optional[EntriesFilter]] = StateFlow(None)
        self.state: StateFlow[State] = StateFlow(LoadingCachedEntries())
        self._scroll_to_top: StateFlow[bool] = StateFlow(False)
        self._collector: Optional[asyncio.Task[None]] = None
        self._recompute: Optional[asyncio.Task[None]] = None
        self._defect: Optional[BaseException] = None
        self._recomputations = 0
        self._discarded = 0

    async def start(self) -> None:
        if self._collector is None:
            self._collector = asyncio.create_task(self._collect())

    async def stop(self) -> None:
        for task in (self._recompute, self._collector):
            if task is None:
                continue
            task.cancel()
            with suppress(asyncio.CancelledError):
                await task
        self._collector = None
        self._recompute = None
        if self._defect is not None:
            raise self._defect

    async def _collect(self) -> None:
        inputs = combine_latest(
            self.filter,
            self._conf_store.conf,
            self._coordinator.state,
            self._store.select_count(),
            self._scroll_to_top,
        )
        try:
            async for entries_filter, conf, sync_state, _, scroll_to_top in inputs:
                if entries_filter is None:
                    continue
                previous = self._recompute
                if previous is not None and not previous.done():
                    previous.cancel()
                    self._discarded += 1
                self._recomputations += 1
                self._recompute = asyncio.create_task(
                    self._update_state(entries_filter, conf, sync_state, scroll_to_top)
                )
                self._recompute.add_done_callback(self._on_recompute_done)
        finally:
            await inputs.aclose()

    def _on_recompute_done(self, task: "asyncio.Task[None]") -> None:
        if task.cancelled() or task.exception() is None:
            return
        self._defect = task.exception()
        logger.critical("entries recompute defect", exc_info=self._defect)
        if self._collector is not None:
            self._collector.cancel()

    async def _update_state(
        self,
        entries_filter: EntriesFilter,
        conf: Conf,
        sync_state: sync.SyncState,
        scroll_to_top: bool,
    ) -> None:
        if not conf.synced_on_startup and (not conf.initial_sync_completed or conf.sync_on_startup):
            try:
                self._conf_store.update(lambda current: current.transform(synced_on_startup=True))
            except StoreError as exc:
                logger.error("startup sync skipped error=%s", exc)
                self.state.set(FailedToSync(exc))
                return
            self._coordinator.launch()
            return

        if isinstance(sync_state, sync.InitialSync):
            self.state.set(InitialSync(sync_state.message))
            return

        error = sync_state.error if isinstance(sync_state, sync.Idle) else None
        if error is not None and not conf.initial_sync_completed:
            self.state.set(FailedToSync(error))
            return

        show_background_progress = (
            isinstance(sync_state, sync.FollowUpSync) and sync_state.args.sync_entries
        )

        try:
            rows = await self._select_rows(entries_filter, conf)
            feed = None
            if isinstance(entries_filter, BelongToFeed):
                feed = await self._store.select_feed_by_id(entries_filter.feed_id)
        except StoreError as exc:
            logger.error("loading cached entries failed error=%s", exc)
            self.state.set(FailedToSync(exc))
            return

        self.state.set(
            ShowingCachedEntries(
                feed=feed,
                entries=[to_item(row, conf) for row in sort_rows(rows, conf.sort_order)],
                show_background_progress=show_background_progress,
                conf=conf,
                scroll_to_top=scroll_to_top,
                sync_error=error,
            )
        )
        if scroll_to_top:
            self._scroll_to_top.set(False)

    async def _select_rows(self, entries_filter: EntriesFilter, conf: Conf) -> List[EntryRow]:
        if isinstance(entries_filter, BelongToFeed):
            return await self._store.select_by_feed_id_and_read_and_bookmarked(
                feed_id=entries_filter.feed_id,
                read=[True, False] if conf.show_read_entries else [False],
                bookmarked=False,
            )
        include_read = conf.show_read_entries or isinstance(entries_filter, Bookmarked)
        return await self._store.select_by_read_and_bookmarked(
            read=[True, False] if include_read else [False],
            bookmarked=isinstance(entries_filter, Bookmarked),
        )

    def on_retry(self) -> "asyncio.Future[sync.SyncResult]":
        return self._coordinator.launch()

    def on_pull_refresh(self) -> "asyncio.Future[sync.SyncResult]":
        return self._coordinator.launch()

    def save_conf(self, transform: Callable[[Conf], Conf]) -> Conf:
        return self._conf_store.update(transform)

    def change_sort_order(self) -> Conf:
        self._scroll_to_top.set(True)

        def _flip(conf: Conf) -> Conf:
            if conf.sort_order == SortOrder.ascending:
                return conf.transform(sort_order=SortOrder.descending)
            if conf.sort_order == SortOrder.descending:
                return conf.transform(sort_order=SortOrder.ascending)
            raise InvariantError(f"Unbekannte Sortierreihenfolge: {conf.sort_order!r}")

        return self._conf_store.update(_flip)

    def acknowledge_scroll_to_top(self) -> None:
        self._scroll_to_top.set(False)

    async def set_read(self, entry_ids: Iterable[str], read: bool) -> int:
        return await self._mutator.set_read(entry_ids, read)

    async def set_bookmarked(self, entry_id: str, bookmarked: bool) -> bool:
        return await self._mutator.set_bookmarked(entry_id, bookmarked)

    async def mark_all_as_read(self) -> int:
        return await self._mutator.mark_all_read(self.filter.value)

    def stats(self) -> dict:
        return {
            "state": type(self.state.value).__name__,
            "recomputations": self._recomputations,
            "discarded": self._discarded,
        }
