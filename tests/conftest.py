"""Gemeinsame Fixtures: In-Memory-Speicher und eine steuerbare Fake-Quelle."""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional

import pytest

from feedsync.config import SourceConfig
from feedsync.core.models import Entry, EntryDescriptor, Feed, FeedDescriptor, FlagState, PendingFlags
from feedsync.entries import EntriesModel
from feedsync.sources.base import FeedSource
from feedsync.store import ConfStore, MemoryEntryStore
from feedsync.sync import FlagMutator, Reconciler, SyncCoordinator

BASE_TIME = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)


def at(minutes: int) -> datetime:
    return BASE_TIME + timedelta(minutes=minutes)


def make_entry(entry_id: str, feed_id: str = "f1", minutes: int = 0, **fields) -> Entry:
    return Entry(id=entry_id, feed_id=feed_id, title=f"Titel {entry_id}", published=at(minutes), **fields)


class FakeSource(FeedSource):
    """Entfernte Quelle im Speicher. Einzelne Methoden lassen sich anhalten oder scheitern."""

    name = "fake"

    def __init__(self) -> None:
        super().__init__(SourceConfig(), None)  # type: ignore[arg-type]
        self.feeds: Dict[str, FeedDescriptor] = {}
        self.entries: Dict[str, List[EntryDescriptor]] = {}
        self.flags: Dict[str, FlagState] = {}
        self.fail: Dict[str, Exception] = {}
        self.gates: Dict[str, asyncio.Event] = {}
        self.entered: Dict[str, asyncio.Event] = {}
        self.calls: List[str] = []
        self.pushed: List[List[PendingFlags]] = []
        self.active = 0
        self.max_active = 0

    def add_feed(self, feed_id: str, *entry_ids: str, title: str = "") -> None:
        self.feeds[feed_id] = FeedDescriptor(id=feed_id, url=f"https://example.org/{feed_id}.xml", title=title or feed_id)
        self.entries[feed_id] = [
            EntryDescriptor(id=entry_id, feed_id=feed_id, title=f"Titel {entry_id}", published=at(index))
            for index, entry_id in enumerate(entry_ids)
        ]

    def gate(self, name: str) -> asyncio.Event:
        self.gates[name] = asyncio.Event()
        self.entered[name] = asyncio.Event()
        return self.gates[name]

    async def _enter(self, name: str) -> None:
        self.calls.append(name)
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            if name in self.entered:
                self.entered[name].set()
            if name in self.gates:
                await self.gates[name].wait()
            if name in self.fail:
                raise self.fail[name]
        finally:
            self.active -= 1

    async def fetch_feed(self, url: str) -> FeedDescriptor:
        await self._enter("fetch_feed")
        for feed in self.feeds.values():
            if feed.url == url:
                return feed
        raise LookupError(url)

    async def list_feeds(self) -> List[FeedDescriptor]:
        snapshot = list(self.feeds.values())
        await self._enter("list_feeds")
        return snapshot

    async def fetch_entries(self, feed_id: str, since: Optional[datetime]) -> List[EntryDescriptor]:
        await self._enter("fetch_entries")
        return [e for e in self.entries.get(feed_id, []) if since is None or e.published >= since]

    async def push_flags(self, pending: List[PendingFlags]) -> None:
        await self._enter("push_flags")
        self.pushed.append(list(pending))
        for flags in pending:
            current = self.flags.get(flags.id, FlagState(id=flags.id, read=False, bookmarked=False))
            self.flags[flags.id] = FlagState(
                id=flags.id,
                read=current.read if flags.read is None else flags.read,
                bookmarked=current.bookmarked if flags.bookmarked is None else flags.bookmarked,
            )

    async def pull_flags(self) -> List[FlagState]:
        await self._enter("pull_flags")
        return list(self.flags.values())


@pytest.fixture
def store() -> MemoryEntryStore:
    return MemoryEntryStore()


@pytest.fixture
def conf_store() -> ConfStore:
    return ConfStore()


@pytest.fixture
def source() -> FakeSource:
    return FakeSource()


@pytest.fixture
def reconciler(store) -> Reconciler:
    return Reconciler(store)


@pytest.fixture
def coordinator(store, conf_store, source, reconciler) -> SyncCoordinator:
    return SyncCoordinator(store, conf_store, source, reconciler, max_parallel=2)


@pytest.fixture
def mutator(store, coordinator) -> FlagMutator:
    return FlagMutator(store, coordinator)


@pytest.fixture
def model(conf_store, store, coordinator, mutator) -> EntriesModel:
    return EntriesModel(conf_store, store, coordinator, mutator)


async def seed(store, *entries: Entry, feed_id: str = "f1", title: str = "Feed 1") -> None:
    await store.upsert_feed(Feed(id=feed_id, url=f"https://example.org/{feed_id}.xml", title=title))
    for entry in entries:
        await store.upsert_entry(entry)


async def wait_until(flow, predicate, timeout: float = 2.0):
    return await asyncio.wait_for(flow.wait_for(predicate), timeout)
