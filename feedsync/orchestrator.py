from __future__ import annotations

import logging
from typing import Optional

import httpx
from redis.asyncio import Redis

from . import sources as _sources  # noqa: F401  (registriert die Quelltypen)
from .config import AppConfig
from .entries.projector import EntriesModel
from .registry import registry
from .sources.base import FeedSource
from .store.base import EntryStore
from .store.conf_store import ConfStore
from .store.memory import MemoryEntryStore
from .store.redis_store import RedisEntryStore
from .sync.coordinator import SyncCoordinator
from .sync.mutator import FlagMutator
from .sync.reconciler import Reconciler
from .sync.subscriptions import SubscriptionManager

logger = logging.getLogger("feedsync")


class FeedSyncOrchestrator:
    """Verkabelt Konfiguration, Speicher, Quelle, Sync und Eintragsansicht."""

    def __init__(self, config: AppConfig) -> None:
        self.config = config
        self._http_client: Optional[httpx.AsyncClient] = None
        self._redis_client: Optional[Redis] = None
        self.store: Optional[EntryStore] = None
        self.conf_store: Optional[ConfStore] = None
        self.source: Optional[FeedSource] = None
        self.coordinator: Optional[SyncCoordinator] = None
        self.mutator: Optional[FlagMutator] = None
        self.subscriptions: Optional[SubscriptionManager] = None
        self.entries: Optional[EntriesModel] = None
        self._started = False

    async def start(self) -> None:
        if self._started:
            return
        self.store = self._init_store()
        self.conf_store = ConfStore(self.config.store.conf_path)
        source_conf = self.config.source
        self._http_client = httpx.AsyncClient(
            base_url=source_conf.url or "",
            timeout=source_conf.timeout_s,
            follow_redirects=True,
        )
        self.source = registry.create(self.config, self._http_client, self.store)
        reconciler = Reconciler(self.store)
        self.coordinator = SyncCoordinator(
            self.store,
            self.conf_store,
            self.source,
            reconciler,
            max_parallel=self.config.sync.max_parallel_fetches,
        )
        self.mutator = FlagMutator(self.store, self.coordinator)
        self.subscriptions = SubscriptionManager(self.store, self.source, reconciler, self.coordinator)
        self.entries = EntriesModel(self.conf_store, self.store, self.coordinator, self.mutator)
        self._started = True
        logger.info(
            "started source=%s store=%s",
            self.source.name,
            self.store.name,
        )

    async def stop(self) -> None:
        if not self._started:
            return
        try:
            if self.entries is not None:
                await self.entries.stop()
        finally:
            if self.coordinator is not None:
                await self.coordinator.stop()
            if self.store is not None:
                await self.store.close()
            if self._redis_client is not None:
                await self._redis_client.aclose()
            if self._http_client is not None:
                await self._http_client.aclose()
            self._started = False

    def stats(self) -> dict:
        return {
            "store": self.store.stats() if self.store else None,
            "source": self.source.stats() if self.source else None,
            "sync": self.coordinator.stats() if self.coordinator else None,
            "entries": self.entries.stats() if self.entries else None,
        }

    def _init_store(self) -> EntryStore:
        store_conf = self.config.store
        if store_conf.backend == "redis":
            self._redis_client = Redis.from_url(store_conf.redis_dsn, decode_responses=True)
            return RedisEntryStore(self._redis_client, namespace=store_conf.namespace)
        return MemoryEntryStore()
