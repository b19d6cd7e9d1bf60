from __future__ import annotations

import asyncio
import logging
from contextlib import suppress
from dataclasses import dataclass
from typing import Optional, Set, Union

from ..core.flow import StateFlow
from ..core.models import FULL_SYNC, Feed, SyncArgs
from ..errors import FeedSyncError
from ..sources.base import FeedSource
from ..store.base import EntryStore
from ..store.conf_store import ConfStore
from ..utils import now_utc
from ..utils.tasks import gather_bounded
from .reconciler import Reconciler

logger = logging.getLogger("feedsync.sync")


@dataclass(frozen=True)
class Idle:
    """Keine Sitzung aktiv. ``error`` hält den Fehler der letzten Sitzung."""

    error: Optional[BaseException] = None


@dataclass(frozen=True)
class InitialSync:
    message: str


@dataclass(frozen=True)
class FollowUpSync:
    args: SyncArgs
    message: str


SyncState = Union[Idle, InitialSync, FollowUpSync]


@dataclass(frozen=True)
class SyncResult:
    args: SyncArgs
    error: Optional[FeedSyncError] = None

    @property
    def ok(self) -> bool:
        return self.error is None


class _Session:
    def __init__(self, args: SyncArgs, future: "asyncio.Future[SyncResult]") -> None:
        self.args = args
        self.future = future
        self.initial = False
        self.completes_initial = False
        self.started: Set[str] = set()

    def covers(self, args: SyncArgs) -> bool:
        """Deckt diese Sitzung ``args`` noch vollständig ab?"""
        return self.args.covers(args) and not self.started.intersection(args.phases())


class SyncCoordinator:
    """Steuert Sync-Sitzungen; es läuft nie mehr als eine gleichzeitig.

    Eine Anfrage während einer laufenden Sitzung wird mit ihr zusammengelegt,
    wenn alle angefragten Phasen dort noch bevorstehen. Sonst wird sie (mit
    weiteren wartenden Anfragen vereinigt) direkt im Anschluss ausgeführt.
    """

    def __init__(
        self,
        store: EntryStore,
        conf_store: ConfStore,
        source: FeedSource,
        reconciler: Reconciler,
        *,
        max_parallel: int = 4,
    ) -> None:
        self._store = store
        self._conf_store = conf_store
        self._source = source
        self._reconciler = reconciler
        self._max_parallel = max_parallel
        self.state: StateFlow[SyncState] = StateFlow(Idle())
        self._active: Optional[_Session] = None
        self._queued: Optional[_Session] = None
        self._tasks: Set[asyncio.Task[None]] = set()
        self._stopping = False
        self._sessions_started = 0
        self._sessions_failed = 0
        self._requests_coalesced = 0
        self._requests_queued = 0

    def launch(self, args: SyncArgs = FULL_SYNC) -> "asyncio.Future[SyncResult]":
        """Reicht eine Anfrage ein, ohne zu warten.

        Das Ergebnis steht im zurückgegebenen Future; Fehler werden dort als
        ``SyncResult.error`` abgelegt und nicht geworfen.
        """
        loop = asyncio.get_running_loop()
        if self._active is None:
            session = _Session(args, loop.create_future())
            self._begin(session)
            return session.future
        if self._active.covers(args):
            self._requests_coalesced += 1
            logger.debug("sync request coalesced args=%s", args)
            return self._active.future
        self._requests_queued += 1
        if self._queued is None:
            self._queued = _Session(args, loop.create_future())
        else:
            self._queued.args = self._queued.args.merge(args)
        logger.debug("sync request queued args=%s", self._queued.args)
        return self._queued.future

    async def run(self, args: SyncArgs = FULL_SYNC) -> SyncResult:
        return await asyncio.shield(self.launch(args))

    async def stop(self) -> None:
        self._stopping = True
        if self._queued is not None:
            self._queued.future.cancel()
            self._queued = None
        for task in list(self._tasks):
            task.cancel()
        for task in list(self._tasks):
            with suppress(asyncio.CancelledError):
                await task

    def _begin(self, session: _Session) -> None:
        self._active = session
        session.initial = not self._conf_store.conf.value.initial_sync_completed
        # Nur eine Sitzung mit Feeds und Einträgen schließt die Erstsynchronisierung ab.
        session.completes_initial = session.initial and session.args.sync_feeds and session.args.sync_entries
        self._sessions_started += 1
        logger.info("sync started args=%s initial=%s", session.args, session.initial)
        self._progress(session, "Synchronisierung gestartet")
        task = asyncio.create_task(self._drive(session))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    def _start_queued(self) -> None:
        if self._stopping or self._queued is None:
            return
        session, self._queued = self._queued, None
        self._begin(session)

    def _progress(self, session: _Session, message: str) -> None:
        if session.initial:
            self.state.set(InitialSync(message))
        else:
            self.state.set(FollowUpSync(session.args, message))

    async def _drive(self, session: _Session) -> None:
        try:
            result = await self._run_phases(session)
        except asyncio.CancelledError:
            self.state.set(Idle())
            session.future.cancel()
            raise
        except Exception as exc:
            logger.exception("sync defect args=%s", session.args)
            self.state.set(Idle())
            if not session.future.done():
                session.future.set_exception(exc)
        else:
            if not session.future.done():
                session.future.set_result(result)
        finally:
            self._active = None
            self._start_queued()

    async def _run_phases(self, session: _Session) -> SyncResult:
        args = session.args
        try:
            if args.sync_feeds:
                session.started.add("feeds")
                self._progress(session, "Lade Feeds")
                listed_at = now_utc()
                feeds = await self._source.list_feeds()
                await self._reconciler.apply_remote_feeds(feeds, prune=True, listed_at=listed_at)
            if args.sync_entries:
                session.started.add("entries")
                await self._sync_entries(session)
            if args.sync_flags:
                session.started.add("flags")
                self._progress(session, "Synchronisiere Markierungen")
                pending = await self._store.select_pending_flags()
                if pending:
                    await self._source.push_flags(pending)
                remote = await self._source.pull_flags()
                await self._reconciler.reconcile_flags(pending, remote)
            if session.completes_initial:
                self._conf_store.update(lambda conf: conf.transform(initial_sync_completed=True))
        except FeedSyncError as exc:
            self._sessions_failed += 1
            logger.warning(
                "sync failed args=%s phases=%s error=%s",
                args,
                sorted(session.started),
                exc,
            )
            self.state.set(Idle(error=exc))
            return SyncResult(args=args, error=exc)
        self.state.set(Idle())
        logger.info("sync finished args=%s", args)
        return SyncResult(args=args)

    async def _sync_entries(self, session: _Session) -> None:
        feeds = await self._store.select_all_feeds()
        done = 0
        self._progress(session, f"Lade Einträge (0/{len(feeds)})")

        async def _one(feed: Feed) -> None:
            nonlocal done
            since = await self._store.select_max_published(feed.id)
            entries = await self._source.fetch_entries(feed.id, since)
            await self._reconciler.apply_remote_entries(feed.id, entries)
            done += 1
            self._progress(session, f"Lade Einträge ({done}/{len(feeds)})")

        await gather_bounded(feeds, _one, limit=self._max_parallel)

    def stats(self) -> dict:
        return {
            "state": type(self.state.value).__name__,
            "sessions_started": self._sessions_started,
            "sessions_failed": self._sessions_failed,
            "requests_coalesced": self._requests_coalesced,
            "requests_queued": self._requests_queued,
        }
