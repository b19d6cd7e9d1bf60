import asyncio

import pytest

from feedsync.core.models import FULL_SYNC, BelongToFeed, Bookmarked, Conf, EntryRow, NotBookmarked, SortOrder
from feedsync.entries import (
    EntriesModel,
    FailedToSync,
    InitialSync,
    LoadingCachedEntries,
    ShowingCachedEntries,
    sort_rows,
    to_item,
)
from feedsync.errors import InvariantError, TransportError
from feedsync.store import MemoryEntryStore
from feedsync.sync import FlagMutator, Idle, Reconciler, SyncCoordinator

from .conftest import make_entry, seed, wait_until


def showing(predicate=lambda state: True):
    return lambda state: isinstance(state, ShowingCachedEntries) and predicate(state)


def record(flow):
    seen = []
    flow.listen(lambda: seen.append(flow.value))
    return seen


def skip_startup_sync(conf_store):
    conf_store.update(lambda conf: conf.transform(initial_sync_completed=True, sync_on_startup=False))


class HeldStore(MemoryEntryStore):
    """Hält die nächste Eintragsabfrage an, bis ``release`` gesetzt ist."""

    def __init__(self) -> None:
        super().__init__()
        self.hold = False
        self.held = asyncio.Event()
        self.release = asyncio.Event()

    async def _all_entries(self):
        if self.hold:
            self.hold = False
            self.held.set()
            await self.release.wait()
        return await super()._all_entries()


class TestHelpers:
    def test_sort_rows(self):
        rows = [EntryRow(**make_entry(i, minutes=m).model_dump()) for i, m in (("b", 2), ("a", 1), ("c", 3))]

        assert [r.id for r in sort_rows(rows, SortOrder.ascending)] == ["a", "b", "c"]
        assert [r.id for r in sort_rows(rows, SortOrder.descending)] == ["c", "b", "a"]
        with pytest.raises(InvariantError):
            sort_rows(rows, "sideways")

    def test_sort_is_stable_for_equal_dates(self):
        rows = [EntryRow(**make_entry(i).model_dump()) for i in ("x", "y", "z")]

        assert [r.id for r in sort_rows(rows, SortOrder.descending)] == ["x", "y", "z"]

    def test_item_uses_feed_overrides_before_conf(self):
        row = EntryRow(
            **make_entry("a", minutes=5, og_image_url="https://example.org/a.png").model_dump(),
            feed_title="Blog",
            ext_show_preview_images=False,
            ext_open_entries_in_browser=True,
        )

        item = to_item(row, Conf(show_preview_images=True, crop_preview_images=False))

        assert item.show_image is False
        assert item.open_in_browser is True
        assert item.crop_image is False
        assert item.subtitle == "Blog · 01.01.2024 12:05"

    def test_item_falls_back_to_conf(self):
        row = EntryRow(**make_entry("a").model_dump())

        item = to_item(row, Conf(show_preview_images=False, use_built_in_browser=False))

        assert item.show_image is False
        assert item.open_in_browser is False
        assert item.use_built_in_browser is False
        assert item.summary == ""


class TestStartup:
    @pytest.mark.asyncio
    async def test_fresh_install_runs_initial_sync(self, model, source, conf_store, coordinator):
        source.add_feed("f1", "a", "b", "c")
        states = record(model.state)

        assert model.state.value == LoadingCachedEntries()
        model.filter.set(NotBookmarked())
        await model.start()
        final = await wait_until(model.state, showing(lambda s: len(s.entries) == 3))

        assert any(isinstance(s, InitialSync) for s in states)
        assert final.show_background_progress is False
        assert final.sync_error is None
        assert conf_store.conf.value.initial_sync_completed is True
        assert conf_store.conf.value.synced_on_startup is True
        assert source.calls.count("list_feeds") == 1
        await model.stop()

    @pytest.mark.asyncio
    async def test_nothing_happens_without_filter(self, model, source):
        await model.start()
        await asyncio.sleep(0.01)

        assert model.state.value == LoadingCachedEntries()
        assert source.calls == []
        await model.stop()

    @pytest.mark.asyncio
    async def test_startup_sync_runs_once_per_process(self, model, store, source, conf_store, coordinator):
        conf_store.update(lambda conf: conf.transform(initial_sync_completed=True))
        await seed(store, make_entry("a"))
        source.add_feed("f1", "a")

        model.filter.set(NotBookmarked())
        await model.start()
        await wait_until(model.state, showing())
        await wait_until(coordinator.state, lambda s: s == Idle())
        conf_store.update(lambda conf: conf.transform(show_read_entries=True))
        await wait_until(model.state, showing(lambda s: s.conf.show_read_entries))

        assert source.calls.count("list_feeds") == 1
        await model.stop()

    @pytest.mark.asyncio
    async def test_failed_initial_sync_and_retry(self, model, source, coordinator):
        source.add_feed("f1", "a")
        source.fail["list_feeds"] = TransportError("offline")

        model.filter.set(NotBookmarked())
        await model.start()
        failed = await wait_until(model.state, lambda s: isinstance(s, FailedToSync))
        assert isinstance(failed.cause, TransportError)

        del source.fail["list_feeds"]
        assert (await model.on_retry()).ok
        final = await wait_until(model.state, showing(lambda s: len(s.entries) == 1))
        assert final.sync_error is None
        await model.stop()

    @pytest.mark.asyncio
    async def test_later_failures_keep_cached_entries(self, model, store, source, conf_store, coordinator):
        skip_startup_sync(conf_store)
        await seed(store, make_entry("a"))
        source.fail["list_feeds"] = TransportError("offline")

        model.filter.set(NotBookmarked())
        await model.start()
        await wait_until(model.state, showing())
        result = await model.on_pull_refresh()
        state = await wait_until(model.state, showing(lambda s: s.sync_error is not None))

        assert state.sync_error is result.error
        assert [item.id for item in state.entries] == ["a"]
        await model.stop()


class TestProjection:
    @pytest.mark.asyncio
    async def test_filters(self, model, store, conf_store):
        skip_startup_sync(conf_store)
        await seed(store, make_entry("a"), make_entry("read", read=True), make_entry("saved", bookmarked=True))
        await seed(store, make_entry("other", feed_id="f2"), feed_id="f2", title="Feed 2")

        model.filter.set(NotBookmarked())
        await model.start()
        state = await wait_until(model.state, showing())
        assert {i.id for i in state.entries} == {"a", "other"}
        assert state.feed is None

        model.filter.set(Bookmarked())
        state = await wait_until(model.state, showing(lambda s: [i.id for i in s.entries] == ["saved"]))

        model.filter.set(BelongToFeed(feed_id="f2"))
        state = await wait_until(model.state, showing(lambda s: s.feed is not None))
        assert state.feed.title == "Feed 2"
        assert [i.id for i in state.entries] == ["other"]

        model.save_conf(lambda conf: conf.transform(show_read_entries=True))
        model.filter.set(NotBookmarked())
        state = await wait_until(model.state, showing(lambda s: len(s.entries) == 3))
        assert {i.id for i in state.entries} == {"a", "read", "other"}
        await model.stop()

    @pytest.mark.asyncio
    async def test_store_writes_refresh_the_list(self, model, store, conf_store, coordinator):
        skip_startup_sync(conf_store)
        await seed(store, make_entry("a"), make_entry("b"))

        model.filter.set(NotBookmarked())
        await model.start()
        await wait_until(model.state, showing(lambda s: len(s.entries) == 2))
        await model.set_read(["a"], True)
        state = await wait_until(model.state, showing(lambda s: len(s.entries) == 1))

        assert [i.id for i in state.entries] == ["b"]
        await wait_until(coordinator.state, lambda s: s == Idle())
        await model.stop()

    @pytest.mark.asyncio
    async def test_change_sort_order_scrolls_to_top_once(self, model, store, conf_store):
        skip_startup_sync(conf_store)
        await seed(store, make_entry("old", minutes=1), make_entry("new", minutes=9))

        model.filter.set(NotBookmarked())
        await model.start()
        state = await wait_until(model.state, showing())
        assert [i.id for i in state.entries] == ["new", "old"]
        assert state.scroll_to_top is False

        states = record(model.state)
        conf = model.change_sort_order()
        assert conf.sort_order == SortOrder.ascending
        await wait_until(model.state, showing(lambda s: s.conf.sort_order == SortOrder.ascending and not s.scroll_to_top))

        assert states[0].scroll_to_top is True
        assert [i.id for i in states[0].entries] == ["old", "new"]
        assert [s.scroll_to_top for s in states].count(True) == 1
        await model.stop()

    @pytest.mark.asyncio
    async def test_background_progress_during_follow_up_sync(self, model, store, source, conf_store, coordinator):
        skip_startup_sync(conf_store)
        await seed(store, make_entry("a"))
        source.add_feed("f1", "a", title="Feed 1")
        gate = source.gate("fetch_entries")

        model.filter.set(NotBookmarked())
        await model.start()
        await wait_until(model.state, showing())
        pending = coordinator.launch(FULL_SYNC)
        busy = await wait_until(model.state, showing(lambda s: s.show_background_progress))
        assert [i.id for i in busy.entries] == ["a"]

        gate.set()
        await pending
        await wait_until(model.state, showing(lambda s: not s.show_background_progress))
        await model.stop()

    @pytest.mark.asyncio
    async def test_mark_all_as_read_uses_current_filter(self, model, store, conf_store, coordinator):
        skip_startup_sync(conf_store)
        await seed(store, make_entry("a"), make_entry("saved", bookmarked=True))

        model.filter.set(Bookmarked())
        await model.start()
        await wait_until(model.state, showing())

        assert await model.mark_all_as_read() == 1
        assert (await store.select_entry("a")).read is False
        await wait_until(coordinator.state, lambda s: s == Idle())
        await model.stop()

    @pytest.mark.asyncio
    async def test_stats(self, model, store, conf_store):
        skip_startup_sync(conf_store)
        model.filter.set(NotBookmarked())
        await model.start()
        await wait_until(model.state, showing())

        assert model.stats()["state"] == "ShowingCachedEntries"
        assert model.stats()["recomputations"] >= 1
        await model.stop()

    @pytest.mark.asyncio
    async def test_outdated_recomputation_is_discarded(self, conf_store, source):
        store = HeldStore()
        coordinator = SyncCoordinator(store, conf_store, source, Reconciler(store))
        model = EntriesModel(conf_store, store, coordinator, FlagMutator(store, coordinator))
        skip_startup_sync(conf_store)
        await seed(store, make_entry("a"), make_entry("saved", bookmarked=True))
        await seed(store, make_entry("other", feed_id="f2"), feed_id="f2", title="Feed 2")

        model.filter.set(NotBookmarked())
        await model.start()
        await wait_until(model.state, showing())
        states = record(model.state)

        store.hold = True
        model.filter.set(Bookmarked())
        await asyncio.wait_for(store.held.wait(), 1)
        model.filter.set(BelongToFeed(feed_id="f2"))
        state = await wait_until(model.state, showing(lambda s: s.feed is not None))
        store.release.set()
        await asyncio.sleep(0.01)

        assert [i.id for i in state.entries] == ["other"]
        assert not any(isinstance(s, ShowingCachedEntries) and s.feed is None for s in states)
        assert model.state.value.feed is not None
        assert model.stats()["discarded"] >= 1
        await model.stop()
