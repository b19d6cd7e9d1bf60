import pytest

from feedsync import FeedSyncOrchestrator
from feedsync.config import AppConfig, LoggingConfig, StoreConfig
from feedsync.main import build_parser
from feedsync.sources import StandaloneFeedSource
from feedsync.store import MemoryEntryStore


class TestOrchestrator:
    @pytest.mark.asyncio
    async def test_start_wires_components_and_stop_is_idempotent(self, tmp_path):
        config = AppConfig(
            store=StoreConfig(backend="memory", conf_path=str(tmp_path / "conf.yml")),
            logging=LoggingConfig(dir=None),
        )
        orchestrator = FeedSyncOrchestrator(config)

        await orchestrator.start()
        await orchestrator.start()
        try:
            assert isinstance(orchestrator.store, MemoryEntryStore)
            assert isinstance(orchestrator.source, StandaloneFeedSource)
            result = await orchestrator.coordinator.run()
            assert result.ok
            stats = orchestrator.stats()
            assert stats["sync"]["sessions_started"] == 1
            assert stats["source"]["source"] == "standalone"
        finally:
            await orchestrator.stop()
        await orchestrator.stop()


class TestParser:
    def test_scoped_commands(self):
        args = build_parser().parse_args(["--config", "f.yml", "mark-all-read", "--feed", "f1"])

        assert args.command == "mark-all-read"
        assert args.feed == "f1"
        assert args.bookmarked is False

    def test_read_accepts_many_ids(self):
        args = build_parser().parse_args(["--config", "f.yml", "read", "a", "b", "--unread"])

        assert args.ids == ["a", "b"]
        assert args.unread is True

    def test_scope_flags_are_exclusive(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args(["--config", "f.yml", "list", "--bookmarked", "--feed", "f1"])
