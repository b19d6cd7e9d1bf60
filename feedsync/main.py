from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

if __package__ in (None, ""):
    # Als Skript ausgeführt: Projektwurzel zum Pfad hinzufügen.
    sys.path.append(str(Path(__file__).resolve().parent.parent))
    from feedsync import FeedSyncOrchestrator, load_config  # type: ignore
    from feedsync.config import LoggingConfig  # type: ignore
    from feedsync.core.models import (  # type: ignore
        FLAGS_ONLY,
        FULL_SYNC,
        BelongToFeed,
        Bookmarked,
        EntriesFilter,
        NotBookmarked,
    )
    from feedsync.entries import FailedToSync, ShowingCachedEntries  # type: ignore
    from feedsync.errors import FeedSyncError  # type: ignore
    from feedsync.sync import Idle  # type: ignore
else:
    from . import FeedSyncOrchestrator, load_config
    from .config import LoggingConfig
    from .core.models import FLAGS_ONLY, FULL_SYNC, BelongToFeed, Bookmarked, EntriesFilter, NotBookmarked
    from .entries import FailedToSync, ShowingCachedEntries
    from .errors import FeedSyncError
    from .sync import Idle


def _configure_logging(settings: LoggingConfig) -> None:
    formatter = logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s")

    root_logger = logging.getLogger()
    root_logger.setLevel(settings.level)
    root_logger.handlers.clear()

    if settings.dir:
        log_dir = Path(settings.dir)
        log_dir.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            log_dir / settings.file,
            maxBytes=settings.max_bytes,
            backupCount=settings.backup_count,
            encoding="utf-8",
        )
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    logging.getLogger("httpx").setLevel(logging.WARNING)


def _scope(args: argparse.Namespace) -> EntriesFilter:
    if getattr(args, "feed", None):
        return BelongToFeed(feed_id=args.feed)
    if getattr(args, "bookmarked", False):
        return Bookmarked()
    return NotBookmarked()


async def _show_entries(orchestrator: FeedSyncOrchestrator, scope: EntriesFilter) -> int:
    entries = orchestrator.entries
    entries.filter.set(scope)
    await entries.start()
    state = await entries.state.wait_for(lambda s: isinstance(s, (ShowingCachedEntries, FailedToSync)))
    if isinstance(state, FailedToSync):
        print(f"Synchronisierung fehlgeschlagen: {state.cause}", file=sys.stderr)
        return 1
    if state.feed is not None:
        print(f"# {state.feed.title}")
    for item in state.entries:
        marker = " " if item.read else "*"
        print(f"{marker} {item.id}  {item.title}  ({item.subtitle})")
    if state.sync_error is not None:
        print(f"Hinweis: letzter Sync fehlgeschlagen: {state.sync_error}", file=sys.stderr)
    # Laufenden Hintergrund-Sync nicht abbrechen.
    await orchestrator.coordinator.state.wait_for(lambda s: isinstance(s, Idle))
    return 0


async def _run(args: argparse.Namespace) -> int:
    config = load_config(args.config)
    _configure_logging(config.logging)
    orchestrator = FeedSyncOrchestrator(config)
    await orchestrator.start()
    try:
        coordinator = orchestrator.coordinator
        if args.command == "sync":
            result = await coordinator.run(FLAGS_ONLY if args.flags_only else FULL_SYNC)
            if not result.ok:
                print(f"Synchronisierung fehlgeschlagen: {result.error}", file=sys.stderr)
                return 1
            return 0
        if args.command == "subscribe":
            try:
                feed = await orchestrator.subscriptions.subscribe(args.url)
            except FeedSyncError as exc:
                print(f"Abonnieren fehlgeschlagen: {exc}", file=sys.stderr)
                return 1
            print(f"{feed.id}  {feed.title}")
            await coordinator.state.wait_for(lambda s: isinstance(s, Idle))
            return 0
        if args.command == "unsubscribe":
            removed = await orchestrator.subscriptions.unsubscribe(args.feed_id)
            return 0 if removed else 1
        if args.command == "feeds":
            for feed in await orchestrator.subscriptions.get_feeds():
                print(f"{feed.id}  {feed.title}  {feed.url}")
            return 0
        if args.command == "list":
            return await _show_entries(orchestrator, _scope(args))
        if args.command == "read":
            await orchestrator.mutator.set_read(args.ids, not args.unread)
        elif args.command == "bookmark":
            await orchestrator.mutator.set_bookmarked(args.id, not args.remove)
        elif args.command == "mark-all-read":
            await orchestrator.mutator.mark_all_read(_scope(args))
        elif args.command == "sort":
            conf = orchestrator.entries.change_sort_order()
            print(conf.sort_order.value)
            return 0
        result = await coordinator.run(FLAGS_ONLY)
        return 0 if result.ok else 1
    finally:
        await orchestrator.stop()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Feed-Synchronisierung")
    parser.add_argument("--config", required=True, help="Pfad zur feedsync.yml")
    commands = parser.add_subparsers(dest="command", required=True)

    sync_cmd = commands.add_parser("sync", help="Feeds, Einträge und Markierungen abgleichen.")
    sync_cmd.add_argument("--flags-only", action="store_true", help="Nur Markierungen übertragen.")

    subscribe_cmd = commands.add_parser("subscribe", help="Feed abonnieren.")
    subscribe_cmd.add_argument("url")

    unsubscribe_cmd = commands.add_parser("unsubscribe", help="Feed abbestellen.")
    unsubscribe_cmd.add_argument("feed_id")

    commands.add_parser("feeds", help="Abonnierte Feeds auflisten.")

    for name, help_text in (
        ("list", "Einträge anzeigen."),
        ("mark-all-read", "Alle Einträge der Ansicht als gelesen markieren."),
    ):
        scoped = commands.add_parser(name, help=help_text)
        group = scoped.add_mutually_exclusive_group()
        group.add_argument("--bookmarked", action="store_true")
        group.add_argument("--feed", metavar="FEED_ID")

    read_cmd = commands.add_parser("read", help="Einträge als gelesen markieren.")
    read_cmd.add_argument("ids", nargs="+")
    read_cmd.add_argument("--unread", action="store_true")

    bookmark_cmd = commands.add_parser("bookmark", help="Eintrag merken.")
    bookmark_cmd.add_argument("id")
    bookmark_cmd.add_argument("--remove", action="store_true")

    commands.add_parser("sort", help="Sortierreihenfolge umkehren.")
    return parser


def main(argv: Optional[list[str]] = None) -> None:
    args = build_parser().parse_args(argv)
    try:
        sys.exit(asyncio.run(_run(args)))
    except KeyboardInterrupt:
        logging.info("Shutdown angefordert.")


if __name__ == "__main__":
    main()
