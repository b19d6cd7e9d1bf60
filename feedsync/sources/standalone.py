from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional, Tuple

import feedparser
import httpx

from ..config import SourceConfig
from ..core.models import EntryDescriptor, FeedDescriptor, FlagState, Link, PendingFlags
from ..errors import ParseError
from ..store.base import EntryStore
from ..utils import now_utc
from ..utils.hashing import stable_id
from ..utils.tasks import gather_bounded
from .base import FeedSource

logger = logging.getLogger("feedsync.standalone")


def feed_id_for(url: str) -> str:
    return stable_id(url)


def _published(item: Mapping[str, Any]) -> Optional[datetime]:
    for key in ("published_parsed", "updated_parsed", "created_parsed"):
        value = item.get(key)
        if value:
            return datetime(*value[:6], tzinfo=timezone.utc)
    return None


def _image(item: Mapping[str, Any]) -> Tuple[Optional[str], int, int]:
    candidates = list(item.get("media_thumbnail") or [])
    candidates += [
        media
        for media in item.get("media_content") or []
        if media.get("medium") == "image" or str(media.get("type", "")).startswith("image/")
    ]
    candidates += [
        {"url": link.get("href")}
        for link in item.get("links") or []
        if link.get("rel") == "enclosure" and str(link.get("type", "")).startswith("image/")
    ]
    for candidate in candidates:
        url = candidate.get("url")
        if not url:
            continue
        return url, _int(candidate.get("width")), _int(candidate.get("height"))
    return None, 0, 0


def _int(value: Any) -> int:
    try:
        return max(0, int(value))
    except (TypeError, ValueError):
        return 0


def _links(item: Mapping[str, Any]) -> List[Link]:
    result: List[Link] = []
    for link in item.get("links") or []:
        href = link.get("href")
        if not href:
            continue
        result.append(
            Link(href=href, rel=link.get("rel"), type=link.get("type"), title=link.get("title"))
        )
    return result


class StandaloneFeedSource(FeedSource):
    """Liest RSS/Atom direkt von den Feed-URLs.

    Es gibt keine Gegenstelle für Markierungen: der lokale Speicher ist die
    Wahrheit, ``push_flags`` bestätigt nur und ``pull_flags`` liefert nichts.

    Ein beim Feed-Abruf geladenes Dokument wird vom folgenden Abruf der
    Einträge einmal wiederverwendet, sofern es jünger als ``reuse_s`` ist.
    """

    name = "standalone"

    def __init__(
        self,
        config: SourceConfig,
        client: httpx.AsyncClient,
        store: EntryStore,
        *,
        max_parallel: int = 4,
        reuse_s: float = 60.0,
    ):
        super().__init__(config, client)
        self._store = store
        self._max_parallel = max_parallel
        self._reuse_s = reuse_s
        self._documents: Dict[str, Tuple[float, feedparser.FeedParserDict]] = {}

    async def _parse(self, url: str) -> feedparser.FeedParserDict:
        response = await self._send("GET", url, headers={"User-Agent": self.config.user_agent})
        loop = asyncio.get_running_loop()
        parsed = await loop.run_in_executor(None, feedparser.parse, response.content)
        if not parsed.get("version") and not parsed.entries:
            raise ParseError(f"Kein RSS/Atom unter {url}: {parsed.get('bozo_exception')}")
        return parsed

    async def fetch_feed(self, url: str) -> FeedDescriptor:
        parsed = await self._parse(url)
        self._documents[url] = (asyncio.get_running_loop().time(), parsed)
        feed = parsed.feed
        return FeedDescriptor(
            id=feed_id_for(url),
            url=url,
            title=feed.get("title") or url,
            site_url=feed.get("link"),
        )

    async def list_feeds(self) -> List[FeedDescriptor]:
        feeds = await self._store.select_all_feeds()
        return await gather_bounded(
            [feed.url for feed in feeds],
            self.fetch_feed,
            limit=self._max_parallel,
        )

    def _take_document(self, url: str) -> Optional[feedparser.FeedParserDict]:
        cached = self._documents.pop(url, None)
        if cached is None:
            return None
        loaded_at, parsed = cached
        if asyncio.get_running_loop().time() - loaded_at > self._reuse_s:
            return None
        return parsed

    async def fetch_entries(self, feed_id: str, since: Optional[datetime]) -> List[EntryDescriptor]:
        """Liefert alle Einträge des Dokuments; ``since`` wird nicht ausgewertet."""
        feed = await self._store.select_feed_by_id(feed_id)
        if feed is None:
            return []
        parsed = self._take_document(feed.url)
        if parsed is None:
            parsed = await self._parse(feed.url)
        else:
            logger.debug("reusing document feed=%s", feed_id)
        fetched_at = now_utc()
        result: List[EntryDescriptor] = []
        for item in parsed.entries:
            key = item.get("id") or item.get("link") or item.get("title")
            if not key:
                continue
            published = _published(item)
            image_url, width, height = _image(item)
            result.append(
                EntryDescriptor(
                    id=stable_id(feed_id, key),
                    feed_id=feed_id,
                    title=item.get("title") or "",
                    link=item.get("link"),
                    summary=item.get("summary"),
                    published=published or fetched_at,
                    og_image_url=image_url,
                    og_image_width=width,
                    og_image_height=height,
                    links=_links(item),
                )
            )
        logger.debug("parsed feed=%s entries=%s", feed_id, len(result))
        return result

    async def push_flags(self, pending: List[PendingFlags]) -> None:
        return None

    async def pull_flags(self) -> List[FlagState]:
        return []
