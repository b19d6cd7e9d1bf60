from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

import httpx
from pydantic import ValidationError

from ..config import SourceConfig
from ..core.models import EntryDescriptor, FeedDescriptor, FlagState, Link, PendingFlags
from ..errors import ParseError
from .base import FeedSource

logger = logging.getLogger("feedsync.miniflux")


class MinifluxFeedSource(FeedSource):
    """Miniflux-API v1 (Authentifizierung über ``X-Auth-Token``)."""

    name = "miniflux"

    def __init__(self, config: SourceConfig, client: httpx.AsyncClient, *, page_size: int = 100):
        super().__init__(config, client)
        self._page_size = page_size
        self._headers = {"User-Agent": config.user_agent}
        if config.token:
            self._headers["X-Auth-Token"] = config.token

    async def _json(self, method: str, path: str, **kwargs) -> Any:
        response = await self._send(method, path, headers=self._headers, **kwargs)
        if response.status_code == 204 or not response.content:
            return None
        try:
            return response.json()
        except ValueError as exc:
            raise ParseError(f"{method} {path}: keine gültige JSON-Antwort") from exc

    async def _paged_entries(self, path: str, params: Dict[str, Any]) -> List[Dict[str, Any]]:
        entries: List[Dict[str, Any]] = []
        offset = 0
        while True:
            page = await self._json(
                "GET",
                path,
                params={**params, "limit": self._page_size, "offset": offset},
            )
            if not isinstance(page, dict) or not isinstance(page.get("entries"), list):
                raise ParseError(f"GET {path}: Feld 'entries' fehlt")
            batch = page["entries"] or []
            entries.extend(batch)
            offset += len(batch)
            if not batch or offset >= int(page.get("total") or 0):
                return entries

    def _feed(self, raw: Any) -> FeedDescriptor:
        try:
            return FeedDescriptor(
                id=str(raw["id"]),
                url=raw["feed_url"],
                title=raw.get("title") or "",
                site_url=raw.get("site_url"),
            )
        except (KeyError, TypeError, ValidationError) as exc:
            raise ParseError(f"Unerwartetes Feed-Objekt: {exc}") from exc

    def _entry(self, raw: Any) -> EntryDescriptor:
        try:
            image = next(
                (
                    enclosure
                    for enclosure in raw.get("enclosures") or []
                    if str(enclosure.get("mime_type", "")).startswith("image/")
                ),
                None,
            )
            links = [Link(href=raw["url"], rel="alternate")] if raw.get("url") else []
            links += [
                Link(href=enclosure["url"], rel="enclosure", type=enclosure.get("mime_type"))
                for enclosure in raw.get("enclosures") or []
                if enclosure.get("url")
            ]
            return EntryDescriptor(
                id=str(raw["id"]),
                feed_id=str(raw["feed_id"]),
                title=raw.get("title") or "",
                link=raw.get("url"),
                summary=raw.get("content"),
                published=raw["published_at"],
                og_image_url=image.get("url") if image else None,
                links=links,
                read=raw.get("status") == "read",
                bookmarked=bool(raw.get("starred")),
            )
        except (KeyError, TypeError, AttributeError, ValidationError) as exc:
            raise ParseError(f"Unerwartetes Eintrags-Objekt: {exc}") from exc

    async def fetch_feed(self, url: str) -> FeedDescriptor:
        for feed in await self.list_feeds():
            if feed.url == url:
                return feed
        created = await self._json("POST", "/v1/feeds", json={"feed_url": url})
        if not isinstance(created, dict) or "feed_id" not in created:
            raise ParseError("POST /v1/feeds: Feld 'feed_id' fehlt")
        logger.info("subscribed url=%s feed=%s", url, created["feed_id"])
        return self._feed(await self._json("GET", f"/v1/feeds/{created['feed_id']}"))

    async def list_feeds(self) -> List[FeedDescriptor]:
        raw = await self._json("GET", "/v1/feeds")
        if not isinstance(raw, list):
            raise ParseError("GET /v1/feeds: Liste erwartet")
        return [self._feed(item) for item in raw]

    async def fetch_entries(self, feed_id: str, since: Optional[datetime]) -> List[EntryDescriptor]:
        params: Dict[str, Any] = {"order": "published_at", "direction": "asc"}
        if since is not None:
            # published_after ist exklusiv; gleiche Zeitstempel erneut holen.
            params["published_after"] = int(since.timestamp()) - 1
        raw = await self._paged_entries(f"/v1/feeds/{feed_id}/entries", params)
        return [self._entry(item) for item in raw]

    async def push_flags(self, pending: List[PendingFlags]) -> None:
        for status, read in (("read", True), ("unread", False)):
            ids = [int(flags.id) for flags in pending if flags.read is read]
            if ids:
                await self._json("PUT", "/v1/entries", json={"entry_ids": ids, "status": status})
        for flags in pending:
            if flags.bookmarked is None:
                continue
            # Der Endpunkt schaltet nur um, daher erst den entfernten Stand prüfen.
            current = await self._json("GET", f"/v1/entries/{flags.id}")
            if not isinstance(current, dict):
                raise ParseError(f"GET /v1/entries/{flags.id}: Objekt erwartet")
            if bool(current.get("starred")) != flags.bookmarked:
                await self._json("PUT", f"/v1/entries/{flags.id}/bookmark")
        logger.info("pushed flags entries=%s", len(pending))

    async def pull_flags(self) -> List[FlagState]:
        raw = await self._paged_entries("/v1/entries", {"order": "id", "direction": "asc"})
        try:
            return [
                FlagState(
                    id=str(item["id"]),
                    read=item.get("status") == "read",
                    bookmarked=bool(item.get("starred")),
                )
                for item in raw
            ]
        except (KeyError, TypeError) as exc:
            raise ParseError(f"Unerwartetes Eintrags-Objekt: {exc}") from exc

    async def unsubscribe(self, feed_id: str) -> None:
        await self._json("DELETE", f"/v1/feeds/{feed_id}")
