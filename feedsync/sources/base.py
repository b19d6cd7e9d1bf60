from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime
from typing import List, Optional

import httpx

from ..config import SourceConfig
from ..core.models import EntryDescriptor, FeedDescriptor, FlagState, PendingFlags
from ..errors import TransportError


class FeedSource(ABC):
    """Basisklasse für alle entfernten Feed-Quellen.

    Fehler werden als ``TransportError`` (nicht erreichbar, kein 2xx) oder
    ``ParseError`` (unlesbare Antwort) gemeldet.
    """

    name = "base"

    def __init__(self, config: SourceConfig, client: httpx.AsyncClient):
        self.config = config
        self._client = client
        self._requests = 0
        self._failures = 0

    @abstractmethod
    async def fetch_feed(self, url: str) -> FeedDescriptor:
        """Löst eine Feed-URL in Metadaten auf."""

    @abstractmethod
    async def list_feeds(self) -> List[FeedDescriptor]:
        """Vollständige Liste der abonnierten Feeds."""

    @abstractmethod
    async def fetch_entries(self, feed_id: str, since: Optional[datetime]) -> List[EntryDescriptor]:
        """Einträge eines Feeds, mindestens alle ab ``since`` veröffentlichten."""

    @abstractmethod
    async def push_flags(self, pending: List[PendingFlags]) -> None:
        """Überträgt lokale Markierungen."""

    @abstractmethod
    async def pull_flags(self) -> List[FlagState]:
        """Aktueller entfernter Stand der Markierungen."""

    async def unsubscribe(self, feed_id: str) -> None:
        return None

    async def _send(self, method: str, url: str, **kwargs) -> httpx.Response:
        self._requests += 1
        try:
            response = await self._client.request(method, url, **kwargs)
        except httpx.HTTPError as exc:
            self._failures += 1
            raise TransportError(f"{method} {url} fehlgeschlagen: {exc}") from exc
        if not response.is_success:
            self._failures += 1
            raise TransportError(
                f"{method} {url} lieferte HTTP {response.status_code}",
                status_code=response.status_code,
            )
        return response

    def stats(self) -> dict:
        return {"source": self.name, "requests": self._requests, "failures": self._failures}
