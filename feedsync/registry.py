from __future__ import annotations

from typing import TYPE_CHECKING, Callable, Dict, List

import httpx

from .config import AppConfig
from .store.base import EntryStore

if TYPE_CHECKING:
    from .sources.base import FeedSource


Factory = Callable[[AppConfig, httpx.AsyncClient, EntryStore], "FeedSource"]


class SourceRegistry:
    def __init__(self) -> None:
        self._factories: Dict[str, Factory] = {}

    def register(self, kind: str, factory: Factory) -> None:
        key = kind.lower()
        if key in self._factories:
            raise ValueError(f"Quelltyp bereits registriert: {kind}")
        self._factories[key] = factory

    def create(self, config: AppConfig, client: httpx.AsyncClient, store: EntryStore) -> FeedSource:
        key = config.source.kind.lower()
        if key not in self._factories:
            raise KeyError(f"Keine Factory für {config.source.kind} registriert.")
        return self._factories[key](config, client, store)

    def kinds(self) -> List[str]:
        return sorted(self._factories)


registry = SourceRegistry()
