"""
Redis-Backend für den Eintragsspeicher.

Layout (``ns`` = Namespace):
- ``ns:feed:<id>`` / ``ns:entry:<id>``: Hash, ein Feld je Modellattribut,
  Werte JSON-kodiert. Flag-Updates schreiben nur die betroffenen Felder.
- ``ns:feeds`` / ``ns:entries``: Sorted Sets, Score = Einfügesequenz, damit
  Abfragen die natürliche Reihenfolge behalten.
- ``ns:feed:<id>:entries``: Set der Eintrags-IDs je Feed.
"""

from __future__ import annotations

import json
from contextlib import contextmanager
from typing import Any, Dict, Iterator, List, Mapping, Optional, Type, TypeVar

from pydantic import BaseModel, ValidationError
from pydantic_core import to_jsonable_python
from redis.asyncio import Redis
from redis.exceptions import RedisError

from ..core.models import Entry, Feed
from ..errors import StoreError
from .base import EntryStore

M = TypeVar("M", bound=BaseModel)


@contextmanager
def _guard(operation: str) -> Iterator[None]:
    try:
        yield
    except RedisError as exc:
        raise StoreError(f"Redis-Fehler bei {operation}: {exc}") from exc


def _encode(fields: Mapping[str, Any]) -> Dict[str, str]:
    return {name: json.dumps(to_jsonable_python(value)) for name, value in fields.items()}


def _decode(model: Type[M], raw: Mapping[Any, Any]) -> M:
    data = {}
    for key, value in raw.items():
        if isinstance(key, bytes):
            key = key.decode("utf-8")
        if isinstance(value, bytes):
            value = value.decode("utf-8")
        data[key] = json.loads(value)
    try:
        return model.model_validate(data)
    except ValidationError as exc:
        raise StoreError(f"Beschädigter Datensatz ({model.__name__}): {exc}") from exc


def _text(value: Any) -> str:
    return value.decode("utf-8") if isinstance(value, bytes) else str(value)


class RedisEntryStore(EntryStore):
    def __init__(self, client: Redis, *, namespace: str = "feedsync") -> None:
        super().__init__("redis")
        self._client = client
        self._namespace = namespace

    def _key(self, *parts: str) -> str:
        return ":".join((self._namespace, *parts))

    async def _next_seq(self) -> int:
        return int(await self._client.incr(self._key("seq")))

    async def _get_feed(self, feed_id: str) -> Optional[Feed]:
        with _guard("feed lesen"):
            raw = await self._client.hgetall(self._key("feed", feed_id))
        return _decode(Feed, raw) if raw else None

    async def _all_feeds(self) -> List[Feed]:
        return await self._load_all(Feed, "feeds", "feed")

    async def _put_feed(self, feed: Feed) -> None:
        key = self._key("feed", feed.id)
        with _guard("feed schreiben"):
            exists = await self._client.exists(key)
            pipe = self._client.pipeline(transaction=True)
            try:
                pipe.delete(key)
                pipe.hset(key, mapping=_encode(feed.model_dump()))
                if not exists:
                    pipe.zadd(self._key("feeds"), {feed.id: await self._next_seq()})
                await pipe.execute()
            finally:
                await pipe.aclose()

    async def _remove_feed(self, feed_id: str) -> None:
        members_key = self._key("feed", feed_id, "entries")
        with _guard("feed löschen"):
            entry_ids = [_text(item) for item in await self._client.smembers(members_key)]
            pipe = self._client.pipeline(transaction=True)
            try:
                for entry_id in entry_ids:
                    pipe.delete(self._key("entry", entry_id))
                if entry_ids:
                    pipe.zrem(self._key("entries"), *entry_ids)
                pipe.delete(members_key, self._key("feed", feed_id))
                pipe.zrem(self._key("feeds"), feed_id)
                await pipe.execute()
            finally:
                await pipe.aclose()

    async def _get_entry(self, entry_id: str) -> Optional[Entry]:
        with _guard("eintrag lesen"):
            raw = await self._client.hgetall(self._key("entry", entry_id))
        return _decode(Entry, raw) if raw else None

    async def _all_entries(self) -> List[Entry]:
        return await self._load_all(Entry, "entries", "entry")

    async def _put_entry(self, entry: Entry) -> None:
        with _guard("eintrag schreiben"):
            seq = await self._next_seq()
            pipe = self._client.pipeline(transaction=True)
            try:
                pipe.hset(self._key("entry", entry.id), mapping=_encode(entry.model_dump()))
                pipe.zadd(self._key("entries"), {entry.id: seq})
                pipe.sadd(self._key("feed", entry.feed_id, "entries"), entry.id)
                await pipe.execute()
            finally:
                await pipe.aclose()

    async def _patch_entry(self, entry_id: str, fields: Dict[str, Any]) -> None:
        with _guard("eintrag aktualisieren"):
            await self._client.hset(self._key("entry", entry_id), mapping=_encode(fields))

    async def _entry_count(self) -> int:
        with _guard("einträge zählen"):
            return int(await self._client.zcard(self._key("entries")))

    async def _load_all(self, model: Type[M], index: str, prefix: str) -> List[M]:
        with _guard(f"{index} lesen"):
            ids = [_text(item) for item in await self._client.zrange(self._key(index), 0, -1)]
            if not ids:
                return []
            pipe = self._client.pipeline(transaction=False)
            try:
                for item_id in ids:
                    pipe.hgetall(self._key(prefix, item_id))
                raws = await pipe.execute()
            finally:
                await pipe.aclose()
        return [_decode(model, raw) for raw in raws if raw]
