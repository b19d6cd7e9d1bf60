from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator


class SortOrder(str, Enum):
    ascending = "ascending"
    descending = "descending"


class _Frozen(BaseModel):
    model_config = ConfigDict(
        frozen=True,
        str_strip_whitespace=True,
    )


def _aware(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class Link(_Frozen):
    href: str
    rel: Optional[str] = None
    type: Optional[str] = None
    title: Optional[str] = None


class Feed(_Frozen):
    id: str
    url: str
    title: str = ""
    site_url: Optional[str] = None
    subscribed_at: Optional[datetime] = None
    ext_show_preview_images: Optional[bool] = None
    ext_open_entries_in_browser: Optional[bool] = None


class Entry(_Frozen):
    id: str
    feed_id: str
    title: str = ""
    link: Optional[str] = None
    summary: Optional[str] = None
    published: datetime
    og_image_url: Optional[str] = None
    og_image_width: int = Field(default=0, ge=0)
    og_image_height: int = Field(default=0, ge=0)
    links: List[Link] = Field(default_factory=list)
    read: bool = False
    read_synced: bool = True
    bookmarked: bool = False
    bookmarked_synced: bool = True

    @field_validator("published")
    @classmethod
    def _published_aware(cls, value: datetime) -> datetime:
        return _aware(value)


# Felder, die ein erneuter Abruf eines Eintrags auffrischen darf.
CONTENT_FIELDS = (
    "title",
    "link",
    "summary",
    "og_image_url",
    "og_image_width",
    "og_image_height",
    "links",
)


class EntryRow(Entry):
    """Eintrag samt Anzeige-Einstellungen des zugehörigen Feeds."""

    feed_title: str = ""
    ext_show_preview_images: Optional[bool] = None
    ext_open_entries_in_browser: Optional[bool] = None


class Conf(_Frozen):
    sort_order: SortOrder = SortOrder.descending
    show_read_entries: bool = False
    show_preview_images: bool = True
    crop_preview_images: bool = True
    use_built_in_browser: bool = True
    sync_on_startup: bool = True
    synced_on_startup: bool = False
    initial_sync_completed: bool = False

    def transform(self, **changes) -> "Conf":
        return self.model_copy(update=changes)


class SyncArgs(_Frozen):
    sync_feeds: bool = True
    sync_flags: bool = True
    sync_entries: bool = True

    def phases(self) -> List[str]:
        result: List[str] = []
        if self.sync_feeds:
            result.append("feeds")
        if self.sync_entries:
            result.append("entries")
        if self.sync_flags:
            result.append("flags")
        return result

    def covers(self, other: "SyncArgs") -> bool:
        own = self.phases()
        return all(phase in own for phase in other.phases())

    def merge(self, other: "SyncArgs") -> "SyncArgs":
        return SyncArgs(
            sync_feeds=self.sync_feeds or other.sync_feeds,
            sync_flags=self.sync_flags or other.sync_flags,
            sync_entries=self.sync_entries or other.sync_entries,
        )


FULL_SYNC = SyncArgs()
FLAGS_ONLY = SyncArgs(sync_feeds=False, sync_flags=True, sync_entries=False)
ENTRIES_ONLY = SyncArgs(sync_feeds=False, sync_flags=False, sync_entries=True)


class NotBookmarked(_Frozen):
    pass


class Bookmarked(_Frozen):
    pass


class BelongToFeed(_Frozen):
    feed_id: str


EntriesFilter = Union[NotBookmarked, Bookmarked, BelongToFeed]


class FeedDescriptor(_Frozen):
    id: str
    url: str
    title: str = ""
    site_url: Optional[str] = None


class EntryDescriptor(_Frozen):
    id: str
    feed_id: Optional[str] = None
    title: str = ""
    link: Optional[str] = None
    summary: Optional[str] = None
    published: datetime
    og_image_url: Optional[str] = None
    og_image_width: int = Field(default=0, ge=0)
    og_image_height: int = Field(default=0, ge=0)
    links: List[Link] = Field(default_factory=list)
    read: Optional[bool] = None
    bookmarked: Optional[bool] = None

    @field_validator("published")
    @classmethod
    def _published_aware(cls, value: datetime) -> datetime:
        return _aware(value)


class FlagState(_Frozen):
    id: str
    read: Optional[bool] = None
    bookmarked: Optional[bool] = None


class PendingFlags(_Frozen):
    """Noch nicht übertragene lokale Markierungen. ``None`` heißt: synchron."""

    id: str
    read: Optional[bool] = None
    bookmarked: Optional[bool] = None
