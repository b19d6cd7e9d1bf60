from .flow import StateFlow, combine_latest
from .models import (
    ENTRIES_ONLY,
    FLAGS_ONLY,
    FULL_SYNC,
    BelongToFeed,
    Bookmarked,
    Conf,
    EntriesFilter,
    Entry,
    EntryDescriptor,
    EntryRow,
    Feed,
    FeedDescriptor,
    FlagState,
    Link,
    NotBookmarked,
    PendingFlags,
    SortOrder,
    SyncArgs,
)

__all__ = [
    "ENTRIES_ONLY",
    "FLAGS_ONLY",
    "FULL_SYNC",
    "BelongToFeed",
    "Bookmarked",
    "Conf",
    "EntriesFilter",
    "Entry",
    "EntryDescriptor",
    "EntryRow",
    "Feed",
    "FeedDescriptor",
    "FlagState",
    "Link",
    "NotBookmarked",
    "PendingFlags",
    "SortOrder",
    "SyncArgs",
    "StateFlow",
    "combine_latest",
]
