from .projector import (
    EntriesModel,
    EntryItem,
    FailedToSync,
    InitialSync,
    LoadingCachedEntries,
    ShowingCachedEntries,
    State,
    sort_rows,
    to_item,
)

__all__ = [
    "EntriesModel",
    "EntryItem",
    "FailedToSync",
    "InitialSync",
    "LoadingCachedEntries",
    "ShowingCachedEntries",
    "State",
    "sort_rows",
    "to_item",
]
