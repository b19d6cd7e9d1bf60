from .coordinator import FollowUpSync, Idle, InitialSync, SyncCoordinator, SyncResult, SyncState
from .mutator import FlagMutator
from .reconciler import Reconciler
from .subscriptions import SubscriptionManager

__all__ = [
    "FlagMutator",
    "FollowUpSync",
    "Idle",
    "InitialSync",
    "Reconciler",
    "SubscriptionManager",
    "SyncCoordinator",
    "SyncResult",
    "SyncState",
]
