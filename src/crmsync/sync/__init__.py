"""Sync engine and local user records."""

from crmsync.sync.engine import SyncEngine, SyncState, SyncStateError, TagChanges
from crmsync.sync.users import InMemoryUserStore, UserNotFoundError, UserRecord, UserStore

__all__ = [
    "SyncEngine",
    "SyncState",
    "SyncStateError",
    "TagChanges",
    "InMemoryUserStore",
    "UserNotFoundError",
    "UserRecord",
    "UserStore",
]
