"""Offline-first sync of learned patterns with an optional remote store."""

from .manager import SyncManager
from .queue import SyncQueue, backoff_delay
from .remote import HttpRemoteStore, RemoteChanges, RemoteStore

__all__ = [
    "HttpRemoteStore",
    "RemoteChanges",
    "RemoteStore",
    "SyncManager",
    "SyncQueue",
    "backoff_delay",
]
