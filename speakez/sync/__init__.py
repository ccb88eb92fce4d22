"""Sync infrastructure for keeping one user's devices convergent.

Provides the snapshot merge engine, the debounced push / pull-and-merge
client, and the HTTP client for the remote sync endpoints.
"""

from .debounce import DelayedTask
from .merge import merge_snapshots
from .remote import RemoteClient
from .sync_client import SyncClient, SyncResult, SyncStatus

__all__ = [
    "DelayedTask",
    "RemoteClient",
    "SyncClient",
    "SyncResult",
    "SyncStatus",
    "merge_snapshots",
]
