"""Speak-EZ offline-first sync core.

Local snapshot store, deterministic merge engine, and debounced
push/pull client keeping one user's devices convergent.
"""

from .models import Snapshot
from .session import RemoteSessionGate, SessionGate, StaticSessionGate
from .store import LocalStore
from .sync import RemoteClient, SyncClient, merge_snapshots

__version__ = "0.1.0"

__all__ = [
    "LocalStore",
    "RemoteClient",
    "RemoteSessionGate",
    "SessionGate",
    "Snapshot",
    "StaticSessionGate",
    "SyncClient",
    "merge_snapshots",
]
