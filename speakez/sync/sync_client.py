"""Sync client: decides when local state is pushed and remote state pulled.

Merge policy lives in ``merge.py``; this module only orchestrates. Every
operation is best-effort: errors are caught here, logged, and recorded in
``state`` so callers (and a "last synced" indicator) can inspect them.
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any

from ..errors import AuthError, MalformedSnapshotError, SyncError
from ..models import Snapshot
from ..session import SessionGate
from ..store import LocalStore
from ..timestamps import utc_now
from .debounce import DelayedTask, Sleep
from .merge import merge_snapshots
from .remote import RemoteClient

logger = logging.getLogger(__name__)


class SyncStatus(Enum):
    """Status of a sync operation."""

    IDLE = "idle"  # Nothing attempted yet
    SUCCESS = "success"
    FAILED = "failed"
    UNAUTHENTICATED = "unauthenticated"


@dataclass
class SyncResult:
    """Result of a sync operation."""

    status: SyncStatus
    sessions_pushed: int = 0
    sessions_pulled: int = 0
    error: str | None = None
    timestamp: datetime | None = None


@dataclass
class SyncState:
    """Observable outcome of the most recent sync activity."""

    status: SyncStatus = SyncStatus.IDLE
    last_error: str | None = None
    last_push_at: datetime | None = None
    last_pull_at: datetime | None = None
    pushes: int = 0
    pulls: int = 0
    failures: int = 0


class SyncClient:
    """Keeps the local store and the remote convergent.

    Saves on the store schedule a debounced push; ``pull_and_merge`` is
    called on boot/foreground. Nothing happens while the session gate
    says the user is not authenticated.
    """

    def __init__(
        self,
        store: LocalStore,
        remote: RemoteClient,
        session: SessionGate,
        debounce_seconds: float = 2.0,
        incremental_pull: bool = False,
        sleep: Sleep = asyncio.sleep,
    ):
        """Initialize the sync client and subscribe to store saves.

        Args:
            store: Local store holding the canonical snapshot.
            remote: Client for the sync endpoints.
            session: Gate consulted before every network operation.
            debounce_seconds: Quiet period that collapses bursts of saves.
            incremental_pull: Pass the cursor as ``since`` on pulls.
            sleep: Awaitable sleep for the debounce timer.
        """
        self.store = store
        self.remote = remote
        self.session = session
        self.incremental_pull = incremental_pull
        self.state = SyncState()
        self._debouncer = DelayedTask(
            self._debounced_push, debounce_seconds, sleep=sleep, name="sync-push"
        )
        self.store.add_listener(self.schedule_push)

    @property
    def push_pending(self) -> bool:
        return self._debouncer.pending

    def schedule_push(self) -> bool:
        """Queue a push after the quiet period, if authenticated.

        Returns:
            True if a push was (re)scheduled.
        """
        if not self.session.is_authenticated():
            logger.debug("Not authenticated, push not scheduled")
            return False

        try:
            self._debouncer.schedule()
        except RuntimeError:
            logger.debug("No running event loop, push left for next trigger")
            return False
        return True

    async def flush(self) -> bool:
        """Push now if a debounced push is pending.

        Returns:
            True if a pending push was run.
        """
        return await self._debouncer.flush()

    async def wait_idle(self) -> None:
        """Wait for pending and in-flight debounced pushes to finish."""
        await self._debouncer.wait()

    async def _debounced_push(self) -> None:
        await self.push()

    def _record_failure(self, error: Exception) -> SyncResult:
        self.state.failures += 1
        self.state.last_error = str(error)

        if isinstance(error, AuthError):
            self.state.status = SyncStatus.UNAUTHENTICATED
            self.session.on_auth_failure()
        else:
            self.state.status = SyncStatus.FAILED

        return SyncResult(status=self.state.status, error=str(error))

    async def push(self) -> SyncResult:
        """Send the current snapshot to the remote.

        On success the cursor advances and the ack's merged fields are
        merged into local state. On failure nothing local changes.

        Returns:
            SyncResult with push statistics.
        """
        if not self.session.is_authenticated():
            return SyncResult(status=SyncStatus.UNAUTHENTICATED)

        snapshot = self.store.load()
        started_at = utc_now()

        try:
            ack = await self.remote.push(snapshot.to_payload())
            merged = ack.get("merged")
            server_state = Snapshot.from_remote(merged) if merged else None
        except (SyncError, MalformedSnapshotError) as e:
            logger.warning(f"Push failed: {e}")
            return self._record_failure(e)

        if server_state is not None:
            self.store.save_merged(merge_snapshots(self.store.load(), server_state))

        self.store.set_cursor(started_at)
        now = datetime.now()
        self.state.status = SyncStatus.SUCCESS
        self.state.last_error = None
        self.state.last_push_at = now
        self.state.pushes += 1

        logger.info(f"Pushed snapshot with {len(snapshot.history)} sessions")
        return SyncResult(
            status=SyncStatus.SUCCESS,
            sessions_pushed=len(snapshot.history),
            timestamp=now,
        )

    async def pull(self, since: str | None = None) -> Snapshot:
        """Fetch the remote snapshot.

        Args:
            since: Optional cursor bounding the returned history.

        Raises:
            SyncError: On network or server failure.
            MalformedSnapshotError: If the response is not a snapshot.
        """
        data = await self.remote.pull(since)
        return Snapshot.from_remote(data)

    async def pull_and_merge(self) -> SyncResult:
        """Pull remote state, merge it into local state, and store it.

        The write-back does not schedule a push. The merge runs against
        whatever local state exists when the pull resolves.

        Returns:
            SyncResult with pull statistics.
        """
        if not self.session.is_authenticated():
            logger.debug("Not authenticated, skipping pull")
            return SyncResult(status=SyncStatus.UNAUTHENTICATED)

        since = self.store.get_cursor() if self.incremental_pull else None
        started_at = utc_now()

        try:
            remote = await self.pull(since)
        except (SyncError, MalformedSnapshotError) as e:
            logger.warning(f"Pull failed: {e}")
            return self._record_failure(e)

        local = self.store.load()
        merged = merge_snapshots(local, remote)
        self.store.save_merged(merged)
        self.store.set_cursor(started_at)

        added = len(merged.history) - len(local.history)
        now = datetime.now()
        self.state.status = SyncStatus.SUCCESS
        self.state.last_error = None
        self.state.last_pull_at = now
        self.state.pulls += 1

        logger.info(f"Pulled and merged remote snapshot, {added} new sessions")
        return SyncResult(
            status=SyncStatus.SUCCESS,
            sessions_pulled=added,
            timestamp=now,
        )

    async def close(self) -> None:
        """Detach from the store and drop any pending push."""
        self.store.remove_listener(self.schedule_push)
        if self._debouncer.cancel():
            logger.info("Pending push cancelled on close")
        await self._debouncer.wait()

    def get_sync_status(self) -> dict[str, Any]:
        """Get current sync status.

        Returns:
            Dictionary with sync state, suitable for JSON output.
        """
        return {
            "authenticated": self.session.is_authenticated(),
            "status": self.state.status.value,
            "last_error": self.state.last_error,
            "last_push": (
                self.state.last_push_at.isoformat() if self.state.last_push_at else None
            ),
            "last_pull": (
                self.state.last_pull_at.isoformat() if self.state.last_pull_at else None
            ),
            "cursor": self.store.get_cursor(),
            "push_pending": self.push_pending,
            "pushes": self.state.pushes,
            "pulls": self.state.pulls,
            "failures": self.state.failures,
        }
