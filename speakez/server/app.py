"""Reference sync server (FastAPI).

Implements the remote side of the sync protocol over in-memory per-user
state, for local development and integration tests. It applies the same
merge engine as the client, with the pushing client as ``local`` and the
stored server state as ``remote``.
"""

import logging
from dataclasses import dataclass, field
from typing import Any

from fastapi import APIRouter, FastAPI, HTTPException, Request

from ..config import Config
from ..errors import MalformedSnapshotError
from ..models import Snapshot, record_id
from ..session import SESSION_COOKIE
from ..sync.merge import merge_history, merge_snapshots
from ..timestamps import normalize_timestamp, utc_now

logger = logging.getLogger(__name__)


@dataclass
class StoredSession:
    session: dict[str, Any]
    created_at: str


@dataclass
class UserData:
    """Server-side state of one user."""

    snapshot: Snapshot | None = None
    history: dict[Any, StoredSession] = field(default_factory=dict)

    def insert_sessions(self, sessions: list[Any]) -> int:
        """Insert sessions not seen before; existing ids are left untouched.

        Returns:
            Number of sessions inserted.
        """
        inserted = 0
        for session in sessions:
            rid = record_id(session)
            if rid is None:
                logger.warning("Ignoring pushed session without an id")
                continue
            if rid in self.history:
                continue
            self.history[rid] = StoredSession(session=session, created_at=utc_now())
            inserted += 1
        return inserted


class ServerState:
    """All users' sync state, keyed by user id."""

    def __init__(self) -> None:
        self.users: dict[str, UserData] = {}

    def get(self, user_id: str) -> UserData:
        return self.users.setdefault(user_id, UserData())


def create_app(config: Config, state: ServerState | None = None) -> FastAPI:
    """Create the sync server application.

    Args:
        config: Application configuration; ``server.sessions`` maps
            session tokens to user ids.
        state: Optional pre-built state (tests inspect it).

    Returns:
        Configured FastAPI application.
    """
    app = FastAPI(
        title="Speak-EZ Sync",
        description="Reference server for Speak-EZ offline-first sync",
        version="0.1.0",
    )

    app.state.config = config
    app.state.sync_state = state or ServerState()
    sessions = config.server.sessions
    # Routes share the prefix the sync client is configured with
    router = APIRouter(prefix=config.sync.api_prefix.rstrip("/"))

    def current_user(request: Request) -> str:
        token = request.cookies.get(SESSION_COOKIE)
        if not token:
            raise HTTPException(status_code=401, detail="Not authenticated")
        user_id = sessions.get(token)
        if user_id is None:
            raise HTTPException(status_code=401, detail="Session expired")
        return user_id

    @router.get("/auth/session")
    async def session(request: Request):
        """Return the user the session cookie belongs to."""
        return {"user": {"id": current_user(request)}}

    @router.post("/sync/push")
    async def push(request: Request):
        """Merge a client snapshot into server state."""
        user_id = current_user(request)
        try:
            client = Snapshot.from_remote(await request.json())
        except (ValueError, MalformedSnapshotError) as e:
            raise HTTPException(status_code=400, detail=f"Invalid snapshot: {e}")

        data = app.state.sync_state.get(user_id)
        client_state = Snapshot(
            user=client.user,
            settings=client.settings,
            personal_records=client.personal_records,
            custom_workouts=client.custom_workouts,
            updated_at=client.updated_at,
        )
        merged = merge_snapshots(
            client_state, data.snapshot or Snapshot(user={}, settings={})
        )
        data.snapshot = merged

        inserted = data.insert_sessions(client.history)
        logger.info(f"Push from {user_id}: {inserted} new sessions")

        return {
            "ok": True,
            "merged": {
                "profile": merged.user,
                "settings": merged.settings,
                "personalRecords": merged.personal_records,
                "customWorkouts": merged.custom_workouts,
            },
        }

    @router.get("/sync/pull")
    async def pull(request: Request, since: str | None = None):
        """Return server state; ``since`` filters history only."""
        user_id = current_user(request)
        data = app.state.sync_state.get(user_id)
        snapshot = data.snapshot or Snapshot(user={}, settings={})

        cutoff = normalize_timestamp(since) if since else ""
        history = [
            stored.session
            for stored in data.history.values()
            if not cutoff or stored.created_at > cutoff
        ]

        return {
            "profile": snapshot.user,
            "settings": snapshot.settings,
            "personalRecords": snapshot.personal_records,
            "customWorkouts": snapshot.custom_workouts,
            "history": merge_history(history, []),
            "updatedAt": snapshot.updated_at or None,
        }

    app.include_router(router)
    return app
