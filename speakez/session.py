"""Session gate: the single "authenticated" signal sync depends on.

The magic-link login flow lives elsewhere; it leaves an opaque session
token behind (the ``session`` cookie). Sync only asks whether that session
is currently good.
"""

import logging
from abc import ABC, abstractmethod
from typing import Any

import httpx

logger = logging.getLogger(__name__)

SESSION_COOKIE = "session"


class SessionGate(ABC):
    """Source of truth for whether sync may talk to the remote."""

    @abstractmethod
    def is_authenticated(self) -> bool:
        """Whether a valid session is currently held."""
        pass

    def on_auth_failure(self) -> None:
        """Called when a sync request was rejected with 401."""


class StaticSessionGate(SessionGate):
    """Gate with a fixed answer that can be flipped by hand."""

    def __init__(self, authenticated: bool = False):
        self.authenticated = authenticated

    def is_authenticated(self) -> bool:
        return self.authenticated

    def on_auth_failure(self) -> None:
        self.authenticated = False


class RemoteSessionGate(SessionGate):
    """Gate backed by the server's session endpoint.

    ``refresh()`` asks the server who the session cookie belongs to; the
    answer is held until the next refresh or until a sync call gets a 401.
    A network error during refresh keeps the previous answer.
    """

    def __init__(
        self,
        base_url: str,
        session_token: str | None,
        api_prefix: str = "/api",
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """Initialize the gate.

        Args:
            base_url: Server base URL (e.g., "https://speakez.app").
            session_token: Value of the session cookie, if logged in.
            api_prefix: Path prefix of the API routes.
            timeout: Request timeout in seconds.
            transport: Optional httpx transport (tests, ASGI apps).
        """
        self.base_url = base_url.rstrip("/")
        self.session_token = session_token
        self.api_prefix = api_prefix.rstrip("/")
        self.timeout = timeout
        self._transport = transport
        self._user: dict[str, Any] | None = None
        self._checked = False

    @property
    def user(self) -> dict[str, Any] | None:
        return self._user

    @property
    def checked(self) -> bool:
        """Whether a refresh has completed since the last failure."""
        return self._checked

    def is_authenticated(self) -> bool:
        return self._user is not None

    def on_auth_failure(self) -> None:
        if self._user is not None:
            logger.info("Session rejected by server, sync paused")
        self._user = None
        self._checked = False

    async def refresh(self) -> dict[str, Any] | None:
        """Check the session with the server.

        Returns:
            The authenticated user, or None.
        """
        if not self.session_token:
            self._user = None
            self._checked = True
            return None

        url = f"{self.base_url}{self.api_prefix}/auth/session"
        try:
            async with httpx.AsyncClient(
                timeout=self.timeout,
                transport=self._transport,
                cookies={SESSION_COOKIE: self.session_token},
            ) as client:
                response = await client.get(url)
        except httpx.HTTPError as e:
            logger.warning(f"Session check failed, keeping previous state: {e}")
            return self._user

        if response.status_code == 200:
            try:
                data = response.json()
            except ValueError:
                logger.warning("Session check returned invalid JSON")
                return self._user
            self._user = data.get("user") if isinstance(data, dict) else None
        else:
            self._user = None

        self._checked = True
        logger.debug(f"Session check: authenticated={self._user is not None}")
        return self._user
