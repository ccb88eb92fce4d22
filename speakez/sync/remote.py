"""HTTP client for the sync endpoints.

Maps transport failures onto the sync error hierarchy; deciding what to
do about them is left to the SyncClient.
"""

import asyncio
import logging
from typing import Any

import httpx

from ..errors import AuthError, RemoteError, TransientNetworkError
from ..session import SESSION_COOKIE

logger = logging.getLogger(__name__)


class RemoteClient:
    """Client for ``/sync/push`` and ``/sync/pull``."""

    def __init__(
        self,
        base_url: str,
        session_token: str | None = None,
        api_prefix: str = "/api",
        max_retries: int = 2,
        timeout: float = 30.0,
        backoff_seconds: float = 1.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """Initialize the remote client.

        Args:
            base_url: Server base URL (e.g., "https://speakez.app").
            session_token: Value of the session cookie.
            api_prefix: Path prefix of the API routes.
            max_retries: Attempts per request for connection errors,
                timeouts and 5xx responses.
            timeout: Request timeout in seconds.
            backoff_seconds: Initial delay between attempts, doubled each time.
            transport: Optional httpx transport (tests, ASGI apps).
        """
        self.base_url = base_url.rstrip("/")
        self.session_token = session_token
        self.api_prefix = api_prefix.rstrip("/")
        self.max_retries = max(1, max_retries)
        self.timeout = timeout
        self.backoff_seconds = backoff_seconds
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        cookies = {SESSION_COOKIE: self.session_token} if self.session_token else None
        return httpx.AsyncClient(
            base_url=self.base_url,
            timeout=self.timeout,
            transport=self._transport,
            cookies=cookies,
        )

    async def _request(
        self,
        method: str,
        path: str,
        json_data: Any = None,
        params: dict[str, str] | None = None,
    ) -> dict[str, Any]:
        """Make an HTTP request with exponential backoff retry.

        Raises:
            AuthError: On 401.
            RemoteError: On other 4xx responses.
            TransientNetworkError: When retries are exhausted, or the body
                is not a JSON object.
        """
        endpoint = f"{self.api_prefix}{path}"
        backoff = self.backoff_seconds
        last_error = ""
        last_status: int | None = None

        async with self._client() as client:
            for attempt in range(self.max_retries):
                try:
                    response = await client.request(
                        method, endpoint, json=json_data, params=params
                    )
                except httpx.TimeoutException:
                    last_error = "Request timeout"
                    logger.warning(
                        f"{endpoint}: timeout, attempt {attempt + 1}/{self.max_retries}"
                    )
                except httpx.TransportError as e:
                    last_error = f"Connection failed: {e}"
                    logger.warning(
                        f"{endpoint}: connection failed, "
                        f"attempt {attempt + 1}/{self.max_retries}"
                    )
                else:
                    last_status = response.status_code
                    if response.status_code == 200:
                        return self._decode(response, endpoint)
                    if response.status_code == 401:
                        raise AuthError(
                            "Not authenticated", status_code=401, endpoint=endpoint
                        )
                    if response.status_code < 500:
                        raise RemoteError(
                            f"HTTP {response.status_code}: {response.text}",
                            status_code=response.status_code,
                            endpoint=endpoint,
                        )
                    last_error = f"Server error {response.status_code}"
                    logger.warning(
                        f"{endpoint}: server error {response.status_code}, "
                        f"attempt {attempt + 1}/{self.max_retries}"
                    )

                if attempt < self.max_retries - 1:
                    await asyncio.sleep(backoff)
                    backoff *= 2

        raise TransientNetworkError(
            f"{last_error} (after {self.max_retries} attempts)",
            status_code=last_status,
            endpoint=endpoint,
        )

    @staticmethod
    def _decode(response: httpx.Response, endpoint: str) -> dict[str, Any]:
        try:
            data = response.json()
        except ValueError as e:
            raise TransientNetworkError(
                f"Invalid JSON: {e}", status_code=response.status_code, endpoint=endpoint
            ) from e
        if not isinstance(data, dict):
            raise TransientNetworkError(
                "Response is not a JSON object",
                status_code=response.status_code,
                endpoint=endpoint,
            )
        return data

    async def push(self, payload: dict[str, Any]) -> dict[str, Any]:
        """Send the sync subset of the snapshot.

        Args:
            payload: ``Snapshot.to_payload()`` output.

        Returns:
            The ack, ``{"ok": True, "merged": {...}}``.
        """
        return await self._request("POST", "/sync/push", json_data=payload)

    async def pull(self, since: str | None = None) -> dict[str, Any]:
        """Fetch the remote snapshot.

        Args:
            since: Optional cursor; the server may return only history
                created after it.

        Returns:
            The remote snapshot in wire form.
        """
        params = {"since": since} if since else None
        return await self._request("GET", "/sync/pull", params=params)
