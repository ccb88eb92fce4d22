"""Exception hierarchy for the Speak-EZ sync core."""


class SpeakEZError(Exception):
    """Base exception for all speakez errors."""


class SyncError(SpeakEZError):
    """A push or pull against the remote failed."""

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        endpoint: str = "",
    ) -> None:
        self.status_code = status_code
        self.endpoint = endpoint
        super().__init__(message)


class TransientNetworkError(SyncError):
    """Connection failure, timeout, 5xx or unreadable response body.

    Retried on the next natural trigger (mutation, foreground).
    """


class AuthError(SyncError):
    """Session cookie missing, expired or rejected (HTTP 401)."""


class RemoteError(SyncError):
    """Remote rejected the request with a non-retryable status."""


class MalformedSnapshotError(SpeakEZError, ValueError):
    """Snapshot data does not have the expected shape."""


class MalformedLocalStateError(MalformedSnapshotError):
    """Persisted local state could not be deserialized."""
