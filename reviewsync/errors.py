"""Error taxonomy shared by stores, sync and the durability layer."""
from __future__ import annotations


class ReviewSyncError(RuntimeError):
    """Base class for reviewsync failures."""

    def __init__(self, code: str, message: str):
        super().__init__(message)
        self.code = code
        self.message = message


class AuthError(ReviewSyncError):
    """Raised when no credential is available for a remote call."""

    def __init__(self, message: str = "Not authenticated"):
        super().__init__("unauthenticated", message)


class RemoteAPIError(ReviewSyncError):
    """Raised when a call to the collaboration API fails."""

    def __init__(self, code: str, message: str, status: int | None = None):
        super().__init__(code, message)
        self.status = status

    @property
    def retryable(self) -> bool:
        return self.code in {"transient", "rate_limited"}


class PersistenceError(ReviewSyncError):
    """Raised by snapshot repositories; logged and swallowed by CacheDurability."""

    def __init__(self, message: str, namespace: str = ""):
        super().__init__("persistence_failed", message)
        self.namespace = namespace


class ConcurrentOperationRejected(ReviewSyncError):
    """A sync or fetch was already in flight. Never surfaced to users."""

    def __init__(self, message: str = "operation already in progress"):
        super().__init__("already_running", message)
