class SyncError(Exception):
    """Base class for client sync failures."""


class AuthError(SyncError):
    """Credential missing, invalid or expired. Never retried automatically."""


class NetworkError(SyncError):
    """Transient connectivity failure (connect, join or emit)."""


class ConnectionFailed(NetworkError):
    """The reconnect budget is exhausted; auto-retry stops until connect() is called again."""


class ValidationError(SyncError):
    """Malformed save payload. Not retried."""


class PersistenceError(SyncError):
    """A save failed for reasons other than validation."""


class PermissionDenied(SyncError):
    """The credential is valid but lacks the level the operation needs."""
