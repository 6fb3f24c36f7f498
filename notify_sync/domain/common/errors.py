"""Domain error types."""
from typing import Optional


class NotifySyncError(Exception):
    """Base error for the notification sync client."""
    pass


class TransportError(NotifySyncError):
    """Network or HTTP failure talking to the backend."""
    def __init__(self, message: str, status_code: Optional[int] = None):
        self.message = message
        self.status_code = status_code
        super().__init__(message)


class StreamClosedError(TransportError):
    """The event stream ended (server closed it or the connection dropped)."""
    def __init__(self, message: str = "Event stream closed"):
        super().__init__(message)


class PayloadError(NotifySyncError):
    """A stream frame or REST body did not match the expected shape."""
    def __init__(self, kind: str, message: str):
        self.kind = kind
        self.message = message
        super().__init__(f"Malformed {kind} payload: {message}")


class StorageError(NotifySyncError):
    """Local persistence failed (quota, I/O, serialization)."""
    def __init__(self, key: str, message: str):
        self.key = key
        self.message = message
        super().__init__(f"Storage failure for {key}: {message}")


class ConfigError(NotifySyncError):
    """Configuration could not be loaded or is invalid."""
    def __init__(self, message: str):
        self.message = message
        super().__init__(message)
