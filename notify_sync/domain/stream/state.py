"""Connection state machine types."""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class ConnectionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    RECONNECTING = "reconnecting"
    SUSPENDED = "suspended"


@dataclass(frozen=True)
class RetryState:
    attempt_count: int = 0
    last_delay_ms: int = 0

    def next(self, delay_ms: int) -> "RetryState":
        return RetryState(attempt_count=self.attempt_count + 1, last_delay_ms=delay_ms)


RETRY_RESET = RetryState()
