"""Exponential reconnect backoff."""
from __future__ import annotations

from dataclasses import dataclass

INITIAL_DELAY_S = 3.0
MAX_DELAY_S = 60.0
MAX_ATTEMPTS = 10


def compute_delay(
    attempt_count: int,
    initial_delay_s: float = INITIAL_DELAY_S,
    max_delay_s: float = MAX_DELAY_S,
) -> float:
    """Delay in seconds before retry number ``attempt_count`` (0-based): 3s, 6s, 12s, ... capped."""
    if attempt_count < 0:
        raise ValueError("attempt_count must be >= 0")
    # Past this exponent the product is already over any sane cap; avoids float overflow.
    if attempt_count >= 64:
        return max_delay_s
    return min(initial_delay_s * (2 ** attempt_count), max_delay_s)


@dataclass(frozen=True)
class BackoffPolicy:
    initial_delay_s: float = INITIAL_DELAY_S
    max_delay_s: float = MAX_DELAY_S
    max_attempts: int = MAX_ATTEMPTS

    def delay_for(self, attempt_count: int) -> float:
        return compute_delay(attempt_count, self.initial_delay_s, self.max_delay_s)

    def delay_ms_for(self, attempt_count: int) -> int:
        return int(round(self.delay_for(attempt_count) * 1000))

    def exhausted(self, attempt_count: int) -> bool:
        """True once ``attempt_count`` consecutive failures reached the fail-stop limit."""
        return attempt_count >= self.max_attempts
