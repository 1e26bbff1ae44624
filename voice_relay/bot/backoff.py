"""
Exponential backoff policy shared by every reconnecting connection.

The supervisor only computes delays; callers own the timer and the reconnect
call. One instance is kept per connection so that the client link and each
upstream leg back off independently.
"""

from voice_relay.config.constants import (
    BACKOFF_BASE_MS,
    BACKOFF_CAP_MS,
    BACKOFF_MAX_ATTEMPTS,
)
from voice_relay.errors import RetriesExhausted


class BackoffSupervisor:
    """
    Bounded exponential backoff: ``min(base * 2**attempt, cap)`` milliseconds.

    ``schedule_retry`` answers in milliseconds; ``next_delay`` answers in seconds
    so the result can go straight to ``asyncio.sleep``.
    """

    def __init__(
        self,
        base_ms: int = BACKOFF_BASE_MS,
        cap_ms: int = BACKOFF_CAP_MS,
        max_attempts: int = BACKOFF_MAX_ATTEMPTS,
    ):
        self.base_ms = base_ms
        self.cap_ms = cap_ms
        self.max_attempts = max_attempts
        self._attempt = 0

    @property
    def attempt(self) -> int:
        """Number of retries scheduled since the last successful open."""
        return self._attempt

    def schedule_retry(self, attempt: int) -> int:
        """
        Return the delay in milliseconds before retry number ``attempt``.

        Raises:
            RetriesExhausted: if ``attempt`` is beyond the attempt budget
        """
        if attempt > self.max_attempts:
            raise RetriesExhausted(attempt, self.max_attempts)
        return min(self.base_ms * 2 ** attempt, self.cap_ms)

    def next_delay(self) -> float:
        """Advance to the next attempt and return its delay in seconds."""
        delay_ms = self.schedule_retry(self._attempt + 1)
        self._attempt += 1
        return delay_ms / 1000

    def reset(self) -> None:
        self._attempt = 0
