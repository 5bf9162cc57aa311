"""
Exponential backoff for push retries.

Retries are time-gated, never busy-looped: after a failed push the next
attempt is allowed only once the backoff delay has elapsed.

    delay(n) = min(base * 2**n, max) + uniform(0, jitter * that)

The attempt counter is capped, so the delay stops growing after
``max_attempts`` consecutive failures.
"""

from __future__ import annotations

import random
import time
from typing import Callable, Optional

from ..config import SyncConfig


class Backoff:
    """Backoff gate for one retry loop.

    Example:
        >>> backoff = Backoff.from_config(SyncConfig())
        >>> if backoff.ready():
        ...     backoff.record_attempt()
        ...     ok = await push()
        ...     backoff.record_success() if ok else backoff.record_failure()
    """

    def __init__(
        self,
        base_seconds: float = 1.0,
        max_seconds: float = 30.0,
        jitter: float = 0.2,
        max_attempts: int = 3,
        clock: Callable[[], float] = time.monotonic,
        rng: Callable[[], float] = random.random,
    ) -> None:
        self.base_seconds = base_seconds
        self.max_seconds = max_seconds
        self.jitter = jitter
        self.max_attempts = max_attempts
        self._clock = clock
        self._rng = rng
        self.attempt = 0
        self._last_attempt_at: Optional[float] = None
        self._wait = 0.0

    @classmethod
    def from_config(
        cls,
        config: SyncConfig,
        clock: Callable[[], float] = time.monotonic,
        rng: Callable[[], float] = random.random,
    ) -> Backoff:
        return cls(
            base_seconds=config.backoff_base_seconds,
            max_seconds=config.backoff_max_seconds,
            jitter=config.backoff_jitter,
            max_attempts=config.max_backoff_attempts,
            clock=clock,
            rng=rng,
        )

    def delay(self, attempt: int) -> float:
        """Delay after ``attempt + 1`` consecutive failures, jitter included."""
        delay = min(self.base_seconds * 2 ** attempt, self.max_seconds)
        return delay + self._rng() * delay * self.jitter

    def remaining(self) -> float:
        """Seconds until the next attempt is allowed."""
        if self.attempt == 0 or self._last_attempt_at is None:
            return 0.0
        return max(0.0, self._last_attempt_at + self._wait - self._clock())

    def ready(self) -> bool:
        return self.remaining() == 0.0

    def record_attempt(self) -> None:
        self._last_attempt_at = self._clock()

    def record_success(self) -> None:
        self.attempt = 0
        self._wait = 0.0

    def record_failure(self) -> None:
        self.attempt = min(self.attempt + 1, self.max_attempts)
        self._wait = self.delay(self.attempt - 1)

    def reset(self) -> None:
        self.record_success()
        self._last_attempt_at = None
