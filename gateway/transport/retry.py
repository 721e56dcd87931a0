# gateway/transport/retry.py
from __future__ import annotations

import asyncio
import random
import time
from typing import Callable, Optional


class RetryPolicy:
    """
    Bounded exponential backoff with jitter.

    delay(attempt) for attempt = 1, 2, ... is
        min(max_delay_s, base_delay_s * 2 ** (attempt - 1)) * (1 +/- jitter)
    """

    def __init__(
        self,
        attempts: int = 3,
        base_delay_s: float = 0.2,
        max_delay_s: float = 2.0,
        jitter: float = 0.25,
        *,
        rng: Optional[random.Random] = None,
    ):
        if attempts < 1:
            raise ValueError("attempts must be >= 1")
        self.attempts = int(attempts)
        self.base_delay_s = float(base_delay_s)
        self.max_delay_s = float(max_delay_s)
        self.jitter = float(jitter)
        self._rng = rng or random.Random()

    def delay(self, attempt: int) -> float:
        raw = min(self.max_delay_s, self.base_delay_s * (2 ** max(0, attempt - 1)))
        if self.jitter <= 0:
            return raw
        spread = raw * self.jitter
        return max(0.0, raw + self._rng.uniform(-spread, spread))


class Throttle:
    """
    Minimum spacing between successive operations on one connection.

    Concurrent callers queue on the lock, so no two acquisitions are ever
    closer together than `min_interval_s` regardless of burst size.
    """

    def __init__(self, min_interval_s: float, *, clock: Callable[[], float] = time.monotonic):
        self.min_interval_s = float(min_interval_s)
        self._clock = clock
        self._lock = asyncio.Lock()
        self._last: Optional[float] = None

    @property
    def last_acquired(self) -> Optional[float]:
        return self._last

    async def wait(self) -> None:
        async with self._lock:
            if self._last is not None:
                remaining = self.min_interval_s - (self._clock() - self._last)
                if remaining > 0:
                    await asyncio.sleep(remaining)
            self._last = self._clock()
