"""
Sliding-window rate limiter.

Shared by the bot's per-user RateLimitMiddleware and the per-access-point scan
throttle in front of the scan validator. State is in-process and per window;
it only protects one instance from floods and carries no correctness duty.
"""
from __future__ import annotations

import time
from collections import defaultdict, deque
from typing import Callable, Deque, Dict, Hashable


class SlidingWindowLimiter:
    """
    Parameters
    ----------
    rate   : maximum number of hits allowed per key per window
    period : window size in seconds
    """

    def __init__(
        self,
        rate: int = 30,
        period: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._rate   = rate
        self._period = period
        self._clock  = clock
        # key → deque of timestamps (most recent first)
        self._history: Dict[Hashable, Deque[float]] = defaultdict(deque)

    def hit(self, key: Hashable) -> bool:
        """Register a hit for ``key``; False if the key is over its limit."""
        now = self._clock()
        window = self._history[key]

        # Evict timestamps outside the current window
        while window and now - window[-1] > self._period:
            window.pop()

        if len(window) >= self._rate:
            return False

        window.appendleft(now)
        return True

    def reset(self, key: Hashable) -> None:
        self._history.pop(key, None)
