"""
Sliding-window rate limiter for provider calls.

Admits at most ``max_requests`` calls per rolling ``window_seconds``. A caller
at capacity sleeps until the oldest admission leaves the window, then retries.

Waiters queue on an asyncio.Lock, so nobody is dropped and admission follows
arrival order. A slot is recorded only when a caller is admitted, so a
cancelled waiter never holds one.
"""

import asyncio
import logging
import time
from collections import deque
from typing import Awaitable, Callable, Deque

from game_insights.models.schemas import RateLimitStatus


logger = logging.getLogger(__name__)


DEFAULT_MAX_REQUESTS: int = 20
DEFAULT_WINDOW_SECONDS: float = 60.0


class SlidingWindowRateLimiter:
    """
    Args:
        max_requests: Admissions allowed per window.
        window_seconds: Window length.
        clock: Monotonic time source.
        sleep: Coroutine used to wait; tests inject a fake that advances the clock.
    """

    def __init__(
        self,
        max_requests: int = DEFAULT_MAX_REQUESTS,
        window_seconds: float = DEFAULT_WINDOW_SECONDS,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        if max_requests < 1:
            raise ValueError("max_requests must be at least 1")
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self._clock = clock
        self._sleep = sleep
        self._admissions: Deque[float] = deque()
        self._lock = asyncio.Lock()

    def _prune(self, now: float) -> None:
        while self._admissions and now - self._admissions[0] >= self.window_seconds:
            self._admissions.popleft()

    def can_proceed(self) -> bool:
        """True when a call would be admitted right now without waiting."""
        self._prune(self._clock())
        return len(self._admissions) < self.max_requests

    def status(self) -> RateLimitStatus:
        now = self._clock()
        self._prune(now)
        remaining = self.max_requests - len(self._admissions)
        resets_in = 0.0
        if self._admissions:
            resets_in = max(0.0, self.window_seconds - (now - self._admissions[0]))
        return RateLimitStatus(limit=self.max_requests, remaining=remaining, resetsInSeconds=round(resets_in, 3))

    async def acquire(self) -> None:
        """Wait for, then record, one admission."""
        async with self._lock:
            while True:
                now = self._clock()
                self._prune(now)
                if len(self._admissions) < self.max_requests:
                    self._admissions.append(now)
                    return
                wait = self.window_seconds - (now - self._admissions[0])
                logger.info("Rate limit reached (%d/%d); waiting %.2fs", len(self._admissions), self.max_requests, wait)
                await self._sleep(max(wait, 0.0))
