"""
Per-source request rate limiting.

Each adapter owns one ``RateLimiter``. Before every request the adapter awaits
``acquire()``, which delays until the request fits inside the sliding window
of ``requests`` per ``per_seconds``. Providers that report their own budget in
response headers feed it back through ``update_from_headers``.
"""
import asyncio
import time
from collections import deque
from collections.abc import Awaitable, Callable
from datetime import datetime, timedelta, timezone

import structlog

from collector_nexus.services.sources.base import RateLimit, RateLimitStatus

logger = structlog.get_logger()


class RateLimiter:
    """
    Sliding-window limiter for a single source.

    Args:
        source_id: Id of the owning source, used in log events.
        rate_limit: Request budget. ``None`` disables waiting.
        clock: Monotonic clock in seconds.
        sleep: Coroutine used to wait.
    """

    def __init__(
        self,
        source_id: str,
        rate_limit: RateLimit | None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.source_id = source_id
        self.rate_limit = rate_limit
        self._clock = clock
        self._sleep = sleep
        self._sent: deque[float] = deque()
        self._lock = asyncio.Lock()
        self._reported: RateLimitStatus | None = None

    def _prune(self, now: float) -> None:
        window = self.rate_limit.per_seconds
        while self._sent and now - self._sent[0] >= window:
            self._sent.popleft()

    async def acquire(self) -> float:
        """
        Wait until one more request fits in the budget and record it.

        Returns:
            Seconds spent waiting.
        """
        if self.rate_limit is None:
            return 0.0

        waited = 0.0
        async with self._lock:
            while True:
                now = self._clock()
                self._prune(now)
                if len(self._sent) < self.rate_limit.requests:
                    self._sent.append(now)
                    return waited
                wait = self._sent[0] + self.rate_limit.per_seconds - now
                logger.debug(
                    "Rate limit reached, waiting",
                    source=self.source_id,
                    wait_seconds=round(wait, 3),
                )
                await self._sleep(wait)
                waited += wait

    def update_from_headers(
        self,
        remaining: int | None,
        limit: int | None = None,
        reset_at: datetime | None = None,
    ) -> None:
        """Record the budget reported by the provider."""
        if remaining is None:
            return
        if limit is None:
            limit = self.rate_limit.requests if self.rate_limit else remaining
        if reset_at is None:
            window = self.rate_limit.per_seconds if self.rate_limit else 0
            reset_at = datetime.now(timezone.utc) + timedelta(seconds=window)
        self._reported = RateLimitStatus(remaining=remaining, limit=limit, reset_at=reset_at)

    def status(self) -> RateLimitStatus | None:
        """
        Current budget: provider-reported when known, otherwise derived
        from the local window.
        """
        if self._reported is not None:
            return self._reported
        if self.rate_limit is None:
            return None

        now = self._clock()
        self._prune(now)
        remaining = max(self.rate_limit.requests - len(self._sent), 0)
        if self._sent:
            reset_in = self._sent[0] + self.rate_limit.per_seconds - now
        else:
            reset_in = 0.0
        return RateLimitStatus(
            remaining=remaining,
            limit=self.rate_limit.requests,
            reset_at=datetime.now(timezone.utc) + timedelta(seconds=max(reset_in, 0.0)),
        )

    def reset(self) -> None:
        self._sent.clear()
        self._reported = None
