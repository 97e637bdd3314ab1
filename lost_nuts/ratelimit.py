"""
In-memory rate limiting with a sliding window per client identity.
"""

from __future__ import annotations

import logging
import time
from collections import defaultdict
from typing import Callable

from .types import RateLimitError

logger = logging.getLogger(__name__)


class RateLimiter:
    """Sliding window limiter: at most `max_requests` per `window_seconds`."""

    def __init__(
        self,
        max_requests: int,
        window_seconds: float,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self.clock = clock
        self.requests: dict[str, list[float]] = defaultdict(list)

    def check(self, identity: str) -> None:
        """Record a request, or raise if the identity is over its limit.

        Raises:
            RateLimitError: If the limit is exceeded
        """
        now = self.clock()
        cutoff = now - self.window_seconds
        recent = [t for t in self.requests[identity] if t > cutoff]
        self.requests[identity] = recent

        if len(recent) >= self.max_requests:
            logger.warning(f"Rate limit exceeded for {identity}: {len(recent)} requests in window")
            raise RateLimitError(
                f"Rate limit exceeded, retry in {self.window_seconds:g} seconds",
                max=self.max_requests,
                window_seconds=self.window_seconds,
            )
        recent.append(now)

    def prune(self) -> int:
        cutoff = self.clock() - self.window_seconds
        stale = [k for k, times in self.requests.items() if not times or times[-1] <= cutoff]
        for identity in stale:
            del self.requests[identity]
        return len(stale)
