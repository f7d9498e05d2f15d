"""
Per-adapter liveness cache.

A probe result is reused until the TTL expires; the next health query after
that performs a fresh probe. Each adapter owns its own cache. Concurrent
callers may race to refresh it, which costs at most one redundant probe.
"""

import time
from enum import Enum
from typing import Callable, Optional

DEFAULT_HEALTH_CHECK_TTL_SECONDS: float = 30.0


class Liveness(str, Enum):
    UNKNOWN = "unknown"
    HEALTHY = "healthy"
    UNHEALTHY = "unhealthy"


class HealthCheckCache:
    """Last-known liveness plus the time it was observed."""

    def __init__(
        self,
        ttl_seconds: float = DEFAULT_HEALTH_CHECK_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self.liveness = Liveness.UNKNOWN
        self.last_checked: Optional[float] = None

    def get(self) -> Optional[bool]:
        """Return the cached result while fresh, None when a probe is due."""
        if self.liveness is Liveness.UNKNOWN or self.last_checked is None:
            return None
        if self._clock() - self.last_checked >= self.ttl_seconds:
            return None
        return self.liveness is Liveness.HEALTHY

    def record(self, healthy: bool) -> bool:
        self.liveness = Liveness.HEALTHY if healthy else Liveness.UNHEALTHY
        self.last_checked = self._clock()
        return healthy

    def invalidate(self) -> None:
        self.liveness = Liveness.UNKNOWN
        self.last_checked = None
