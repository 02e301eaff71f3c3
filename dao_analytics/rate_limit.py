"""
In-memory rate limiter for API requests.
Tracks request timestamps per client IP within a sliding window.
"""

from __future__ import annotations

import math
import time
from collections import deque
from dataclasses import dataclass, field


@dataclass
class _RequestRecord:
    """Request timestamps for a single client."""

    timestamps: deque[float] = field(default_factory=deque)


class RequestRateLimiter:
    """Rate limiter that rejects clients exceeding a request budget per window."""

    def __init__(
        self,
        max_requests: int = 100,
        window_seconds: int = 60,
    ) -> None:
        self._max_requests = max_requests
        self._window_seconds = window_seconds
        self._clients: dict[str, _RequestRecord] = {}

    def _prune(self, record: _RequestRecord, now: float) -> None:
        cutoff = now - self._window_seconds
        while record.timestamps and record.timestamps[0] <= cutoff:
            record.timestamps.popleft()

    def allow(self, client_id: str) -> bool:
        """Record a request and return False if the client is over budget."""
        now = time.monotonic()
        record = self._clients.setdefault(client_id, _RequestRecord())
        self._prune(record, now)

        if len(record.timestamps) >= self._max_requests:
            return False

        record.timestamps.append(now)
        return True

    def retry_after(self, client_id: str) -> int:
        """Seconds until the oldest request leaves the window. 0 if not limited."""
        record = self._clients.get(client_id)
        if record is None:
            return 0

        now = time.monotonic()
        self._prune(record, now)
        if len(record.timestamps) < self._max_requests:
            return 0
        return max(1, math.ceil(self._window_seconds - (now - record.timestamps[0])))

    def cleanup(self) -> int:
        """Remove clients with no requests in the window. Returns count removed."""
        now = time.monotonic()
        idle = []
        for client_id, record in self._clients.items():
            self._prune(record, now)
            if not record.timestamps:
                idle.append(client_id)
        for client_id in idle:
            del self._clients[client_id]
        return len(idle)


# Global instance
_limiter: RequestRateLimiter | None = None


def get_request_limiter() -> RequestRateLimiter:
    """Get or create the global request rate limiter."""
    global _limiter
    if _limiter is None:
        from dao_analytics.config import get_settings

        settings = get_settings()
        _limiter = RequestRateLimiter(
            max_requests=settings.rate_limit_max_requests,
            window_seconds=settings.rate_limit_window_seconds,
        )
    return _limiter
