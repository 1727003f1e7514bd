import time
import asyncio
from collections import deque
from typing import Callable, Dict, Deque

from fastapi import Request

# Default rate limit
DEFAULT_RATE = 10
# Window in seconds (1 minute)
WINDOW_SECONDS = 60


def get_ip_address(request: Request, trust_proxy_headers: bool = False) -> str:
    # X-Real-IP / X-Forwarded-For are client-controlled unless a proxy sets them
    ip = ""
    if trust_proxy_headers:
        ip = request.headers.get("X-Real-IP")
        if not ip:
            xff = request.headers.get("X-Forwarded-For")
            if xff:
                # X-Forwarded-For may contain a list
                ip = xff.split(",")[0].strip()
    if not ip:
        # request.client may be None in some tests
        client = request.client
        if client:
            ip = client.host
        else:
            ip = ""
    # strip port if present (IPv4 only; bare IPv6 addresses contain several colons)
    if ip.count(":") == 1:
        ip = ip.split(":")[0]
    return ip


class RateLimiter:
    """Sliding one-minute window of accepted requests per identifier."""

    def __init__(self, limit: int = DEFAULT_RATE, window: float = WINDOW_SECONDS,
                 enabled: bool = True, clock: Callable[[], float] = time.time):
        self.limit = limit if limit >= 1 else DEFAULT_RATE
        self.window = window
        self.enabled = enabled
        self.clock = clock
        # Map identifier -> deque of timestamps (float seconds)
        self._timestamps: Dict[str, Deque[float]] = {}
        self._lock = asyncio.Lock()
        self._last_prune = 0.0

    def __len__(self) -> int:
        return len(self._timestamps)

    def _prune(self, now: float):
        if (now - self._last_prune) <= self.window:
            return
        self._last_prune = now
        # drop every identifier whose newest request has left the window
        stale = [key for key, dq in self._timestamps.items() if not dq or (now - dq[-1]) > self.window]
        for key in stale:
            del self._timestamps[key]

    async def check_and_record(self, identifier: str) -> bool:
        """Returns True if request is allowed, False if rate-limited."""
        if not self.enabled:
            return True

        now = self.clock()
        async with self._lock:
            self._prune(now)
            dq = self._timestamps.get(identifier)
            if dq is None:
                dq = deque()
                self._timestamps[identifier] = dq
            # remove old timestamps
            while dq and (now - dq[0]) > self.window:
                dq.popleft()
            if len(dq) >= self.limit:
                # rate limited
                return False
            dq.append(now)
            return True
