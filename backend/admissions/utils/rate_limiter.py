"""
Process-wide fixed-window rate limiter.

State lives in one RateLimiter instance created at import and reset at
startup. Expired windows are pruned on read and the number of tracked
clients is capped, so the map never grows without bound.
For more than one worker process, move the counters to a shared store.
"""
import threading
import time
from collections import OrderedDict
from typing import Tuple

from fastapi import Request, HTTPException

from admissions.config import get_settings


class RateLimiter:
    """Counts hits per key inside a fixed window."""

    def __init__(self, max_keys: int = 10_000):
        self.max_keys = max_keys
        # {key: (window_start, count)}, oldest window first
        self._windows: "OrderedDict[str, Tuple[float, int]]" = OrderedDict()
        self._lock = threading.Lock()

    def reset(self) -> None:
        with self._lock:
            self._windows.clear()

    def __len__(self) -> int:
        return len(self._windows)

    def _prune(self, now: float, window: int) -> None:
        while self._windows:
            key, (started, _) = next(iter(self._windows.items()))
            if now - started <= window and len(self._windows) < self.max_keys:
                break
            self._windows.popitem(last=False)

    def hit(self, key: str, requests: int, window: int, now: float | None = None) -> int:
        """Record a hit. Returns seconds to wait when over the limit, else 0."""
        now = time.time() if now is None else now
        with self._lock:
            self._prune(now, window)

            started, count = self._windows.get(key, (now, 0))
            if now - started > window:
                started, count = now, 0

            if count >= requests:
                return max(1, int(window - (now - started)))

            self._windows[key] = (started, count + 1)
            if count == 0:
                self._windows.move_to_end(key)
            return 0


limiter = RateLimiter(max_keys=get_settings().RATE_LIMIT_MAX_KEYS)


def rate_limit(requests: int, window: int):
    """
    Dependency for rate limiting.
    Example: Depends(rate_limit(requests=5, window=60))
    """
    def dependency(request: Request):
        ip = request.client.host if request.client else "unknown"
        retry_after = limiter.hit(f"{request.url.path}:{ip}", requests, window)
        if retry_after:
            raise HTTPException(
                status_code=429,
                detail=f"Rate limit exceeded. Try again in {retry_after} seconds.",
            )
        return True

    return dependency
