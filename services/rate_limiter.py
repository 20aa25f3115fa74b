"""
rate_limiter.py
In-memory sliding window limiter keyed by (caller, endpoint).

Note: This limiter is process-local. In multi-worker deployments, use a shared store.
"""

import time
from collections import defaultdict, deque
from threading import Lock
from typing import Deque, Dict, Tuple, Union

from fastapi import HTTPException, status


class RateLimiter:
    def __init__(self) -> None:
        # Structure: {(caller, endpoint): deque[timestamps]}
        self._buckets: Dict[Tuple[Union[int, str], str], Deque[float]] = defaultdict(deque)
        self._lock = Lock()

    def allow(self, caller: Union[int, str], endpoint: str, limit: int, window_seconds: int) -> bool:
        now = time.time()
        key = (caller, endpoint)
        with self._lock:
            bucket = self._buckets[key]
            cutoff = now - window_seconds
            while bucket and bucket[0] < cutoff:
                bucket.popleft()
            if len(bucket) >= limit:
                return False
            bucket.append(now)
            return True

    def enforce(self, caller: Union[int, str], endpoint: str, limit: int, window_seconds: int) -> None:
        """Raise 429 when the caller is over its budget for this endpoint"""
        if not self.allow(caller, endpoint, limit, window_seconds):
            raise HTTPException(
                status_code=status.HTTP_429_TOO_MANY_REQUESTS,
                detail="Too many requests. Please try again later."
            )

    def reset(self) -> None:
        with self._lock:
            self._buckets.clear()


# Global singleton for convenience
rate_limiter = RateLimiter()
