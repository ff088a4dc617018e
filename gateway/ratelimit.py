"""Simple in-memory sliding-window rate limiting

Per-process only. Behind several workers each worker enforces its own window.
"""
import time
import logging
import threading
from typing import Callable, Dict, List, Optional, Tuple

logger = logging.getLogger(__name__)


class RateLimiter:
    """Sliding-window request counter keyed by (route, caller)"""

    def __init__(self, limits: Dict[str, int], window: float = 60.0,
                 clock: Callable[[], float] = time.time):
        self.limits = dict(limits)
        self.window = window
        self.clock = clock
        self._store: Dict[str, List[float]] = {}
        self._lock = threading.Lock()

    def check(self, route: str, key: str) -> Tuple[bool, Optional[int]]:
        """
        Record a request and check it against the route's limit.

        Returns:
            (is_allowed, retry_after_seconds)
        """
        limit = self.limits.get(route, 60)
        bucket_key = f"{route}:{key}"

        with self._lock:
            now = self.clock()
            self._prune(now)
            recent = self._store.get(bucket_key, [])

            if len(recent) >= limit:
                retry_after = int(self.window - (now - recent[0])) + 1
                logger.warning(f"Rate limit exceeded for {key[:12]}... on {route}")
                return False, retry_after

            recent.append(now)
            self._store[bucket_key] = recent
            return True, None

    def _prune(self, now: float) -> None:
        """Drop timestamps outside the window and buckets left empty"""
        for bucket_key in list(self._store):
            recent = [t for t in self._store[bucket_key] if now - t < self.window]
            if recent:
                self._store[bucket_key] = recent
            else:
                del self._store[bucket_key]

    def tracked_keys(self) -> int:
        with self._lock:
            return len(self._store)

    def reset(self) -> None:
        with self._lock:
            self._store.clear()
