"""In-memory sliding window counter store."""

from __future__ import annotations

import time
from collections import defaultdict, deque
from threading import Lock
from typing import Callable, Deque, DefaultDict

from .rate_gate import WindowUsage


class InMemoryCounterStore:
    """Thread-safe per-process sliding log.

    Counts are not shared between processes, so this store only enforces a
    global limit when the service runs as a single worker.
    """

    def __init__(self, clock: Callable[[], float] = time.time) -> None:
        """Initialise per-key storage and the time source."""
        self._clock = clock
        self._events: DefaultDict[str, Deque[float]] = defaultdict(deque)
        self._lock = Lock()
        self._last_sweep = clock()

    async def record_and_count(
        self, identity: str, *, window_seconds: int, limit: int
    ) -> WindowUsage:
        """Trim, count and conditionally record ``identity`` in one locked step."""
        now = self._clock()
        with self._lock:
            if now - self._last_sweep >= window_seconds:
                self._evict_stale(now - window_seconds)
                self._last_sweep = now
            queue = self._events[identity]
            while queue and queue[0] <= now - window_seconds:
                queue.popleft()
            admitted = len(queue) < limit
            if admitted:
                queue.append(now)
            reset_after = max(0.0, queue[0] + window_seconds - now)
            return WindowUsage(admitted=admitted, count=len(queue), reset_after=reset_after)

    def _evict_stale(self, cutoff: float) -> None:
        """Drop identities whose newest entry is at or before ``cutoff``. Caller holds the lock."""
        stale = [identity for identity, queue in self._events.items() if not queue or queue[-1] <= cutoff]
        for identity in stale:
            del self._events[identity]
