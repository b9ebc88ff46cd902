"""Per-tool execution caps over a sliding time window."""

from __future__ import annotations

import logging
import threading
import time
from collections import deque
from typing import Callable, Iterable

from toolsmith.exceptions import ToolRateLimitedError

logger = logging.getLogger(__name__)


class SlidingWindowRateLimiter:
    """
    Allow at most ``limit`` calls per key within any ``window_seconds`` span.

    Example:
        limiter = SlidingWindowRateLimiter(limit=10, window_seconds=3600)
        limiter.acquire("agent-1/add_numbers_1a2b3c4d")  # raises ToolRateLimitedError when exhausted
    """

    def __init__(
        self,
        limit: int,
        window_seconds: float,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.limit = limit
        self.window_seconds = window_seconds
        self._clock = clock
        self._calls: dict[str, deque[float]] = {}
        self._lock = threading.Lock()

    def _prune(self, key: str, now: float) -> deque[float]:
        calls = self._calls.get(key)
        if calls is None:
            return deque()
        cutoff = now - self.window_seconds
        while calls and calls[0] <= cutoff:
            calls.popleft()
        if not calls:
            del self._calls[key]
        return calls

    def retry_after(self, key: str) -> float | None:
        """Seconds until ``key`` may run again, or None if it may run now."""
        with self._lock:
            now = self._clock()
            calls = self._prune(key, now)
            if len(calls) < self.limit:
                return None
            return max(0.0, calls[0] + self.window_seconds - now)

    def acquire(self, key: str) -> None:
        """Count one call against ``key``.

        Raises:
            ToolRateLimitedError: The key already used its allowance in the window.
        """
        with self._lock:
            now = self._clock()
            calls = self._prune(key, now)
            if len(calls) >= self.limit:
                retry_after = max(0.0, calls[0] + self.window_seconds - now)
                logger.error(
                    "Tool %s reached its execution limit (%d per %gs); retry in %.0fs",
                    key,
                    self.limit,
                    self.window_seconds,
                    retry_after,
                )
                raise ToolRateLimitedError(
                    f"Tool execution limit reached ({self.limit} per "
                    f"{self.window_seconds / 3600:g}h). Try again later.",
                    tool_name=key,
                    retry_after=retry_after,
                )
            self._calls.setdefault(key, calls).append(now)

    def usage(self, key: str) -> int:
        with self._lock:
            return len(self._prune(key, self._clock()))

    def reset(self, key: str | None = None) -> None:
        with self._lock:
            if key is None:
                self._calls.clear()
            else:
                self._calls.pop(key, None)

    def retain(self, keys: Iterable[str]) -> None:
        """Forget every key not in ``keys`` (quarantined or superseded tools)."""
        keep = set(keys)
        with self._lock:
            for key in [k for k in self._calls if k not in keep]:
                del self._calls[key]

    def __len__(self) -> int:
        return len(self._calls)
