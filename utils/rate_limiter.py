"""
Sliding-window rate limiter keyed by chat.
"""
import logging
import time
from collections import deque
from typing import Callable, Deque, Dict, Optional

from services.models import PipelineStats


logger = logging.getLogger(__name__)


class RateLimiter:
    """Caps how many requests a single chat may make within a rolling window."""

    def __init__(
        self,
        window_seconds: float,
        max_requests: int,
        stats: Optional[PipelineStats] = None,
        clock: Callable[[], float] = time.monotonic
    ):
        """
        Initialize rate limiter.

        Args:
            window_seconds: Length of the sliding window in seconds
            max_requests: Accepted requests allowed per chat inside the window
            stats: Shared counters; ``rate_limit_hits`` is incremented on rejection
            clock: Monotonic time source
        """
        self.window_seconds = window_seconds
        self.max_requests = max_requests
        self.stats = stats
        self.clock = clock
        self.limited_count = 0
        self._windows: Dict[int, Deque[float]] = {}

    def is_limited(self, chat_id: int) -> bool:
        """
        Check a request from a chat against its window.

        Stale timestamps are pruned first. A rejected request is not recorded,
        so it does not extend the penalty.

        Args:
            chat_id: Chat identifier

        Returns:
            True if the chat has reached the limit, False if the request was accepted
        """
        now = self.clock()
        window = self._windows.setdefault(chat_id, deque())

        while window and now - window[0] >= self.window_seconds:
            window.popleft()

        if len(window) >= self.max_requests:
            self.limited_count += 1
            if self.stats is not None:
                self.stats.rate_limit_hits += 1
            logger.warning(
                "Chat is rate limited",
                extra={
                    "chat_id": chat_id,
                    "requests_in_window": len(window),
                    "window_seconds": self.window_seconds
                }
            )
            return True

        window.append(now)
        return False

    def remaining(self, chat_id: int) -> int:
        """Return how many more requests the chat may make right now."""
        now = self.clock()
        window = self._windows.get(chat_id, ())
        active = sum(1 for stamp in window if now - stamp < self.window_seconds)
        return max(0, self.max_requests - active)

    def tracked_chats(self) -> int:
        return len(self._windows)
