"""
In-memory dedup cache bounded by age and by entry count.

Used for two things: remembering which image URLs were already delivered
for a search query, and keeping recently fetched media payloads per URL.
"""
import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Sequence, Set

from services.errors import truncate_url
from services.models import ImageCandidate
from utils.media_validator import ValidationResult


logger = logging.getLogger(__name__)


Validator = Callable[[str], Awaitable[ValidationResult]]


@dataclass
class CacheEntry:
    """Cached value plus the last time it was touched."""
    value: Any
    touched_at: float


class DedupCache:
    """Time- and size-bounded mapping from a query or URL to a cached value."""

    def __init__(
        self,
        name: str,
        ttl_seconds: float,
        max_size: int,
        flush_interval_seconds: float = 3600,
        sweep_interval_seconds: float = 300,
        clock: Callable[[], float] = time.monotonic
    ):
        """
        Initialize dedup cache.

        Args:
            name: Label used in log lines
            ttl_seconds: Entries older than this are not reused
            max_size: Entry ceiling enforced by the size sweep
            flush_interval_seconds: Period of the full wipe
            sweep_interval_seconds: Period of the size check
            clock: Monotonic time source
        """
        self.name = name
        self.ttl_seconds = ttl_seconds
        self.max_size = max_size
        self.flush_interval_seconds = flush_interval_seconds
        self.sweep_interval_seconds = sweep_interval_seconds
        self.clock = clock
        self._entries: Dict[str, CacheEntry] = {}
        self._tasks: List[asyncio.Task] = []

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: str) -> bool:
        return self.get(key) is not None

    def _is_fresh(self, entry: CacheEntry) -> bool:
        return self.clock() - entry.touched_at < self.ttl_seconds

    def get(self, key: str) -> Optional[Any]:
        """
        Get cached value by key.

        Stale entries return None and are dropped on the spot.
        """
        entry = self._entries.get(key)
        if entry is None:
            logger.debug(f"[{self.name}] Cache miss for key: {truncate_url(key)}")
            return None
        if not self._is_fresh(entry):
            logger.debug(f"[{self.name}] Stale cache entry for key: {truncate_url(key)}")
            del self._entries[key]
            return None

        logger.info(f"[{self.name}] Cache hit for key: {truncate_url(key)}")
        return entry.value

    def set(self, key: str, value: Any) -> None:
        """Store a value and mark it as touched now."""
        self._entries[key] = CacheEntry(value=value, touched_at=self.clock())
        logger.debug(f"[{self.name}] Cache set for key: {truncate_url(key)}")

    def delete(self, key: str) -> None:
        self._entries.pop(key, None)

    def clear(self) -> None:
        """Drop every entry."""
        count = len(self._entries)
        self._entries.clear()
        logger.info(f"[{self.name}] Cleared {count} cache entries")

    def sweep(self) -> int:
        """
        Enforce the size ceiling.

        When the entry count exceeds ``max_size`` only the most recently
        touched half of ``max_size`` is kept.

        Returns:
            Number of entries removed
        """
        if len(self._entries) <= self.max_size:
            return 0

        keep = max(1, self.max_size // 2)
        recent = sorted(
            self._entries.items(),
            key=lambda item: item[1].touched_at,
            reverse=True
        )[:keep]
        removed = len(self._entries) - len(recent)
        self._entries = dict(recent)
        logger.info(
            f"[{self.name}] Size-based cache cleanup removed {removed} entries",
            extra={"kept": len(self._entries), "max_size": self.max_size}
        )
        return removed

    async def get_unique(
        self,
        query: str,
        desired_count: int,
        candidates: Sequence[ImageCandidate],
        validator: Validator
    ) -> List[ImageCandidate]:
        """
        Pick up to ``desired_count`` valid candidates never delivered for ``query``.

        Candidates are scanned in the order given. URLs repeated within this
        call or already delivered for the query are skipped. Every accepted
        URL is recorded as delivered. A candidate failing validation is
        discarded without stopping the scan.

        Args:
            query: Search query the candidates belong to
            desired_count: Number of candidates wanted
            candidates: Search results in ranking order
            validator: Async check returning a tagged validation result

        Returns:
            Accepted candidates, at most ``desired_count``
        """
        delivered: Set[str] = self.get(query) or set()
        seen: Set[str] = set()
        accepted: List[ImageCandidate] = []

        for candidate in candidates:
            if len(accepted) >= desired_count:
                break
            if candidate.url in seen or candidate.url in delivered:
                continue
            seen.add(candidate.url)

            try:
                result = await validator(candidate.url)
            except Exception as e:
                logger.error(f"Error validating image URL {truncate_url(candidate.url)}: {e}")
                continue

            if result.is_valid:
                accepted.append(candidate)
                delivered.add(candidate.url)
            else:
                logger.debug(
                    f"Rejected candidate {truncate_url(candidate.url)}: {result.status.value}"
                )

        self.set(query, delivered)
        logger.info(
            f"[{self.name}] Selected {len(accepted)}/{desired_count} unique items",
            extra={"query": query, "candidates": len(candidates)}
        )
        return accepted

    def release(self, query: str, urls: Iterable[str]) -> None:
        """Forget delivered URLs for ``query`` so a later search may offer them again."""
        delivered = self.get(query)
        if not delivered:
            return
        remaining = delivered.difference(urls)
        if len(remaining) == len(delivered):
            return
        if remaining:
            self.set(query, remaining)
        else:
            self.delete(query)

    def stats(self) -> dict:
        """Summarize cache contents."""
        stamps = [entry.touched_at for entry in self._entries.values()]
        tracked = sum(
            len(entry.value) for entry in self._entries.values()
            if isinstance(entry.value, (set, frozenset, list, tuple))
        )
        return {
            "name": self.name,
            "entries": len(self._entries),
            "tracked_items": tracked,
            "oldest_entry": min(stamps) if stamps else None,
            "newest_entry": max(stamps) if stamps else None,
        }

    def start(self) -> None:
        """Start the flush and sweep timers on the running loop."""
        if self._tasks:
            return
        self._tasks = [
            asyncio.create_task(self._run_every(self.flush_interval_seconds, self.clear)),
            asyncio.create_task(self._run_every(self.sweep_interval_seconds, self.sweep)),
        ]
        logger.debug(f"[{self.name}] Eviction timers started")

    async def stop(self) -> None:
        """Cancel the eviction timers."""
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []

    async def _run_every(self, interval: float, action: Callable[[], Any]) -> None:
        while True:
            await asyncio.sleep(interval)
            try:
                action()
            except Exception as e:
                logger.error(f"[{self.name}] Cache maintenance failed: {e}", exc_info=True)
