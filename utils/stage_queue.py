"""
Bounded-concurrency work stage with paced task starts.
"""
import asyncio
import itertools
import logging
import time
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Optional, TypeVar


logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class PipelineTask:
    """Unit of work submitted to a stage."""
    stage: str
    task_id: int
    tx_id: Optional[str] = None
    label: str = ""
    submitted_at: float = field(default_factory=time.monotonic)


class StageQueue:
    """
    Runs submitted coroutines with at most ``concurrency`` in flight and at
    least ``interval_seconds`` between two consecutive starts.
    """

    def __init__(self, name: str, concurrency: int, interval_seconds: float = 0.0):
        """
        Initialize stage queue.

        Args:
            name: Stage name used in logs (extract, download, send)
            concurrency: Maximum tasks running at once
            interval_seconds: Minimum delay between two task starts
        """
        if concurrency < 1:
            raise ValueError(f"Stage '{name}' concurrency must be positive, got: {concurrency}")
        self.name = name
        self.concurrency = concurrency
        self.interval_seconds = interval_seconds
        self._semaphore = asyncio.Semaphore(concurrency)
        self._pace_lock = asyncio.Lock()
        self._next_start = 0.0
        self._ids = itertools.count(1)
        self.active = 0
        self.pending = 0
        self.completed = 0
        self.failed = 0

    async def submit(
        self,
        work: Callable[[], Awaitable[T]],
        tx_id: Optional[str] = None,
        label: str = ""
    ) -> T:
        """
        Run ``work`` once a slot is free and the pacing interval has elapsed.

        Exceptions raised by ``work`` propagate to the caller.
        """
        task = PipelineTask(stage=self.name, task_id=next(self._ids), tx_id=tx_id, label=label)
        self.pending += 1
        started = False
        try:
            async with self._semaphore:
                await self._wait_for_turn()
                self.pending -= 1
                started = True
                self.active += 1
                waited = time.monotonic() - task.submitted_at
                logger.debug(
                    f"[TX:{tx_id}] {self.name} task #{task.task_id} started {label}".rstrip(),
                    extra={"stage": self.name, "waited_seconds": round(waited, 3)}
                )
                try:
                    result = await work()
                except Exception:
                    self.failed += 1
                    raise
                finally:
                    self.active -= 1
                self.completed += 1
                return result
        finally:
            if not started:
                self.pending -= 1

    async def _wait_for_turn(self) -> None:
        if self.interval_seconds <= 0:
            return
        loop = asyncio.get_running_loop()
        async with self._pace_lock:
            delay = self._next_start - loop.time()
            if delay > 0:
                await asyncio.sleep(delay)
            self._next_start = loop.time() + self.interval_seconds

    def snapshot(self) -> dict:
        """Current stage counters."""
        return {
            "stage": self.name,
            "concurrency": self.concurrency,
            "active": self.active,
            "pending": self.pending,
            "completed": self.completed,
            "failed": self.failed,
        }
