"""
Debounce manager for waiting until a changing value settles.
"""
import asyncio
import logging
from typing import Awaitable, Callable, Optional, TypeVar


logger = logging.getLogger(__name__)

T = TypeVar("T")


class DebounceManager:
    """Polls a value until it stops changing."""

    def __init__(
        self,
        interval_seconds: float = 0.5,
        stable_checks: int = 2,
        max_attempts: int = 100,
        timeout_seconds: Optional[float] = 30.0
    ):
        """
        Initialize debounce manager.

        Args:
            interval_seconds: Delay between two polls
            stable_checks: Consecutive unchanged polls required to call the value settled
            max_attempts: Poll ceiling
            timeout_seconds: Wall-clock deadline for the whole wait, None for no deadline
        """
        self.interval_seconds = interval_seconds
        self.stable_checks = stable_checks
        self.max_attempts = max_attempts
        self.timeout_seconds = timeout_seconds

    async def wait_until_stable(
        self,
        fetch: Callable[[], Awaitable[T]],
        key: Callable[[T], object] = lambda value: value
    ) -> T:
        """
        Poll ``fetch`` until its result is unchanged for ``stable_checks`` polls.

        Stops early at ``max_attempts`` polls or when the deadline passes and
        returns the last value seen in that case.

        Args:
            fetch: Coroutine factory returning the current value
            key: Projection compared between polls

        Returns:
            The settled (or last observed) value
        """
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.timeout_seconds if self.timeout_seconds else None

        current = await fetch()
        previous_key = key(current)
        same_count = 0

        for attempt in range(1, self.max_attempts):
            if deadline is not None and loop.time() + self.interval_seconds > deadline:
                logger.debug(f"Debounce deadline reached after {attempt} polls")
                break

            await asyncio.sleep(self.interval_seconds)
            current = await fetch()
            current_key = key(current)

            if current_key == previous_key:
                same_count += 1
                if same_count >= self.stable_checks:
                    logger.debug(f"Value settled after {attempt + 1} polls")
                    return current
            else:
                same_count = 0
            previous_key = current_key
        else:
            logger.debug(f"Debounce gave up after {self.max_attempts} polls")

        return current
