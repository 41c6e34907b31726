"""
One-shot subscriptions for "wait for the next message matching X" flows.
"""
import asyncio
import logging
from dataclasses import dataclass
from typing import Callable, List, Optional

from services.models import InboundMessage


logger = logging.getLogger(__name__)


MessagePredicate = Callable[[InboundMessage], bool]


@dataclass
class _Subscription:
    predicate: MessagePredicate
    future: asyncio.Future
    label: str


class ReplyWaiter:
    """
    Registry of pending predicate-filtered listeners.

    Inbound messages are offered to the registry before they are queued; the
    first pending subscription whose predicate matches consumes the message.
    """

    def __init__(self):
        self._subscriptions: List[_Subscription] = []

    @property
    def pending(self) -> int:
        return len(self._subscriptions)

    def offer(self, message: InboundMessage) -> bool:
        """
        Hand a message to the first matching subscription.

        Returns:
            True if a subscription consumed the message
        """
        for subscription in list(self._subscriptions):
            if subscription.future.done():
                continue
            try:
                matched = subscription.predicate(message)
            except Exception as e:
                logger.error(f"Reply predicate '{subscription.label}' failed: {e}", exc_info=True)
                continue
            if matched:
                subscription.future.set_result(message)
                logger.debug(f"Message {message.message_id} consumed by '{subscription.label}'")
                return True
        return False

    async def wait_for(
        self,
        predicate: MessagePredicate,
        timeout_seconds: float,
        label: str = "reply"
    ) -> Optional[InboundMessage]:
        """
        Wait for the first offered message matching ``predicate``.

        The subscription is always removed when this returns, whether a
        message matched, the timeout expired or the waiter was cancelled.

        Returns:
            The matching message, or None on timeout
        """
        future = asyncio.get_running_loop().create_future()
        subscription = _Subscription(predicate=predicate, future=future, label=label)
        self._subscriptions.append(subscription)
        try:
            return await asyncio.wait_for(future, timeout=timeout_seconds)
        except asyncio.TimeoutError:
            logger.info(f"No reply for '{label}' within {timeout_seconds:.0f}s")
            return None
        finally:
            self._subscriptions.remove(subscription)
