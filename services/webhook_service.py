"""
Forwarding of inbound messages to external webhooks.
"""
import asyncio
import logging
from typing import List, Sequence

import aiohttp

from services.models import InboundMessage


logger = logging.getLogger(__name__)


class WebhookService:
    """POSTs every forwarded message to all configured webhook URLs."""

    def __init__(self, session: aiohttp.ClientSession, urls: Sequence[str], timeout_seconds: float = 5.0):
        self.session = session
        self.urls: List[str] = [url for url in urls if url]
        self.timeout_seconds = timeout_seconds

    @staticmethod
    def build_payload(message: InboundMessage) -> dict:
        return {
            "messageId": message.message_id,
            "from": message.sender_id,
            "chat": message.chat_id,
            "body": message.text,
            "timestamp": int(message.timestamp.timestamp()),
            "type": message.media_kind or "chat",
            "hasMedia": message.has_media,
        }

    async def forward(self, message: InboundMessage) -> int:
        """
        Forward a message to every webhook concurrently.

        Failures are logged per URL and never raised.

        Returns:
            Number of webhooks that accepted the message
        """
        if not self.urls:
            return 0

        payload = self.build_payload(message)
        results = await asyncio.gather(*(self._post(url, payload) for url in self.urls))
        return sum(1 for ok in results if ok)

    async def _post(self, url: str, payload: dict) -> bool:
        try:
            timeout = aiohttp.ClientTimeout(total=self.timeout_seconds)
            async with self.session.post(url, json=payload, timeout=timeout) as response:
                if response.status >= 400:
                    logger.error(f"Webhook {url} responded with HTTP {response.status}")
                    return False
            return True
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.error(f"Error sending webhook to {url}: {e}")
            return False
