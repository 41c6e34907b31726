"""
Delivery pipeline: extract -> download -> send for shared media links.
"""
import asyncio
import itertools
import logging
import time
from typing import List, Optional, Tuple

from services.download_service import DownloadService
from services.errors import (
    OversizeMediaError,
    PipelineError,
    TooManyMediaItemsError,
    UnsupportedMediaError,
    truncate_url,
)
from services.extraction_service import ExtractionService, detect_platform, find_media_url
from services.models import (
    Chat,
    ChatState,
    InboundMessage,
    ItemOutcome,
    MediaPayload,
    MediaTransaction,
    PipelineStats,
)
from services.ports import MessagingClient
from utils.chat_state import chat_presence
from utils.dedup_cache import DedupCache
from utils.stage_queue import StageQueue


logger = logging.getLogger(__name__)


BASE36 = "0123456789abcdefghijklmnopqrstuvwxyz"
_tx_sequence = itertools.count()


def _to_base36(value: int) -> str:
    digits = []
    while True:
        value, remainder = divmod(value, 36)
        digits.append(BASE36[remainder])
        if value == 0:
            return "".join(reversed(digits))


def create_tx_id() -> str:
    """Time-derived transaction id, unique within the process."""
    return f"{_to_base36(int(time.time() * 1000))}{_to_base36(next(_tx_sequence) % 1296).zfill(2)}"


class DeliveryPipeline:
    """
    Delivers media found behind a shared link as replies.

    Extraction, download and send each run in their own bounded stage, so a
    burst of links cannot flood any single dependency. Sub-items of one link
    are delivered concurrently and their outcomes are settled together.
    """

    def __init__(
        self,
        transport: MessagingClient,
        extraction_service: ExtractionService,
        download_service: DownloadService,
        media_cache: DedupCache,
        extraction_stage: StageQueue,
        download_stage: StageQueue,
        send_stage: StageQueue,
        max_media_items: int = 5,
        stats: Optional[PipelineStats] = None
    ):
        """
        Initialize delivery pipeline.

        Args:
            transport: Messaging client used for replies
            extraction_service: Link resolver
            download_service: Media fetcher
            media_cache: Cache of payloads by source link and by direct URL
            extraction_stage: Stage for resolver calls
            download_stage: Stage for downloads
            send_stage: Stage for outbound replies
            max_media_items: Ceiling on resolved sub-URLs per link
            stats: Shared counters
        """
        self.transport = transport
        self.extraction_service = extraction_service
        self.download_service = download_service
        self.media_cache = media_cache
        self.extraction_stage = extraction_stage
        self.download_stage = download_stage
        self.send_stage = send_stage
        self.max_media_items = max_media_items
        self.stats = stats

    async def handle_message(self, message: InboundMessage, chat: Chat) -> Optional[MediaTransaction]:
        """
        Deliver the first media link in a message, if any.

        Shows a typing indicator while working and notifies the user on a
        user-actionable total failure. Never raises.

        Returns:
            The finished transaction, or None if the message has no media link
        """
        url = find_media_url(message.text)
        if not url:
            return None

        try:
            async with chat_presence(self.transport, chat, ChatState.TYPING):
                transaction = await self.deliver(url, message)
        except Exception as e:
            logger.error(f"Media delivery crashed: {e}", extra={"chat_id": chat.id}, exc_info=True)
            return None

        if not transaction.success and transaction.should_notify:
            try:
                await self.transport.reply(message, f"Failed to process media: {transaction.reason}")
            except Exception as e:
                logger.error(f"[TX:{transaction.tx_id}] Failed to send failure notice: {e}")
        return transaction

    async def deliver(self, url: str, message: InboundMessage) -> MediaTransaction:
        """
        Run one media transaction for ``url``.

        Returns:
            Transaction with per-item outcomes and, on failure, a reason
        """
        transaction = MediaTransaction(tx_id=create_tx_id(), source_url=url)
        transaction.platform = detect_platform(url)

        if transaction.platform is None:
            logger.info(f"[TX:{transaction.tx_id}] Unsupported media URL", extra={"url": truncate_url(url)})
            return self._fail(transaction, UnsupportedMediaError())

        logger.info(
            f"[TX:{transaction.tx_id}] Processing {transaction.platform}",
            extra={"url": truncate_url(url)}
        )

        cached = self.media_cache.get(url)
        if cached:
            transaction.from_cache = True
            transaction.sub_urls = [url] * len(cached)
            outcomes = await asyncio.gather(
                *(self._send_item(transaction, url, payload, message) for payload in cached)
            )
            transaction.outcomes.extend(outcomes)
            return self._finish(transaction)

        try:
            payloads = await self._resolve(transaction)
        except PipelineError as e:
            logger.error(f"[TX:{transaction.tx_id}] Processing failed", extra={"error": str(e)})
            return self._fail(transaction, e)

        if payloads is not None:
            outcomes = await asyncio.gather(
                *(self._send_item(transaction, url, payload, message) for payload in payloads)
            )
            transaction.outcomes.extend(outcomes)
            delivered = [payload for payload, outcome in zip(payloads, outcomes) if outcome.success]
        else:
            results = await asyncio.gather(
                *(self._deliver_item(transaction, sub_url, message) for sub_url in transaction.sub_urls)
            )
            transaction.outcomes.extend(outcome for outcome, _ in results)
            delivered = [payload for outcome, payload in results if outcome.success and payload]

        if delivered:
            self.media_cache.set(url, tuple(delivered))
        return self._finish(transaction)

    async def _resolve(self, transaction: MediaTransaction) -> Optional[List[MediaPayload]]:
        """
        Resolve the source link through the extraction stage.

        Returns buffered payloads when the resolver fetched the media itself,
        otherwise None with ``transaction.sub_urls`` filled in.
        """
        url = transaction.source_url
        result = await self.extraction_stage.submit(
            lambda: self.extraction_service.resolve(url, transaction.platform),
            tx_id=transaction.tx_id,
            label=transaction.platform or ""
        )

        if result.is_buffer:
            transaction.sub_urls = [url]
            return [MediaPayload.from_bytes(result.buffer, result.mime_type)]

        if len(result.urls) > self.max_media_items:
            raise TooManyMediaItemsError(len(result.urls), self.max_media_items)

        transaction.sub_urls = list(result.urls)
        logger.debug(f"[TX:{transaction.tx_id}] Resolved {len(result.urls)} media item(s)")
        return None

    async def _deliver_item(
        self,
        transaction: MediaTransaction,
        sub_url: str,
        message: InboundMessage
    ) -> Tuple[ItemOutcome, Optional[MediaPayload]]:
        payload = self.media_cache.get(sub_url)
        if payload is None:
            try:
                payload = await self.download_stage.submit(
                    lambda: self.download_service.download(sub_url, transaction.tx_id),
                    tx_id=transaction.tx_id,
                    label=truncate_url(sub_url)
                )
            except PipelineError as e:
                return ItemOutcome(url=sub_url, success=False, reason=e.user_message, notify_user=e.notify_user), None
            except Exception as e:
                logger.error(f"[TX:{transaction.tx_id}] Unexpected download error: {e}", exc_info=True)
                return ItemOutcome(url=sub_url, success=False, reason="Processing error"), None
            self.media_cache.set(sub_url, payload)

        outcome = await self._send_item(transaction, sub_url, payload, message)
        return outcome, payload

    async def _send_item(
        self,
        transaction: MediaTransaction,
        sub_url: str,
        payload: MediaPayload,
        message: InboundMessage
    ) -> ItemOutcome:
        try:
            await self.send_stage.submit(
                lambda: self.transport.reply(message, payload),
                tx_id=transaction.tx_id,
                label=payload.mime_type
            )
        except Exception as e:
            logger.error(f"[TX:{transaction.tx_id}] Send failed: {e}", extra={"url": truncate_url(sub_url)})
            return ItemOutcome(url=sub_url, success=False, reason="Send failed", notify_user=False)
        return ItemOutcome(url=sub_url, success=True)

    def _fail(self, transaction: MediaTransaction, error: PipelineError) -> MediaTransaction:
        transaction.reason = error.user_message
        transaction.details = str(error)
        transaction.should_notify = error.notify_user
        return transaction

    def _finish(self, transaction: MediaTransaction) -> MediaTransaction:
        failures = [outcome for outcome in transaction.outcomes if not outcome.success]

        if transaction.success:
            if self.stats is not None:
                self.stats.media_delivered += transaction.success_count
            logger.info(
                f"[TX:{transaction.tx_id}] Media sending complete: "
                f"{transaction.success_count} successful, {len(failures)} failed",
                extra=transaction.to_dict()
            )
            return transaction

        if any(outcome.reason == OversizeMediaError.user_message for outcome in failures):
            transaction.reason = OversizeMediaError.user_message
        else:
            transaction.reason = failures[0].reason if failures else "Processing error"
        transaction.should_notify = any(outcome.notify_user for outcome in failures)
        transaction.details = "; ".join(f"{truncate_url(o.url)}: {o.reason}" for o in failures)
        logger.error(f"[TX:{transaction.tx_id}] All media items failed", extra=transaction.to_dict())
        return transaction
