"""
Inbound message queue and its single ordered consumer.
"""
import asyncio
import logging
import re
from collections import deque
from typing import Deque, Optional

from services.ai_service import AIService
from services.command_service import CommandService
from services.delivery_pipeline import DeliveryPipeline
from services.errors import RateLimitedError
from services.extraction_service import find_media_url
from services.models import Chat, ChatState, InboundMessage, PipelineStats, QueueEntry
from services.ports import MessagingClient
from services.voice_echo_service import VoiceEchoService
from services.webhook_service import WebhookService
from utils.background_tasks import BackgroundTasks
from utils.chat_state import chat_presence
from utils.rate_limiter import RateLimiter
from utils.reply_waiter import ReplyWaiter


logger = logging.getLogger(__name__)


BARE_MENTION_REPLY = "??"

_MENTION = re.compile(r"@\w+")


class MessageQueue:
    """In-memory FIFO of inbound messages."""

    def __init__(self, reply_waiter: Optional[ReplyWaiter] = None):
        self.reply_waiter = reply_waiter
        self._entries: Deque[QueueEntry] = deque()

    def __len__(self) -> int:
        return len(self._entries)

    def enqueue(self, message: InboundMessage) -> QueueEntry:
        """Append a message to the tail. Never blocks, never rejects."""
        entry = QueueEntry(message=message)
        self._entries.append(entry)
        return entry

    def submit(self, message: InboundMessage) -> bool:
        """
        Accept a message from the transport.

        A message awaited by a pending reply subscription is handed to it
        and not queued.

        Returns:
            True if the message was queued
        """
        if self.reply_waiter is not None and self.reply_waiter.offer(message):
            return False
        self.enqueue(message)
        return True

    def dequeue(self) -> Optional[QueueEntry]:
        """Pop the head entry, or None when empty."""
        if not self._entries:
            return None
        return self._entries.popleft()


class MessageProcessor:
    """
    Drains the message queue in order and routes each message.

    Commands go to the command service and run in order. Anything else is
    forwarded to the webhooks in the background; messages with a media link
    are delivered by the pipeline in the background, the rest may get an AI
    reply.
    """

    def __init__(
        self,
        queue: MessageQueue,
        transport: MessagingClient,
        rate_limiter: RateLimiter,
        command_service: CommandService,
        delivery_pipeline: DeliveryPipeline,
        webhook_service: Optional[WebhookService] = None,
        ai_service: Optional[AIService] = None,
        voice_echo_service: Optional[VoiceEchoService] = None,
        stats: Optional[PipelineStats] = None,
        poll_interval_seconds: float = 0.1
    ):
        """
        Initialize message processor.

        Args:
            queue: Inbound FIFO
            transport: Messaging client
            rate_limiter: Per-chat sliding window
            command_service: Command dispatch
            delivery_pipeline: Media link handling
            webhook_service: Optional forwarding of non-command messages
            ai_service: Optional AI conversations
            voice_echo_service: Optional voice echo of AI bot messages
            stats: Shared counters
            poll_interval_seconds: Idle delay between queue polls
        """
        self.queue = queue
        self.transport = transport
        self.rate_limiter = rate_limiter
        self.command_service = command_service
        self.delivery_pipeline = delivery_pipeline
        self.webhook_service = webhook_service
        self.ai_service = ai_service
        self.voice_echo_service = voice_echo_service
        self.stats = stats if stats is not None else PipelineStats()
        self.poll_interval_seconds = poll_interval_seconds
        self.background = BackgroundTasks("processor")
        self._running = False
        self._task: Optional[asyncio.Task] = None

    async def run(self) -> None:
        """Consumer loop: drain the queue, then idle for one poll interval."""
        self._running = True
        logger.info(f"Message processor started (poll interval {self.poll_interval_seconds}s)")
        while self._running:
            await self.drain()
            await asyncio.sleep(self.poll_interval_seconds)

    async def drain(self) -> int:
        """
        Process queued messages until the queue is empty.

        A failing message is logged and counted; it never stops the drain.

        Returns:
            Number of messages taken from the queue
        """
        count = 0
        while True:
            entry = self.queue.dequeue()
            if entry is None:
                return count
            count += 1
            try:
                await self.process_message(entry.message)
            except Exception as e:
                self.stats.errors += 1
                logger.error(
                    f"Error processing message: {e}",
                    extra={"message_id": entry.message.message_id, "chat_id": entry.message.chat_id},
                    exc_info=True
                )
            finally:
                self.stats.processed += 1

    async def process_message(self, message: InboundMessage) -> None:
        """Route one message."""
        chat = await self.transport.get_chat(message)
        if chat is None:
            self.stats.dropped += 1
            logger.warning(
                "Dropping message without chat context",
                extra={"message_id": message.message_id}
            )
            return

        if self.rate_limiter.is_limited(chat.id):
            await self.transport.reply(message, RateLimitedError.user_message)
            return

        if self.command_service.is_command(message.text):
            await self.command_service.execute(message, chat)
            return

        if self.webhook_service is not None:
            self.background.spawn(
                self.webhook_service.forward(message),
                label=f"webhook:{message.message_id}"
            )

        # Media delivery can take minutes; the queue keeps draining meanwhile.
        if find_media_url(message.text):
            self.background.spawn(
                self.delivery_pipeline.handle_message(message, chat),
                label=f"media:{message.message_id}"
            )
            return

        if self.voice_echo_service is not None and self.voice_echo_service.should_echo(message):
            self.background.spawn(
                self.voice_echo_service.echo(message, chat),
                label=f"voice-echo:{message.message_id}"
            )
            return

        await self._converse(message, chat)

    async def _converse(self, message: InboundMessage, chat: Chat) -> None:
        if self.ai_service is None or not message.text:
            return
        if not await self.ai_service.is_enabled():
            return

        sender = message.sender_id
        if message.mentions_bot:
            self.ai_service.start_conversation(sender)
            if not _MENTION.sub("", message.text).strip():
                await self.transport.reply(message, BARE_MENTION_REPLY)
                return
        elif not self.ai_service.is_active(sender):
            return
        elif message.quoted is not None and not message.quoted.from_bot_self:
            # Replying to someone else is not addressed to the bot.
            return

        async with chat_presence(self.transport, chat, ChatState.TYPING):
            reply = await self.ai_service.respond(message)
            if reply.response:
                await self.transport.reply(message, reply.response)

        if reply.command:
            logger.info(f"AI requested command: {reply.command}", extra={"chat_id": chat.id})
            await self.command_service.execute(message, chat, command_text=reply.command)

    def start(self) -> asyncio.Task:
        """Start the consumer loop on the running event loop."""
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self.run())
        return self._task

    async def stop(self) -> None:
        """Stop the consumer loop and cancel background work."""
        self._running = False
        if self._task is not None:
            self._task.cancel()
            await asyncio.gather(self._task, return_exceptions=True)
            self._task = None
        await self.background.close()
        logger.info("Message processor stopped", extra=self.stats.to_dict())
