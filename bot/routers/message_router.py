"""Router feeding incoming Telegram messages into the processing queue."""

import logging

from aiogram import Router
from aiogram.types import Message

from bot.transport import TelegramTransport
from services.message_processor import MessageQueue


logger = logging.getLogger(__name__)

# Create router for message handling
router = Router(name="message_router")


@router.message()
async def handle_message(message: Message, transport: TelegramTransport, message_queue: MessageQueue):
    """
    Convert an incoming message and hand it to the queue.

    Processing happens in the queue consumer; this handler returns at once.

    Args:
        message: Incoming message from Telegram
        transport: Messaging adapter, keeps the message for later lookups
        message_queue: Inbound FIFO
    """
    inbound = transport.remember(message)
    queued = message_queue.submit(inbound)
    logger.debug(
        "Message received",
        extra={
            "message_id": inbound.message_id,
            "chat_id": inbound.chat_id,
            "queued": queued,
            "queue_size": len(message_queue)
        }
    )


@router.edited_message()
async def handle_edited_message(message: Message, transport: TelegramTransport):
    """
    Refresh the stored copy of an edited message.

    Streaming bots edit one message repeatedly; the voice echo re-reads it
    from the transport until the text settles.
    """
    transport.remember(message)
    logger.debug(
        "Message edited",
        extra={"message_id": message.message_id, "chat_id": message.chat.id}
    )
