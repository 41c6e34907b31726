"""
Utility for sending Telegram messages with fallback formatting.
"""
import logging
from typing import Awaitable, Callable, Optional, TypeVar

from aiogram.enums import ParseMode
from aiogram.exceptions import TelegramBadRequest


logger = logging.getLogger(__name__)

T = TypeVar("T")


async def send_with_fallback(
    send_func: Callable[[Optional[ParseMode]], Awaitable[T]],
    parse_mode: Optional[ParseMode] = ParseMode.MARKDOWN
) -> T:
    """
    Send with a parse mode, retrying as plain text if Telegram rejects the markup.

    Args:
        send_func: Sends the message with the given parse mode

    Returns:
        Whatever ``send_func`` returns

    Example:
        await send_with_fallback(lambda pm: bot.send_message(chat_id, text, parse_mode=pm))
    """
    try:
        return await send_func(parse_mode)
    except TelegramBadRequest as e:
        if parse_mode is None or "can't parse entities" not in str(e).lower():
            raise
        logger.warning(f"Markup parsing failed, sending as plain text: {e}")
        return await send_func(None)
