"""
Presence indicator helpers (typing / recording).
"""
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from services.models import Chat, ChatState
from services.ports import MessagingClient


logger = logging.getLogger(__name__)


async def set_chat_state(transport: MessagingClient, chat: Chat, state: ChatState) -> None:
    """Set a presence indicator, logging instead of raising on transport errors."""
    try:
        await transport.set_chat_state(chat, state)
    except Exception as e:
        logger.error(f"Failed to set chat state '{state.value}': {e}", extra={"chat_id": chat.id})


@asynccontextmanager
async def chat_presence(
    transport: MessagingClient,
    chat: Chat,
    state: Optional[ChatState]
) -> AsyncIterator[None]:
    """
    Show ``state`` for the duration of the block and clear it on every exit path.

    Passing None skips setting an indicator but still clears on exit.
    """
    if state is not None and state is not ChatState.CLEAR:
        await set_chat_state(transport, chat, state)
    try:
        yield
    finally:
        await set_chat_state(transport, chat, ChatState.CLEAR)
