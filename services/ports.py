"""
Messaging transport contract used by the pipeline.

Services talk to the chat transport only through this protocol so the
pipeline stays independent of the concrete bot framework.
"""
from typing import Optional, Protocol, Union

from services.models import Chat, ChatState, Contact, InboundMessage, MediaPayload


ReplyContent = Union[str, MediaPayload]


class MessagingClient(Protocol):
    """Operations the pipeline needs from the chat transport."""

    async def reply(
        self,
        message: InboundMessage,
        content: ReplyContent,
        chat_id: Optional[int] = None,
        caption: Optional[str] = None,
        as_voice: bool = False
    ) -> Optional[int]:
        """Reply to ``message``; returns the sent message id when the transport knows it."""
        ...

    async def send(self, chat_id: int, content: ReplyContent) -> Optional[int]:
        ...

    async def get_chat(self, message: InboundMessage) -> Optional[Chat]:
        ...

    async def get_contact(self, message: InboundMessage) -> Contact:
        ...

    async def get_quoted_message(self, message: InboundMessage) -> Optional[InboundMessage]:
        ...

    async def get_message_by_id(self, chat_id: int, message_id: int) -> Optional[InboundMessage]:
        ...

    async def set_chat_state(self, chat: Chat, state: ChatState) -> None:
        ...

    async def get_profile_photo_url(self, user_id: int) -> Optional[str]:
        ...
