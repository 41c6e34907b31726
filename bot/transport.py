"""
Telegram implementation of the messaging client used by the pipeline.
"""
import logging
import mimetypes
from collections import OrderedDict
from datetime import datetime
from typing import Dict, Optional, Tuple

from aiogram import Bot
from aiogram.enums import ChatAction, ChatType
from aiogram.types import BufferedInputFile, Message, ReplyParameters

from services.models import Chat, ChatState, Contact, InboundMessage, MediaPayload
from services.ports import ReplyContent
from utils.telegram_sender import send_with_fallback


logger = logging.getLogger(__name__)


_CHAT_ACTIONS = {
    ChatState.TYPING: ChatAction.TYPING,
    ChatState.RECORDING: ChatAction.RECORD_VOICE,
}

_MEDIA_ATTRIBUTES = ("photo", "video", "animation", "audio", "voice", "video_note", "document", "sticker")


class TelegramTransport:
    """
    Adapts an aiogram Bot to the pipeline's messaging contract.

    Recently seen messages are kept so the pipeline can re-read a message by
    id; edits replace the stored copy.
    """

    def __init__(self, bot: Bot, bot_id: Optional[int] = None, bot_username: Optional[str] = None, history_size: int = 1000):
        """
        Initialize transport.

        Args:
            bot: aiogram bot instance
            bot_id: Bot's own user id
            bot_username: Bot's username, used to detect mentions
            history_size: Messages kept for lookups by id
        """
        self.bot = bot
        self.bot_id = bot_id
        self.bot_username = bot_username
        self.history_size = history_size
        self._messages: "OrderedDict[Tuple[int, int], Tuple[Message, InboundMessage]]" = OrderedDict()
        self._chats: Dict[int, Chat] = {}

    def to_inbound(self, message: Message, with_quoted: bool = True) -> InboundMessage:
        """Convert an aiogram message into the pipeline's message model."""
        text = message.text or message.caption or ""
        user = message.from_user
        media_kind = next((name for name in _MEDIA_ATTRIBUTES if getattr(message, name, None)), None)
        is_group = message.chat.type in (ChatType.GROUP, ChatType.SUPERGROUP)

        quoted = None
        if with_quoted and message.reply_to_message:
            quoted = self.to_inbound(message.reply_to_message, with_quoted=False)

        mentions_bot = not is_group
        if self.bot_username and f"@{self.bot_username}".lower() in text.lower():
            mentions_bot = True

        return InboundMessage(
            message_id=message.message_id,
            chat_id=message.chat.id if message.chat else None,
            sender_id=user.id if user else 0,
            sender_name=(user.username or user.full_name) if user else "Unknown",
            text=text,
            timestamp=message.date if isinstance(message.date, datetime) else datetime.now(),
            has_media=media_kind is not None,
            media_kind=media_kind,
            quoted=quoted,
            is_group=is_group,
            mentions_bot=mentions_bot,
            from_bot_self=bool(user and self.bot_id is not None and user.id == self.bot_id),
        )

    def remember(self, message: Message) -> InboundMessage:
        """Store a new or edited message and return its converted form."""
        inbound = self.to_inbound(message)
        key = (message.chat.id, message.message_id)
        self._messages[key] = (message, inbound)
        self._messages.move_to_end(key)
        while len(self._messages) > self.history_size:
            self._messages.popitem(last=False)
        self._chats[message.chat.id] = Chat(
            id=message.chat.id,
            is_group=inbound.is_group,
            title=message.chat.title or message.chat.full_name
        )
        return inbound

    async def reply(
        self,
        message: InboundMessage,
        content: ReplyContent,
        chat_id: Optional[int] = None,
        caption: Optional[str] = None,
        as_voice: bool = False
    ) -> Optional[int]:
        reply_parameters = None
        if chat_id is None:
            reply_parameters = ReplyParameters(
                message_id=message.message_id,
                allow_sending_without_reply=True
            )
        target = chat_id if chat_id is not None else message.chat_id
        return await self._deliver(target, content, caption, as_voice, reply_parameters)

    async def send(self, chat_id: int, content: ReplyContent) -> Optional[int]:
        return await self._deliver(chat_id, content, None, False, None)

    async def _deliver(
        self,
        chat_id: int,
        content: ReplyContent,
        caption: Optional[str],
        as_voice: bool,
        reply_parameters: Optional[ReplyParameters]
    ) -> Optional[int]:
        if isinstance(content, MediaPayload):
            sent = await self._send_media(chat_id, content, caption, as_voice, reply_parameters)
        else:
            sent = await send_with_fallback(
                lambda parse_mode: self.bot.send_message(
                    chat_id,
                    content,
                    parse_mode=parse_mode,
                    reply_parameters=reply_parameters
                )
            )
        return sent.message_id if sent else None

    async def _send_media(
        self,
        chat_id: int,
        payload: MediaPayload,
        caption: Optional[str],
        as_voice: bool,
        reply_parameters: Optional[ReplyParameters]
    ) -> Message:
        extension = mimetypes.guess_extension(payload.mime_type) or ""
        file = BufferedInputFile(payload.raw, filename=payload.filename or f"media{extension}")

        if payload.mime_type == "image/gif":
            method, field = self.bot.send_animation, "animation"
        elif payload.kind == "image":
            method, field = self.bot.send_photo, "photo"
        elif payload.kind == "video":
            method, field = self.bot.send_video, "video"
        elif payload.kind == "audio" and as_voice:
            method, field = self.bot.send_voice, "voice"
        elif payload.kind == "audio":
            method, field = self.bot.send_audio, "audio"
        else:
            method, field = self.bot.send_document, "document"

        logger.debug(
            f"Sending {field}",
            extra={"chat_id": chat_id, "mime_type": payload.mime_type, "size": payload.size}
        )
        return await send_with_fallback(
            lambda parse_mode: method(
                chat_id,
                **{field: file},
                caption=caption,
                parse_mode=parse_mode if caption else None,
                reply_parameters=reply_parameters
            )
        )

    async def get_chat(self, message: InboundMessage) -> Optional[Chat]:
        if message.chat_id is None:
            return None
        return self._chats.get(message.chat_id) or Chat(id=message.chat_id, is_group=message.is_group)

    async def get_contact(self, message: InboundMessage) -> Contact:
        stored = self._messages.get((message.chat_id, message.message_id))
        user = stored[0].from_user if stored else None
        return Contact(
            id=message.sender_id,
            name=user.full_name if user else message.sender_name,
            username=user.username if user else None
        )

    async def get_quoted_message(self, message: InboundMessage) -> Optional[InboundMessage]:
        if message.quoted is None:
            return None
        stored = self._messages.get((message.chat_id, message.quoted.message_id))
        return stored[1] if stored else message.quoted

    async def get_message_by_id(self, chat_id: int, message_id: int) -> Optional[InboundMessage]:
        stored = self._messages.get((chat_id, message_id))
        return stored[1] if stored else None

    async def set_chat_state(self, chat: Chat, state: ChatState) -> None:
        # Telegram chat actions expire on their own; there is nothing to clear.
        action = _CHAT_ACTIONS.get(state)
        if action is None:
            return
        await self.bot.send_chat_action(chat.id, action)

    async def get_profile_photo_url(self, user_id: int) -> Optional[str]:
        photos = await self.bot.get_user_profile_photos(user_id, limit=1)
        if not photos.total_count or not photos.photos:
            return None
        largest = photos.photos[0][-1]
        file = await self.bot.get_file(largest.file_id)
        if not file.file_path:
            return None
        return f"https://api.telegram.org/file/bot{self.bot.token}/{file.file_path}"
