"""
Voice echo of messages posted by other AI bots.
"""
import logging
from typing import Iterable, Optional

from services.models import Chat, ChatState, InboundMessage, PipelineStats
from services.ports import MessagingClient
from services.tts_service import TTSClient
from utils.chat_state import chat_presence
from utils.debounce_manager import DebounceManager


logger = logging.getLogger(__name__)


class VoiceEchoService:
    """
    Reads out messages from configured senders once they stop changing.

    Those senders stream their replies by editing one message, so the text is
    re-read until it settles before it is synthesized.
    """

    def __init__(
        self,
        transport: MessagingClient,
        tts_client: TTSClient,
        debounce_manager: DebounceManager,
        senders: Iterable[str],
        stats: Optional[PipelineStats] = None
    ):
        self.transport = transport
        self.tts_client = tts_client
        self.debounce_manager = debounce_manager
        self.senders = {sender.lower() for sender in senders if sender}
        self.stats = stats

    def should_echo(self, message: InboundMessage) -> bool:
        return (
            self.tts_client.enabled
            and bool(message.text)
            and message.sender_name.lower() in self.senders
        )

    async def echo(self, message: InboundMessage, chat: Chat) -> None:
        """
        Wait for the message to settle, then reply with it as voice.

        Raises:
            TTSError: If speech synthesis fails
        """
        async def fetch() -> Optional[InboundMessage]:
            return await self.transport.get_message_by_id(chat.id, message.message_id)

        settled = await self.debounce_manager.wait_until_stable(
            fetch,
            key=lambda current: current.text if current else None
        )
        text = settled.text if settled and settled.text else message.text
        logger.debug(
            "Echoing message as voice",
            extra={"chat_id": chat.id, "message_id": message.message_id, "text_length": len(text)}
        )

        async with chat_presence(self.transport, chat, ChatState.RECORDING):
            payload = await self.tts_client.synthesize(text)
            await self.transport.reply(message, payload, as_voice=True)

        if self.stats is not None:
            self.stats.audio_sent += 1
