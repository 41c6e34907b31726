"""
Media command handlers: !speak, !img and !song.
"""
import asyncio
import logging
from typing import List, Optional

import aiohttp

from openai_client.client import AIClientError, OpenAIClient
from services.ai_service import AIService
from services.download_service import DownloadService
from services.errors import PipelineError
from services.image_search_service import ImageSearchService, parse_request
from services.models import Chat, ChatState, InboundMessage, PipelineStats
from services.music_service import MusicClient, Track
from services.ports import MessagingClient
from services.tts_service import TTSClient, TTSError
from utils.background_tasks import BackgroundTasks
from utils.chat_state import chat_presence
from utils.message_formatter import MessageFormatter
from utils.reply_waiter import ReplyWaiter


logger = logging.getLogger(__name__)


class MediaCommands:
    """Handlers for commands that reply with images or audio."""

    def __init__(
        self,
        transport: MessagingClient,
        tts_client: TTSClient,
        image_search_service: Optional[ImageSearchService],
        music_client: MusicClient,
        audio_download_service: DownloadService,
        reply_waiter: ReplyWaiter,
        stats: PipelineStats,
        ai_service: Optional[AIService] = None,
        openai_client: Optional[OpenAIClient] = None,
        selection_timeout_seconds: float = 60.0
    ):
        """
        Initialize media commands.

        Args:
            transport: Messaging client
            tts_client: Speech synthesis
            image_search_service: Image search, None when not configured
            music_client: Song lookup backend
            audio_download_service: Downloader for chosen songs
            reply_waiter: Subscriptions for the song number reply
            stats: Shared counters
            ai_service: Used to check whether captions may be generated
            openai_client: Caption generator
            selection_timeout_seconds: How long a song listing waits for a choice
        """
        self.transport = transport
        self.tts_client = tts_client
        self.image_search_service = image_search_service
        self.music_client = music_client
        self.audio_download_service = audio_download_service
        self.reply_waiter = reply_waiter
        self.stats = stats
        self.ai_service = ai_service
        self.openai_client = openai_client
        self.selection_timeout_seconds = selection_timeout_seconds
        self.background = BackgroundTasks("song-selection")

    async def speak(self, message: InboundMessage, args: List[str]) -> None:
        if not message.quoted or not message.quoted.text:
            await self.transport.reply(message, "Please reply to a message to use this command.")
            return

        try:
            payload = await self.tts_client.synthesize(message.quoted.text)
        except TTSError as e:
            logger.error(f"Error in !speak command: {e}")
            self.stats.errors += 1
            await self.transport.reply(message, TTSError.user_message)
            return

        await self.transport.reply(message, payload, as_voice=True)
        self.stats.audio_sent += 1

    async def image_search(self, message: InboundMessage, args: List[str]) -> None:
        if self.image_search_service is None:
            await self.transport.reply(message, "Image search is not configured.")
            return

        count, query = parse_request(" ".join(args))
        if not query:
            await self.transport.reply(message, "Please provide a search query. Example: !img cute cats")
            return

        caption_task = asyncio.ensure_future(self._caption(query))
        try:
            images = await self.image_search_service.find_images(query, count)
            payloads = await self.image_search_service.fetch_images(images, query=query) if images else []
        except BaseException:
            caption_task.cancel()
            raise

        if not payloads:
            caption_task.cancel()
            await self.transport.reply(message, "Sorry, I couldn't find any valid images for your search query.")
            return

        caption = await caption_task
        for index, payload in enumerate(payloads):
            await self.transport.reply(message, payload, caption=caption if index == 0 else None)
            self.stats.images_sent += 1

        logger.info(
            "Images sent",
            extra={"query": query, "requested": count, "sent": len(payloads)}
        )

    async def _caption(self, query: str) -> Optional[str]:
        if self.openai_client is None or self.ai_service is None:
            return None
        if not await self.ai_service.is_enabled():
            return None
        try:
            return await self.openai_client.generate_caption(query) or None
        except AIClientError as e:
            logger.warning(f"Caption generation failed: {e}")
            return None

    async def song(self, message: InboundMessage, args: List[str]) -> None:
        if not self.music_client.enabled:
            await self.transport.reply(message, "Song search is not configured.")
            return

        query = " ".join(args).strip()
        if not query:
            await self.transport.reply(message, "Please provide a song name. Example: !song Graham - My Medicine")
            return

        tracks = await self.music_client.search(query)
        if not tracks:
            await self.transport.reply(message, "No songs found for your search query.")
            return

        listing_id = await self.transport.reply(message, MessageFormatter.format_song_results(tracks))
        self.background.spawn(
            self._await_selection(message, tracks, listing_id),
            label=f"song:{message.message_id}"
        )

    async def _await_selection(self, message: InboundMessage, tracks: List[Track], listing_id: Optional[int]) -> None:
        def is_selection(candidate: InboundMessage) -> bool:
            if candidate.chat_id != message.chat_id or candidate.sender_id != message.sender_id:
                return False
            if listing_id is not None and (candidate.quoted is None or candidate.quoted.message_id != listing_id):
                return False
            return candidate.text.strip().isdigit()

        selection = await self.reply_waiter.wait_for(
            is_selection,
            self.selection_timeout_seconds,
            label=f"song:{message.message_id}"
        )
        if selection is None:
            await self.transport.reply(message, "Song selection timed out.")
            return

        index = int(selection.text.strip()) - 1
        if not 0 <= index < len(tracks):
            await self.transport.reply(selection, f"Please choose a number between 1 and {len(tracks)}.")
            return

        track = tracks[index]
        chat = Chat(id=message.chat_id, is_group=message.is_group)
        async with chat_presence(self.transport, chat, ChatState.RECORDING):
            try:
                audio_url = await self.music_client.get_audio_url(track)
                payload = await self.audio_download_service.download(audio_url)
            except (PipelineError, ValueError, aiohttp.ClientError, asyncio.TimeoutError) as e:
                logger.error(f"Error downloading song: {e}", extra={"track": track.title})
                self.stats.errors += 1
                await self.transport.reply(selection, "Failed to download the song. Please try again later.")
                return
            await self.transport.reply(selection, payload, caption=track.caption)

        self.stats.audio_sent += 1

    async def close(self) -> None:
        await self.background.close()
