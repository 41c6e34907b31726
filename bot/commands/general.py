"""
General and admin command handlers.
"""
import logging
import re
from typing import Callable, List, Optional, Sequence

from services.ai_service import AIService
from services.command_service import CommandService
from services.download_service import DownloadService
from services.errors import PipelineError
from services.models import InboundMessage, PipelineStats
from services.ports import MessagingClient
from utils.dedup_cache import DedupCache
from utils.message_formatter import MessageFormatter


logger = logging.getLogger(__name__)


_QUOTED_TEXT = re.compile(r'"([^"]+)"')


class GeneralCommands:
    """Handlers for !help, !toggleai, !togglecmd, !logs, !msg and !pfp."""

    def __init__(
        self,
        transport: MessagingClient,
        command_service: CommandService,
        ai_service: AIService,
        image_download_service: DownloadService,
        stats: PipelineStats,
        caches: Sequence[DedupCache] = (),
        queue_size: Callable[[], int] = lambda: 0
    ):
        self.transport = transport
        self.command_service = command_service
        self.ai_service = ai_service
        self.image_download_service = image_download_service
        self.stats = stats
        self.caches = list(caches)
        self.queue_size = queue_size

    async def help(self, message: InboundMessage, args: List[str]) -> None:
        is_admin = self.command_service.is_admin(message.sender_id)
        commands = self.command_service.registry.visible_to(is_admin)
        await self.transport.reply(message, MessageFormatter.format_help(commands))

    async def toggle_ai(self, message: InboundMessage, args: List[str]) -> None:
        enabled = await self.ai_service.toggle()
        await self.transport.reply(message, f"AI functionality is now {'enabled' if enabled else 'disabled'}!")

    async def toggle_commands(self, message: InboundMessage, args: List[str]) -> None:
        if not args:
            enabled = await self.command_service.toggle_all()
            await self.transport.reply(message, f"All commands are now {'enabled' if enabled else 'disabled'}.")
            return

        name = args[0].lower().lstrip("!")
        enabled = await self.command_service.toggle_command(name)
        if enabled is None:
            await self.transport.reply(message, f'Command "!{name}" not found.')
            return
        await self.transport.reply(message, f'Command "!{name}" has been {"enabled" if enabled else "disabled"}.')

    async def logs(self, message: InboundMessage, args: List[str]) -> None:
        text = MessageFormatter.format_stats(
            self.stats.to_dict(),
            ai_enabled=await self.ai_service.is_enabled(),
            commands_enabled=await self.command_service.commands_enabled(),
            cache_stats=[cache.stats() for cache in self.caches],
            queue_size=self.queue_size()
        )
        await self.transport.reply(message, text)

    async def send_message(self, message: InboundMessage, args: List[str]) -> None:
        raw = " ".join(args)
        match = _QUOTED_TEXT.search(raw)
        recipient = raw[:match.start()].strip() if match else ""
        if not match or not recipient.lstrip("-").isdigit():
            await self.transport.reply(message, 'Invalid format. Use: !msg <chat_id> "message"')
            return

        try:
            await self.transport.send(int(recipient), match.group(1))
        except Exception as e:
            logger.error(f"Error sending message: {e}", extra={"recipient": recipient})
            self.stats.errors += 1
            await self.transport.reply(message, "Failed to send the message.")
            return
        await self.transport.reply(message, "Message sent successfully!")

    async def profile_picture(self, message: InboundMessage, args: List[str]) -> None:
        target = message.quoted.sender_id if message.quoted else message.sender_id
        photo_url: Optional[str] = await self.transport.get_profile_photo_url(target)
        if not photo_url:
            await self.transport.reply(message, "Profile picture not available")
            return

        try:
            payload = await self.image_download_service.download(photo_url)
        except PipelineError as e:
            logger.error(f"Error getting profile picture: {e}", extra={"user_id": target})
            self.stats.errors += 1
            await self.transport.reply(message, "Failed to get profile picture")
            return

        await self.transport.reply(message, payload)
        self.stats.images_sent += 1
