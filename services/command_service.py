"""
Command registry and dispatch.
"""
import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Dict, Iterable, List, Optional, Tuple

from database.repository import CommandRepository, ConfigRepository
from services.models import Chat, ChatState, InboundMessage, PipelineStats
from services.ports import MessagingClient
from utils.chat_state import chat_presence


logger = logging.getLogger(__name__)


COMMAND_PREFIX = "!"
# Telegram's command menu sends "/" commands
COMMAND_PREFIXES = (COMMAND_PREFIX, "/")

UNKNOWN_COMMAND_REPLY = "Unknown command. Use !help to see available commands."
DISABLED_COMMAND_REPLY = "This command is currently disabled."
ADMIN_ONLY_REPLY = "This command is only available to admins."
COMMAND_ERROR_REPLY = "Error executing command. Please try again later."

CommandHandler = Callable[[InboundMessage, List[str]], Awaitable[None]]


@dataclass(frozen=True)
class ResponseExpectation:
    """Static rule telling whether a command invocation will produce a reply."""
    needs_args: bool = False
    needs_quoted: bool = False
    min_args: int = 0
    audio_response: bool = False


@dataclass
class CommandSpec:
    """A registered command."""
    name: str
    handler: CommandHandler
    description: str
    usage: str
    admin_only: bool = False
    expectation: ResponseExpectation = field(default_factory=ResponseExpectation)


def parse_command(text: Optional[str]) -> Optional[Tuple[str, List[str]]]:
    """
    Split ``!name arg1 arg2`` (or ``/name ...``) into a lower-cased name and arguments.

    Returns:
        (name, args), or None if the text is not a command
    """
    if not text:
        return None
    text = text.strip()
    if not text.startswith(COMMAND_PREFIXES):
        return None
    parts = text[1:].split()
    if not parts:
        return None
    # "/help@my_bot" as sent from Telegram's command menu in groups
    name = parts[0].split("@", 1)[0].lower()
    if not name:
        return None
    return name, parts[1:]


def should_command_respond(spec: CommandSpec, args: List[str], message: InboundMessage) -> bool:
    """Decide from the static expectation whether a presence indicator is warranted."""
    expectation = spec.expectation
    if expectation.needs_quoted and not message.has_quoted:
        return False
    if expectation.needs_args and not args:
        return False
    return len(args) >= expectation.min_args


class CommandRegistry:
    """Name to command mapping in registration order."""

    def __init__(self, specs: Iterable[CommandSpec] = ()):
        self._commands: Dict[str, CommandSpec] = {}
        for spec in specs:
            self.register(spec)

    def __contains__(self, name: str) -> bool:
        return name in self._commands

    def __iter__(self):
        return iter(self._commands.values())

    def register(self, spec: CommandSpec) -> None:
        if spec.name in self._commands:
            raise ValueError(f"Command '{spec.name}' is already registered")
        self._commands[spec.name] = spec

    def get(self, name: str) -> Optional[CommandSpec]:
        return self._commands.get(name)

    def names(self) -> List[str]:
        return list(self._commands)

    def visible_to(self, is_admin: bool) -> List[CommandSpec]:
        return [spec for spec in self._commands.values() if is_admin or not spec.admin_only]


class CommandService:
    """Runs commands with permission checks, toggles and a scoped presence indicator."""

    CONFIG_COMMANDS_ENABLED = "commands_enabled"

    def __init__(
        self,
        registry: CommandRegistry,
        transport: MessagingClient,
        command_repository: CommandRepository,
        config_repository: ConfigRepository,
        admin_ids: Iterable[int] = (),
        stats: Optional[PipelineStats] = None
    ):
        """
        Initialize command service.

        Args:
            registry: Registered commands
            transport: Messaging client used for replies
            command_repository: Per-command toggles and usage
            config_repository: Storage of the global commands switch
            admin_ids: Users allowed to run admin-only commands
            stats: Shared counters
        """
        self.registry = registry
        self.transport = transport
        self.command_repository = command_repository
        self.config_repository = config_repository
        self.admin_ids = set(admin_ids)
        self.stats = stats

    @staticmethod
    def is_command(text: Optional[str]) -> bool:
        return parse_command(text) is not None

    def is_admin(self, user_id: int) -> bool:
        return user_id in self.admin_ids

    async def commands_enabled(self) -> bool:
        return await self.config_repository.get_bool(self.CONFIG_COMMANDS_ENABLED, default=True)

    async def toggle_all(self) -> bool:
        """
        Flip the global commands switch, re-enabling individually disabled ones.

        Returns:
            New state
        """
        enabled = not await self.commands_enabled()
        await self.config_repository.set_bool(self.CONFIG_COMMANDS_ENABLED, enabled)
        await self.command_repository.enable_all()
        logger.info(f"All commands {'enabled' if enabled else 'disabled'}")
        return enabled

    async def toggle_command(self, name: str) -> Optional[bool]:
        """
        Flip a single command.

        Returns:
            New state, or None if no such command is registered
        """
        name = name.lower().lstrip("".join(COMMAND_PREFIXES))
        if name not in self.registry:
            return None
        enabled = not await self.command_repository.is_enabled(name)
        await self.command_repository.set_enabled(name, enabled)
        return enabled

    async def _is_available(self, spec: CommandSpec) -> bool:
        # Admin commands stay usable so they can turn the rest back on.
        if spec.admin_only:
            return True
        if not await self.commands_enabled():
            return False
        return await self.command_repository.is_enabled(spec.name)

    async def execute(self, message: InboundMessage, chat: Chat, command_text: Optional[str] = None) -> bool:
        """
        Execute the command in ``command_text`` (or the message body).

        Handler failures are absorbed here: logged, counted and answered
        with a generic apology. The presence indicator is cleared on every
        exit path.

        Args:
            message: Message the command came from; replies go to it
            chat: Chat of the message
            command_text: Command to run instead of the message text

        Returns:
            False if the text is not a command, True otherwise
        """
        parsed = parse_command(command_text if command_text is not None else message.text)
        if parsed is None:
            return False
        name, args = parsed

        spec = self.registry.get(name)
        if spec is None:
            await self._safe_reply(message, UNKNOWN_COMMAND_REPLY)
            return True

        if spec.admin_only and not self.is_admin(message.sender_id):
            logger.info(f"Non-admin {message.sender_id} tried admin command '{name}'")
            await self._safe_reply(message, ADMIN_ONLY_REPLY)
            return True

        try:
            available = await self._is_available(spec)
        except Exception as e:
            logger.error(f"Failed to read command state: {e}", extra={"command": name}, exc_info=True)
            available = True
        if not available:
            await self._safe_reply(message, DISABLED_COMMAND_REPLY)
            return True

        state = None
        if should_command_respond(spec, args, message):
            state = ChatState.RECORDING if spec.expectation.audio_response else ChatState.TYPING

        logger.info(
            f"Executing command '{name}'",
            extra={"chat_id": chat.id, "user_id": message.sender_id, "arg_count": len(args)}
        )

        try:
            async with chat_presence(self.transport, chat, state):
                await spec.handler(message, args)
        except Exception as e:
            logger.error(f"Error executing command '{name}': {e}", extra={"chat_id": chat.id}, exc_info=True)
            if self.stats is not None:
                self.stats.errors += 1
            await self._safe_reply(message, COMMAND_ERROR_REPLY)
            return True

        if self.stats is not None:
            self.stats.commands_processed += 1
        try:
            await self.command_repository.record_usage(name)
        except Exception as e:
            logger.warning(f"Command usage not recorded: {e}", extra={"command": name})
        return True

    async def _safe_reply(self, message: InboundMessage, text: str) -> None:
        try:
            await self.transport.reply(message, text)
        except Exception as e:
            logger.error(f"Failed to send command reply: {e}", extra={"chat_id": message.chat_id})
