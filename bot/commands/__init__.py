"""Bot command handlers and their registration."""

from bot.commands.general import GeneralCommands
from bot.commands.media import MediaCommands
from services.command_service import CommandRegistry, CommandSpec, ResponseExpectation


def register_commands(registry: CommandRegistry, general: GeneralCommands, media: MediaCommands) -> CommandRegistry:
    """Register every bot command in display order."""
    specs = [
        CommandSpec(
            name="help",
            handler=general.help,
            description="Shows all available commands",
            usage="!help",
        ),
        CommandSpec(
            name="toggleai",
            handler=general.toggle_ai,
            description="Toggles AI functionality on/off",
            usage="!toggleai",
            admin_only=True,
        ),
        CommandSpec(
            name="togglecmd",
            handler=general.toggle_commands,
            description="Toggles specific or all commands on/off",
            usage="!togglecmd [command]",
            admin_only=True,
        ),
        CommandSpec(
            name="logs",
            handler=general.logs,
            description="Displays bot statistics",
            usage="!logs",
            admin_only=True,
        ),
        CommandSpec(
            name="speak",
            handler=media.speak,
            description="Converts quoted message to speech",
            usage="!speak (reply to a message)",
            expectation=ResponseExpectation(needs_quoted=True, audio_response=True),
        ),
        CommandSpec(
            name="img",
            handler=media.image_search,
            description="Searches and sends image(s)",
            usage="!img [number] <query>",
            expectation=ResponseExpectation(needs_args=True),
        ),
        CommandSpec(
            name="pfp",
            handler=general.profile_picture,
            description="Sends the profile picture of the quoted user or yourself",
            usage="!pfp (optionally reply to a message)",
        ),
        CommandSpec(
            name="msg",
            handler=general.send_message,
            description="Sends a private message",
            usage='!msg <chat_id> "message"',
            admin_only=True,
            expectation=ResponseExpectation(min_args=2),
        ),
        CommandSpec(
            name="song",
            handler=media.song,
            description="Searches a song and sends the one you pick",
            usage="!song <artist> - <title>",
            expectation=ResponseExpectation(needs_args=True),
        ),
    ]
    for spec in specs:
        registry.register(spec)
    return registry


__all__ = [
    "GeneralCommands",
    "MediaCommands",
    "register_commands",
]
