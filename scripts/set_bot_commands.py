"""
Script to publish the bot's command list in Telegram.

Commands use the ``!`` prefix in chat; Telegram's menu only knows ``/``
commands, so the menu entries are informational and point at the ``!`` form.
"""
import asyncio
import sys
from pathlib import Path

# Add parent directory to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from aiogram import Bot
from aiogram.types import (
    BotCommand,
    BotCommandScopeAllGroupChats,
    BotCommandScopeAllPrivateChats,
)
from config.settings import Config


PUBLIC_COMMANDS = [
    BotCommand(command="help", description="!help - show available commands"),
    BotCommand(command="img", description="!img [n] <query> - search images"),
    BotCommand(command="speak", description="!speak - read the quoted message aloud"),
    BotCommand(command="pfp", description="!pfp - profile picture of the quoted user"),
    BotCommand(command="song", description="!song <artist> - <title> - find a song"),
]


async def set_commands():
    """Set bot commands for group and private chats."""
    config = Config.from_env()
    bot = Bot(token=config.bot_token)

    try:
        for scope in (BotCommandScopeAllGroupChats(), BotCommandScopeAllPrivateChats()):
            await bot.set_my_commands(commands=PUBLIC_COMMANDS, scope=scope)
            print(f"✅ Commands set for {scope.type}")

        print("\n📋 Registered commands:")
        for cmd in PUBLIC_COMMANDS:
            print(f"  /{cmd.command} - {cmd.description}")

    finally:
        await bot.session.close()


if __name__ == "__main__":
    asyncio.run(set_commands())
