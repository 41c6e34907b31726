"""Bot routers for handling different types of updates."""

from bot.routers.message_router import router as message_router

__all__ = [
    "message_router",
]
