"""
AI conversation state: on/off switch, open conversations and per-user history.
"""
import logging
from collections import deque
from typing import Deque, Dict, List, Optional, Set

from database.repository import ConfigRepository
from openai_client.client import AIReply, OpenAIClient
from services.models import InboundMessage, PipelineStats


logger = logging.getLogger(__name__)


class AIService:
    """Service for AI conversations with chat members."""

    CONFIG_AI_ENABLED = "ai_enabled"

    def __init__(
        self,
        openai_client: OpenAIClient,
        config_repository: ConfigRepository,
        history_limit: int = 20,
        stats: Optional[PipelineStats] = None
    ):
        """
        Initialize AI service.

        Args:
            openai_client: AI backend
            config_repository: Storage of the ai_enabled flag
            history_limit: Turns retained per user
            stats: Shared counters
        """
        self.openai_client = openai_client
        self.config_repository = config_repository
        self.history_limit = history_limit
        self.stats = stats
        self._histories: Dict[int, Deque[Dict[str, str]]] = {}
        self._active: Set[int] = set()

    async def is_enabled(self) -> bool:
        return await self.config_repository.get_bool(self.CONFIG_AI_ENABLED, default=True)

    async def toggle(self) -> bool:
        """
        Flip the AI switch and forget every conversation.

        Returns:
            New state
        """
        enabled = not await self.is_enabled()
        await self.config_repository.set_bool(self.CONFIG_AI_ENABLED, enabled)
        self.clear_all()
        logger.info(f"AI functionality {'enabled' if enabled else 'disabled'}")
        return enabled

    def is_active(self, user_id: int) -> bool:
        return user_id in self._active

    def start_conversation(self, user_id: int) -> None:
        self._active.add(user_id)
        logger.debug(f"Conversation started with user {user_id}")

    def end_conversation(self, user_id: int) -> None:
        self._active.discard(user_id)
        self._histories.pop(user_id, None)
        logger.debug(f"Conversation ended with user {user_id}")

    def clear_all(self) -> None:
        self._active.clear()
        self._histories.clear()

    def get_history(self, user_id: int) -> List[Dict[str, str]]:
        return list(self._histories.get(user_id, ()))

    def _remember(self, user_id: int, role: str, content: str) -> None:
        history = self._histories.setdefault(user_id, deque(maxlen=self.history_limit))
        history.append({"role": role, "content": content})

    async def respond(self, message: InboundMessage) -> AIReply:
        """
        Generate the next reply in the sender's conversation.

        A terminating reply closes the conversation and clears its history.

        Args:
            message: Message to answer

        Returns:
            Structured AI reply
        """
        user_id = message.sender_id
        quoted_text = message.quoted.text if message.quoted and not message.quoted.from_bot_self else None

        reply = await self.openai_client.generate_reply(
            message.text,
            history=self.get_history(user_id),
            quoted_text=quoted_text
        )

        self._remember(user_id, "user", message.text)
        if reply.response:
            self._remember(user_id, "assistant", reply.response)
        if self.stats is not None:
            self.stats.ai_responses += 1

        if reply.terminate:
            self.end_conversation(user_id)

        logger.info(
            "AI reply generated",
            extra={
                "user_id": user_id,
                "has_command": reply.command is not None,
                "terminate": reply.terminate
            }
        )
        return reply
