"""
Unit tests for AIService.
"""
import pytest
from unittest.mock import AsyncMock

from openai_client.client import AIReply
from services.ai_service import AIService
from services.models import PipelineStats


@pytest.fixture
def mock_openai_client():
    client = AsyncMock()
    client.generate_reply.return_value = AIReply(response="sure thing")
    return client


@pytest.fixture
def mock_config_repository():
    repository = AsyncMock()
    repository.get_bool.return_value = True
    return repository


@pytest.fixture
def ai_service(mock_openai_client, mock_config_repository):
    return AIService(mock_openai_client, mock_config_repository, history_limit=4, stats=PipelineStats())


@pytest.mark.unit
class TestAIService:
    """Test cases for AIService."""

    async def test_respond_records_history(self, ai_service, make_message):
        """Test that both turns are remembered."""
        ai_service.start_conversation(1)

        await ai_service.respond(make_message("hi bot"))

        assert ai_service.get_history(1) == [
            {"role": "user", "content": "hi bot"},
            {"role": "assistant", "content": "sure thing"},
        ]
        assert ai_service.stats.ai_responses == 1

    async def test_history_is_bounded(self, ai_service, make_message):
        """Test that only history_limit turns are kept."""
        for index in range(5):
            await ai_service.respond(make_message(f"message {index}"))

        history = ai_service.get_history(1)
        assert len(history) == 4
        assert history[-2]["content"] == "message 4"

    async def test_quoted_bot_message_not_passed(self, ai_service, mock_openai_client, make_message):
        """Test that the bot's own quoted message is not sent as context."""
        own = make_message("earlier bot reply", from_bot_self=True)

        await ai_service.respond(make_message("and?", quoted=own))

        assert mock_openai_client.generate_reply.call_args.kwargs["quoted_text"] is None

    async def test_quoted_user_message_passed(self, ai_service, mock_openai_client, make_message):
        """Test that another user's quoted message is sent as context."""
        other = make_message("look at this", sender_id=2)

        await ai_service.respond(make_message("thoughts?", quoted=other))

        assert mock_openai_client.generate_reply.call_args.kwargs["quoted_text"] == "look at this"

    async def test_terminate_ends_conversation(self, ai_service, mock_openai_client, make_message):
        """Test that a terminating reply closes the conversation."""
        mock_openai_client.generate_reply.return_value = AIReply(response="bye", terminate=True)
        ai_service.start_conversation(1)

        await ai_service.respond(make_message("bye"))

        assert ai_service.is_active(1) is False
        assert ai_service.get_history(1) == []

    async def test_toggle_clears_conversations(self, ai_service, mock_config_repository):
        """Test that toggling forgets every conversation."""
        ai_service.start_conversation(1)

        assert await ai_service.toggle() is False
        mock_config_repository.set_bool.assert_awaited_once_with("ai_enabled", False)
        assert ai_service.is_active(1) is False
