"""
Unit tests for MessageQueue and MessageProcessor.
"""
import asyncio

import pytest
from unittest.mock import AsyncMock, MagicMock

from openai_client.client import AIReply
from services.errors import RateLimitedError
from services.message_processor import BARE_MENTION_REPLY, MessageProcessor, MessageQueue
from services.models import ChatState, PipelineStats
from utils.rate_limiter import RateLimiter
from utils.reply_waiter import ReplyWaiter


@pytest.fixture
def stats():
    return PipelineStats()


@pytest.fixture
def mock_command_service():
    service = MagicMock()
    service.is_command.side_effect = lambda text: bool(text) and text.startswith("!")
    service.execute = AsyncMock(return_value=True)
    return service


@pytest.fixture
def mock_pipeline():
    pipeline = MagicMock()
    pipeline.handle_message = AsyncMock(return_value=None)
    return pipeline


@pytest.fixture
def mock_ai_service():
    service = MagicMock()
    service.is_enabled = AsyncMock(return_value=True)
    service.respond = AsyncMock(return_value=AIReply(response="hello human"))
    service.is_active.return_value = False
    return service


@pytest.fixture
def queue():
    return MessageQueue(ReplyWaiter())


@pytest.fixture
def processor(queue, transport, mock_command_service, mock_pipeline, mock_ai_service, stats):
    return MessageProcessor(
        queue=queue,
        transport=transport,
        rate_limiter=RateLimiter(window_seconds=60, max_requests=5, stats=stats),
        command_service=mock_command_service,
        delivery_pipeline=mock_pipeline,
        ai_service=mock_ai_service,
        stats=stats,
        poll_interval_seconds=0
    )


@pytest.mark.unit
class TestMessageQueue:
    """Test cases for MessageQueue."""

    def test_fifo(self, queue, make_message):
        """Test that messages come out in arrival order."""
        for text in ("a", "b", "c"):
            queue.enqueue(make_message(text))

        assert [queue.dequeue().message.text for _ in range(3)] == ["a", "b", "c"]
        assert queue.dequeue() is None

    async def test_waiter_consumes_before_queueing(self, queue, make_message):
        """Test that a message awaited by a subscription is not queued."""
        waiter = queue.reply_waiter
        pending = asyncio.ensure_future(waiter.wait_for(lambda m: m.text == "2", timeout_seconds=1))
        await asyncio.sleep(0)

        assert queue.submit(make_message("2")) is False
        assert queue.submit(make_message("other")) is True

        assert (await pending).text == "2"
        assert len(queue) == 1


@pytest.mark.unit
class TestMessageProcessor:
    """Test cases for MessageProcessor."""

    async def test_processes_in_order(self, processor, queue, mock_command_service, make_message):
        """Test that commands are dispatched in queue order."""
        # Arrange
        for index in range(3):
            queue.enqueue(make_message(f"!cmd{index}", chat_id=index))

        # Act
        count = await processor.drain()

        # Assert
        assert count == 3
        texts = [call.args[0].text for call in mock_command_service.execute.call_args_list]
        assert texts == ["!cmd0", "!cmd1", "!cmd2"]

    async def test_rate_limit_notice(self, processor, queue, transport, stats, mock_command_service, make_message):
        """Test that the sixth message in a burst gets one notice and is not dispatched."""
        for _ in range(6):
            queue.enqueue(make_message("!help"))

        await processor.drain()

        assert transport.texts() == [RateLimitedError.user_message]
        assert mock_command_service.execute.await_count == 5
        assert stats.rate_limit_hits == 1
        assert stats.processed == 6

    async def test_error_does_not_stop_drain(self, processor, queue, mock_command_service, stats, make_message):
        """Test that one failing message is counted and the next still runs."""
        mock_command_service.execute.side_effect = [RuntimeError("boom"), True]
        queue.enqueue(make_message("!one", chat_id=1))
        queue.enqueue(make_message("!two", chat_id=2))

        await processor.drain()

        assert mock_command_service.execute.await_count == 2
        assert stats.errors == 1
        assert stats.processed == 2

    async def test_message_without_chat_dropped(self, processor, queue, stats, mock_pipeline, make_message):
        """Test that a message with no chat context is dropped."""
        queue.enqueue(make_message("hi", chat_id=None))

        await processor.drain()

        assert stats.dropped == 1
        mock_pipeline.handle_message.assert_not_awaited()

    async def test_media_delivery_skips_ai(self, processor, mock_pipeline, mock_ai_service, make_message):
        """Test that a media link is handed to the pipeline and not answered by the AI."""
        await processor.process_message(make_message("https://vm.tiktok.com/x/", mentions_bot=True))
        await processor.background.wait()

        mock_pipeline.handle_message.assert_awaited_once()
        mock_ai_service.respond.assert_not_awaited()

    async def test_slow_media_does_not_block_queue(
        self, processor, queue, mock_pipeline, mock_command_service, make_message
    ):
        """Test that a command queued behind a pending media link runs first."""
        # Arrange
        release = asyncio.Event()

        async def pending_delivery(message, chat):
            await release.wait()

        mock_pipeline.handle_message.side_effect = pending_delivery
        queue.enqueue(make_message("look https://vm.tiktok.com/ZMabc123/", chat_id=1))
        queue.enqueue(make_message("!help", chat_id=2))

        # Act
        await processor.drain()

        # Assert
        mock_command_service.execute.assert_awaited_once()
        assert len(processor.background) == 1

        release.set()
        await processor.background.wait()
        mock_pipeline.handle_message.assert_awaited_once()
        assert len(processor.background) == 0

    async def test_plain_text_never_reaches_pipeline(self, processor, mock_pipeline, make_message):
        """Test that messages without a media link skip the pipeline."""
        await processor.process_message(make_message("just chatting"))
        await processor.background.wait()

        mock_pipeline.handle_message.assert_not_called()

    async def test_forwards_to_webhooks_in_background(self, processor, make_message):
        """Test that non-command messages are forwarded without blocking the consumer."""
        processor.webhook_service = MagicMock()
        processor.webhook_service.forward = AsyncMock()

        await processor.process_message(make_message("hello there"))
        await processor.process_message(make_message("!help"))
        await processor.background.wait()

        processor.webhook_service.forward.assert_awaited_once()

    async def test_mention_starts_conversation(self, processor, transport, mock_ai_service, make_message):
        """Test that mentioning the bot gets an AI reply under a typing indicator."""
        await processor.process_message(make_message("@bot what's up", mentions_bot=True))

        mock_ai_service.start_conversation.assert_called_once_with(1)
        assert transport.texts() == ["hello human"]
        assert transport.states == [(100, ChatState.TYPING), (100, ChatState.CLEAR)]

    async def test_bare_mention(self, processor, transport, mock_ai_service, make_message):
        """Test that a mention with no text gets the short reply."""
        await processor.process_message(make_message("@bot", mentions_bot=True))

        assert transport.texts() == [BARE_MENTION_REPLY]
        mock_ai_service.respond.assert_not_awaited()

    async def test_inactive_sender_ignored(self, processor, transport, mock_ai_service, make_message):
        """Test that chatter from users not in a conversation is ignored."""
        await processor.process_message(make_message("random chatter"))

        mock_ai_service.respond.assert_not_awaited()
        assert transport.replies == []

    async def test_reply_to_other_user_ignored(self, processor, mock_ai_service, make_message):
        """Test that an active sender replying to someone else is not answered."""
        mock_ai_service.is_active.return_value = True

        await processor.process_message(make_message("lol", quoted=make_message("joke", sender_id=9)))

        mock_ai_service.respond.assert_not_awaited()

    async def test_ai_command_is_executed(self, processor, mock_ai_service, mock_command_service, make_message):
        """Test that a command suggested by the AI is run."""
        mock_ai_service.is_active.return_value = True
        mock_ai_service.respond.return_value = AIReply(response="on it", command="!img cats")
        message = make_message("show me cats")

        await processor.process_message(message)

        mock_command_service.execute.assert_awaited_once()
        assert mock_command_service.execute.call_args.kwargs["command_text"] == "!img cats"

    async def test_ai_disabled(self, processor, mock_ai_service, make_message):
        """Test that nothing is generated while AI is switched off."""
        mock_ai_service.is_enabled.return_value = False

        await processor.process_message(make_message("@bot hi", mentions_bot=True))

        mock_ai_service.respond.assert_not_awaited()

    async def test_start_and_stop(self, processor, queue, mock_command_service, make_message):
        """Test that the background loop drains the queue until stopped."""
        processor.start()
        queue.enqueue(make_message("!help"))
        await asyncio.sleep(0.01)

        await processor.stop()

        mock_command_service.execute.assert_awaited_once()
