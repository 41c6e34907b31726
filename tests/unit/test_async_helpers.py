"""
Unit tests for ReplyWaiter, DebounceManager, BackgroundTasks and chat presence.
"""
import asyncio

import pytest

from services.models import Chat, ChatState
from utils.background_tasks import BackgroundTasks
from utils.chat_state import chat_presence
from utils.debounce_manager import DebounceManager
from utils.reply_waiter import ReplyWaiter


@pytest.mark.unit
class TestReplyWaiter:
    """Test cases for ReplyWaiter."""

    async def test_matching_message_is_consumed(self, make_message):
        """Test that the first matching offer resolves the waiter."""
        waiter = ReplyWaiter()
        task = asyncio.ensure_future(waiter.wait_for(lambda m: m.text.isdigit(), timeout_seconds=1))
        await asyncio.sleep(0)

        assert waiter.offer(make_message("hello")) is False
        assert waiter.offer(make_message("2")) is True

        reply = await task
        assert reply.text == "2"
        assert waiter.pending == 0

    async def test_timeout_returns_none(self):
        """Test that no reply within the timeout yields None and unsubscribes."""
        waiter = ReplyWaiter()

        assert await waiter.wait_for(lambda m: True, timeout_seconds=0.01) is None
        assert waiter.pending == 0

    async def test_one_message_one_consumer(self, make_message):
        """Test that a message is consumed by at most one subscription."""
        waiter = ReplyWaiter()
        first = asyncio.ensure_future(waiter.wait_for(lambda m: True, timeout_seconds=0.05, label="a"))
        second = asyncio.ensure_future(waiter.wait_for(lambda m: True, timeout_seconds=0.05, label="b"))
        await asyncio.sleep(0)

        waiter.offer(make_message("1"))

        results = await asyncio.gather(first, second)
        assert sum(result is not None for result in results) == 1

    async def test_broken_predicate_is_skipped(self, make_message):
        """Test that a raising predicate does not consume the message."""
        waiter = ReplyWaiter()
        task = asyncio.ensure_future(waiter.wait_for(lambda m: 1 / 0, timeout_seconds=0.01))
        await asyncio.sleep(0)

        assert waiter.offer(make_message("x")) is False
        assert await task is None


@pytest.mark.unit
class TestDebounceManager:
    """Test cases for DebounceManager."""

    async def test_returns_once_value_settles(self):
        """Test that polling stops after the value is unchanged for stable_checks polls."""
        values = iter(["a", "ab", "abc", "abc", "abc", "never"])
        calls = 0

        async def fetch():
            nonlocal calls
            calls += 1
            return next(values)

        manager = DebounceManager(interval_seconds=0, stable_checks=2, max_attempts=10)

        assert await manager.wait_until_stable(fetch) == "abc"
        assert calls == 5

    async def test_gives_up_after_max_attempts(self):
        """Test that an ever-changing value returns the last value after max_attempts polls."""
        counter = 0

        async def fetch():
            nonlocal counter
            counter += 1
            return counter

        manager = DebounceManager(interval_seconds=0, max_attempts=4)

        assert await manager.wait_until_stable(fetch) == 4


@pytest.mark.unit
class TestBackgroundTasks:
    """Test cases for BackgroundTasks."""

    async def test_failed_task_is_logged_and_dropped(self, caplog):
        """Test that a failing task is forgotten and its error logged."""
        tasks = BackgroundTasks("test")

        async def boom():
            raise RuntimeError("kaput")

        tasks.spawn(boom(), label="boom")
        await tasks.wait()
        await asyncio.sleep(0)

        assert len(tasks) == 0
        assert "kaput" in caplog.text

    async def test_close_cancels_pending(self):
        """Test that close() cancels unfinished tasks."""
        tasks = BackgroundTasks("test")
        task = tasks.spawn(asyncio.sleep(10), label="sleeper")

        await tasks.close()

        assert task.cancelled()
        assert len(tasks) == 0


@pytest.mark.unit
class TestChatPresence:
    """Test cases for chat_presence."""

    async def test_cleared_on_error(self, transport):
        """Test that the indicator is cleared even when the block raises."""
        chat = Chat(id=5)

        with pytest.raises(ValueError):
            async with chat_presence(transport, chat, ChatState.RECORDING):
                raise ValueError("handler failed")

        assert transport.states == [(5, ChatState.RECORDING), (5, ChatState.CLEAR)]

    async def test_no_state_still_clears(self, transport):
        """Test that passing None only clears."""
        async with chat_presence(transport, Chat(id=5), None):
            pass

        assert transport.states == [(5, ChatState.CLEAR)]
