"""
Shared fixtures: in-memory transport, scripted HTTP session and message factory.
"""
import itertools
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple
from unittest.mock import MagicMock

import aiohttp
import pytest

from services.models import Chat, ChatState, Contact, InboundMessage


_AUTO = object()


class FakeResponse:
    """Stands in for aiohttp.ClientResponse inside ``async with session.get(...)``."""

    def __init__(
        self,
        status: int = 200,
        body: bytes = b"",
        headers: Optional[Dict[str, str]] = None,
        json_data: Any = None,
        content_length: Any = _AUTO,
        chunk_size: int = 4
    ):
        self.status = status
        self.headers = headers or {}
        self._body = body
        self._json = json_data
        self.content_length = len(body) if content_length is _AUTO else content_length
        self.chunks_read = 0
        self.content = MagicMock()
        self.content.iter_chunked = lambda size: self._iter_chunks(chunk_size)

    async def _iter_chunks(self, size: int):
        for start in range(0, len(self._body), size):
            self.chunks_read += 1
            yield self._body[start:start + size]

    async def json(self, content_type=None):
        return self._json

    async def read(self) -> bytes:
        return self._body

    def raise_for_status(self) -> None:
        if self.status >= 400:
            raise aiohttp.ClientResponseError(MagicMock(), (), status=self.status)

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc_info):
        return False


class FakeSession:
    """
    Scripted HTTP session.

    Each (method, url) route holds a list of responses or exceptions consumed
    in order; the last one repeats.
    """

    def __init__(self):
        self.routes: Dict[Tuple[str, str], List[Any]] = {}
        self.calls: List[Tuple[str, str, dict]] = []

    def add(self, method: str, url: str, *responses: Any) -> None:
        self.routes[(method.upper(), url)] = list(responses)

    def calls_to(self, method: str, url: Optional[str] = None) -> List[Tuple[str, str, dict]]:
        return [call for call in self.calls if call[0] == method.upper() and (url is None or call[1] == url)]

    def _request(self, method: str, url: str, **kwargs):
        self.calls.append((method, url, kwargs))
        queue = self.routes.get((method, url))
        if not queue:
            raise aiohttp.ClientConnectionError(f"No route for {method} {url}")
        item = queue[0] if len(queue) == 1 else queue.pop(0)
        if isinstance(item, BaseException):
            raise item
        return item

    def get(self, url: str, **kwargs):
        return self._request("GET", url, **kwargs)

    def head(self, url: str, **kwargs):
        return self._request("HEAD", url, **kwargs)

    def post(self, url: str, **kwargs):
        return self._request("POST", url, **kwargs)


@dataclass
class SentReply:
    message: Optional[InboundMessage]
    content: Any
    chat_id: Optional[int] = None
    caption: Optional[str] = None
    as_voice: bool = False


class FakeTransport:
    """In-memory messaging client recording everything the bot sends."""

    def __init__(self):
        self.replies: List[SentReply] = []
        self.sent: List[SentReply] = []
        self.states: List[Tuple[int, ChatState]] = []
        self.messages: Dict[Tuple[int, int], InboundMessage] = {}
        self.profile_photo_url: Optional[str] = None
        self.reply_error: Optional[Exception] = None
        self._ids = itertools.count(10_000)

    async def reply(self, message, content, chat_id=None, caption=None, as_voice=False):
        if self.reply_error is not None:
            raise self.reply_error
        self.replies.append(SentReply(message, content, chat_id, caption, as_voice))
        return next(self._ids)

    async def send(self, chat_id, content):
        self.sent.append(SentReply(None, content, chat_id))
        return next(self._ids)

    async def get_chat(self, message):
        if message.chat_id is None:
            return None
        return Chat(id=message.chat_id, is_group=message.is_group)

    async def get_contact(self, message):
        return Contact(id=message.sender_id, name=message.sender_name)

    async def get_quoted_message(self, message):
        return message.quoted

    async def get_message_by_id(self, chat_id, message_id):
        return self.messages.get((chat_id, message_id))

    async def set_chat_state(self, chat, state):
        self.states.append((chat.id, state))

    async def get_profile_photo_url(self, user_id):
        return self.profile_photo_url

    def texts(self) -> List[str]:
        return [reply.content for reply in self.replies if isinstance(reply.content, str)]


@pytest.fixture
def transport():
    """In-memory messaging client."""
    return FakeTransport()


@pytest.fixture
def session():
    """Scripted HTTP session."""
    return FakeSession()


@pytest.fixture
def make_response():
    """Factory for fake HTTP responses."""
    return FakeResponse


@pytest.fixture
def make_message():
    """Factory for inbound messages with sensible defaults."""
    ids = itertools.count(1)

    def _make(text: str = "hello", chat_id: Optional[int] = 100, sender_id: int = 1, **kwargs) -> InboundMessage:
        kwargs.setdefault("message_id", next(ids))
        kwargs.setdefault("sender_name", f"user{sender_id}")
        kwargs.setdefault("timestamp", datetime(2024, 1, 1, 12, 0, 0))
        return InboundMessage(chat_id=chat_id, sender_id=sender_id, text=text, **kwargs)

    return _make
