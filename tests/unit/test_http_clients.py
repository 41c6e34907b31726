"""
Unit tests for the TTS, music and webhook HTTP clients.
"""
import json
from datetime import datetime

import aiohttp
import pytest

from services.music_service import MusicClient, Track
from services.tts_service import TTSClient, TTSError, strip_markdown
from services.webhook_service import WebhookService


TTS_URL = "https://tts.example/speak"
MUSIC_URL = "https://music.example"


@pytest.mark.unit
class TestTTSClient:
    """Test cases for TTSClient."""

    def test_strip_markdown(self):
        """Test that markup is not read aloud."""
        text = "# Title\n**bold** and _it_ with `code` and [link](https://x)\n- item"

        assert strip_markdown(text) == "Title\nbold and it with code and link\nitem"

    async def test_audio_body(self, session, make_response):
        """Test a response carrying the audio itself."""
        session.add("POST", TTS_URL, make_response(body=b"ogg", headers={"Content-Type": "audio/ogg"}))
        client = TTSClient(session, TTS_URL, voice="ava", retry_delay_seconds=0)

        payload = await client.synthesize("**hello**")

        assert payload.raw == b"ogg"
        assert payload.mime_type == "audio/ogg"
        assert session.calls[0][2]["json"] == {"text": "hello", "voice": "ava"}

    async def test_audio_url(self, session, make_response):
        """Test a JSON response pointing at rendered audio."""
        session.add("POST", TTS_URL, make_response(
            headers={"Content-Type": "application/json"},
            json_data={"url": "https://tts.example/out.mp3"}
        ))
        session.add("GET", "https://tts.example/out.mp3", make_response(body=b"mp3"))
        client = TTSClient(session, TTS_URL, voice="ava", retry_delay_seconds=0)

        payload = await client.synthesize("hello")

        assert payload.raw == b"mp3"
        assert payload.mime_type == "audio/mpeg"

    async def test_retries_then_fails(self, session):
        """Test that exhausted retries raise TTSError."""
        session.add("POST", TTS_URL, aiohttp.ClientConnectionError("down"))
        client = TTSClient(session, TTS_URL, voice="ava", max_retries=2, retry_delay_seconds=0)

        with pytest.raises(TTSError):
            await client.synthesize("hello")

        assert len(session.calls) == 2

    async def test_not_configured(self, session):
        """Test that a missing endpoint fails without a request."""
        client = TTSClient(session, None, voice="ava")

        assert client.enabled is False
        with pytest.raises(TTSError):
            await client.synthesize("hello")
        assert session.calls == []


@pytest.mark.unit
class TestMusicClient:
    """Test cases for MusicClient."""

    async def test_search(self, session, make_response):
        """Test track listing, skipping entries without URL."""
        session.add("GET", f"{MUSIC_URL}/search", make_response(json_data={"results": [
            {"title": "Song", "artist": "Band", "album": "LP", "url": "https://m/1"},
            {"title": "Broken"},
        ]}))

        tracks = await MusicClient(session, MUSIC_URL).search("song")

        assert tracks == [Track(title="Song", artist="Band", album="LP", url="https://m/1")]

    async def test_get_audio_url(self, session, make_response):
        """Test download URL lookup."""
        session.add("GET", f"{MUSIC_URL}/getSong", make_response(
            json_data={"urls": {"downloadUrl": "https://m/1.mp3"}}
        ))
        track = Track(title="Song", artist="Band", album="LP", url="https://m/1")

        assert await MusicClient(session, MUSIC_URL).get_audio_url(track) == "https://m/1.mp3"

    async def test_get_audio_url_missing(self, session, make_response):
        """Test that a response without URLs is an error."""
        session.add("GET", f"{MUSIC_URL}/getSong", make_response(json_data={}))
        track = Track(title="Song", artist="Band", album="LP", url="https://m/1")

        with pytest.raises(ValueError):
            await MusicClient(session, MUSIC_URL).get_audio_url(track)


@pytest.mark.unit
class TestWebhookService:
    """Test cases for WebhookService."""

    def test_build_payload(self, make_message):
        """Test webhook body fields."""
        message = make_message("hi", message_id=7, timestamp=datetime(2024, 1, 1, 12, 0, 0))

        payload = WebhookService.build_payload(message)

        assert payload["messageId"] == 7
        assert payload["body"] == "hi"
        assert payload["type"] == "chat"
        assert payload["hasMedia"] is False
        assert isinstance(payload["timestamp"], int)
        json.dumps(payload)

    async def test_forward_counts_successes(self, session, make_response, make_message):
        """Test that one failing webhook does not affect the others."""
        session.add("POST", "https://a/hook", make_response(status=200))
        session.add("POST", "https://b/hook", make_response(status=500))
        service = WebhookService(session, ["https://a/hook", "https://b/hook", "https://c/hook"])

        assert await service.forward(make_message()) == 1
        assert len(session.calls) == 3

    async def test_no_urls(self, session, make_message):
        """Test that nothing is sent without webhooks."""
        assert await WebhookService(session, []).forward(make_message()) == 0
        assert session.calls == []
