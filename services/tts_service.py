"""
Text-to-speech client.
"""
import asyncio
import logging
import re
from typing import Optional

import aiohttp

from services.errors import PipelineError
from services.models import MediaPayload
from utils.media_validator import normalize_content_type


logger = logging.getLogger(__name__)


DEFAULT_AUDIO_MIME_TYPE = "audio/mpeg"

_MARKDOWN_PATTERNS = (
    (re.compile(r"```.*?```", re.DOTALL), ""),
    (re.compile(r"`([^`]*)`"), r"\1"),
    (re.compile(r"!\[([^\]]*)\]\([^)]*\)"), r"\1"),
    (re.compile(r"\[([^\]]*)\]\([^)]*\)"), r"\1"),
    (re.compile(r"^\s{0,3}#{1,6}\s*", re.MULTILINE), ""),
    (re.compile(r"^\s*>\s?", re.MULTILINE), ""),
    (re.compile(r"^\s*[-*+]\s+", re.MULTILINE), ""),
    (re.compile(r"(\*\*|__|\*|_|~~)(.+?)\1"), r"\2"),
)


class TTSError(PipelineError):
    user_message = "Failed to convert the message to speech."


def strip_markdown(text: str) -> str:
    """Remove markdown markup so it is not read aloud."""
    for pattern, replacement in _MARKDOWN_PATTERNS:
        text = pattern.sub(replacement, text)
    return text.strip()


class TTSClient:
    """
    Client for an HTTP speech synthesis endpoint.

    The endpoint takes ``{"text", "voice"}`` as JSON and answers either with
    audio bytes or with JSON holding a ``url`` of the rendered audio.
    """

    def __init__(
        self,
        session: aiohttp.ClientSession,
        api_url: str,
        voice: str,
        max_retries: int = 3,
        retry_delay_seconds: float = 1.0,
        timeout_seconds: float = 30.0
    ):
        self.session = session
        self.api_url = api_url
        self.voice = voice
        self.max_retries = max_retries
        self.retry_delay_seconds = retry_delay_seconds
        self.timeout_seconds = timeout_seconds

    @property
    def enabled(self) -> bool:
        return bool(self.api_url)

    async def synthesize(self, text: str) -> MediaPayload:
        """
        Convert text to speech.

        Args:
            text: Text to read, markdown allowed

        Returns:
            Audio payload

        Raises:
            TTSError: Not configured, empty text, or all attempts failed
        """
        if not self.enabled:
            raise TTSError("TTS endpoint is not configured")

        clean_text = strip_markdown(text or "")
        if not clean_text:
            raise TTSError("Text is empty after cleaning")

        last_error: Optional[BaseException] = None
        for attempt in range(1, self.max_retries + 1):
            try:
                payload = await self._request(clean_text)
                logger.debug(
                    "TTS generation successful",
                    extra={"text_length": len(clean_text), "attempt": attempt, "voice": self.voice}
                )
                return payload
            except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
                last_error = e
                logger.warning(
                    f"TTS attempt failed: {e}",
                    extra={"attempt": attempt, "remaining_attempts": self.max_retries - attempt}
                )
                if attempt < self.max_retries:
                    await asyncio.sleep(self.retry_delay_seconds)

        logger.error(f"All TTS attempts failed: {last_error}")
        raise TTSError(f"Failed to generate speech after {self.max_retries} attempts: {last_error}")

    async def _request(self, text: str) -> MediaPayload:
        timeout = aiohttp.ClientTimeout(total=self.timeout_seconds)
        async with self.session.post(
            self.api_url, json={"text": text, "voice": self.voice}, timeout=timeout
        ) as response:
            response.raise_for_status()
            content_type = normalize_content_type(response.headers.get("Content-Type"))
            if content_type == "application/json":
                data = await response.json(content_type=None)
                audio_url = (data or {}).get("url")
                if not audio_url:
                    raise ValueError("Invalid response from TTS service")
                return await self._download(audio_url)
            body = await response.read()

        if not body:
            raise ValueError("Empty audio from TTS service")
        return MediaPayload.from_bytes(body, content_type or DEFAULT_AUDIO_MIME_TYPE)

    async def _download(self, url: str) -> MediaPayload:
        timeout = aiohttp.ClientTimeout(total=self.timeout_seconds)
        async with self.session.get(url, timeout=timeout) as response:
            response.raise_for_status()
            body = await response.read()
            content_type = normalize_content_type(response.headers.get("Content-Type"))
        if not body:
            raise ValueError("Empty audio download")
        return MediaPayload.from_bytes(body, content_type or DEFAULT_AUDIO_MIME_TYPE)
