"""
Platform resolvers that turn a shared link into direct media.

Each resolver is an independent remote call. Timeouts across resolvers are
enforced by ExtractionService; the resolvers only bound their own HTTP calls.
"""
import asyncio
import logging
from typing import Dict, List, Optional, Protocol

import aiohttp
from cryptography.hazmat.primitives import padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

from services.download_service import USER_AGENT
from services.errors import OversizeMediaError, truncate_url
from services.models import ExtractionResult


logger = logging.getLogger(__name__)


class MediaResolver(Protocol):
    """Resolver contract: shared link in, direct URLs or bytes out."""

    platform: str

    async def resolve(self, url: str) -> ExtractionResult:
        ...


class InstagramResolver:
    """Resolves reels and posts through the videodropper lookup service."""

    platform = "instagram"
    API_URL = "https://api.videodropper.app/allinone"
    URL_KEY = b"qwertyuioplkjhgf"

    def __init__(self, session: aiohttp.ClientSession, timeout_seconds: float = 30.0):
        self.session = session
        self.timeout_seconds = timeout_seconds

    @classmethod
    def encrypt_url(cls, url: str) -> str:
        """AES-128-ECB with PKCS7 padding, hex encoded, as the lookup service expects."""
        padder = padding.PKCS7(128).padder()
        padded = padder.update(url.encode("utf-8")) + padder.finalize()
        encryptor = Cipher(algorithms.AES(cls.URL_KEY), modes.ECB()).encryptor()
        return (encryptor.update(padded) + encryptor.finalize()).hex()

    async def resolve(self, url: str) -> ExtractionResult:
        headers = {
            "accept": "*/*",
            "url": self.encrypt_url(url),
            "Referer": "https://reelsave.app/",
            "User-Agent": USER_AGENT,
        }
        timeout = aiohttp.ClientTimeout(total=self.timeout_seconds)
        async with self.session.get(self.API_URL, headers=headers, timeout=timeout) as response:
            if response.status != 200:
                raise ValueError(f"Failed to fetch Instagram video details (HTTP {response.status})")
            data = await response.json(content_type=None)

        videos = (data or {}).get("video") or []
        video_url = videos[0].get("video") if videos else None
        if not video_url:
            raise ValueError("No video URL found in response")
        return ExtractionResult(urls=[video_url])


class TikTokResolver:
    """Resolves TikTok videos and photo galleries through the tikwm API."""

    platform = "tiktok"
    API_URL = "https://www.tikwm.com/api/"

    def __init__(
        self,
        session: aiohttp.ClientSession,
        timeout_seconds: float = 30.0,
        min_interval_seconds: float = 2.0
    ):
        self.session = session
        self.timeout_seconds = timeout_seconds
        self.min_interval_seconds = min_interval_seconds
        self._lock = asyncio.Lock()
        self._last_request = 0.0

    async def _respect_interval(self) -> None:
        loop = asyncio.get_running_loop()
        async with self._lock:
            wait = self._last_request + self.min_interval_seconds - loop.time()
            if wait > 0:
                await asyncio.sleep(wait)
            self._last_request = loop.time()

    async def resolve(self, url: str) -> ExtractionResult:
        await self._respect_interval()
        logger.debug(f"Fetching TikTok media for URL: {truncate_url(url)}")

        headers = {"User-Agent": USER_AGENT, "Accept": "application/json"}
        timeout = aiohttp.ClientTimeout(total=self.timeout_seconds)
        async with self.session.get(
            self.API_URL, params={"url": url}, headers=headers, timeout=timeout
        ) as response:
            data = await response.json(content_type=None)

        if not data or data.get("code") != 0:
            raise ValueError(f"Failed to fetch TikTok media details. API Response: {data}")

        details = data.get("data")
        if not details:
            raise ValueError("Invalid API response structure")

        images = details.get("images")
        if isinstance(images, list) and images:
            return ExtractionResult(urls=list(images))
        if details.get("play"):
            return ExtractionResult(urls=[details["play"]])
        raise ValueError("No media found in TikTok response")


class FacebookResolver:
    """Resolves Facebook videos and reels, picking the highest quality format."""

    platform = "facebook"
    API_URL = "https://submagic-free-tools.fly.dev/api/facebook-download"

    def __init__(self, session: aiohttp.ClientSession, timeout_seconds: float = 30.0):
        self.session = session
        self.timeout_seconds = timeout_seconds

    @staticmethod
    def _quality(video_format: dict) -> int:
        digits = "".join(ch for ch in str(video_format.get("quality", "")) if ch.isdigit())
        return int(digits) if digits else 0

    async def resolve(self, url: str) -> ExtractionResult:
        headers = {
            "Accept": "*/*",
            "Content-Type": "application/json",
            "Referer": "https://submagic-free-tools.fly.dev/facebook-downloader",
            "User-Agent": USER_AGENT,
        }
        timeout = aiohttp.ClientTimeout(total=self.timeout_seconds)
        async with self.session.post(
            self.API_URL, json={"url": url}, headers=headers, timeout=timeout, max_redirects=5
        ) as response:
            data = await response.json(content_type=None)

        if not data:
            raise ValueError("Empty response received from server")

        formats = data.get("videoFormats")
        if not isinstance(formats, list):
            raise ValueError("Invalid response format: videoFormats not found or invalid")
        if not formats:
            raise ValueError("No video formats available")

        best = max(formats, key=self._quality)
        if not best.get("url"):
            raise ValueError("No video URL found in highest quality format")
        return ExtractionResult(urls=[best["url"]])


class SoundCloudResolver:
    """Streams the best audio track through a yt-dlp subprocess."""

    platform = "soundcloud"

    def __init__(
        self,
        executable: str = "yt-dlp",
        max_file_size: Optional[int] = None,
        chunk_size: int = 64 * 1024
    ):
        """
        Initialize SoundCloud resolver.

        Args:
            executable: yt-dlp binary
            max_file_size: Byte ceiling for the buffered track; None disables it
            chunk_size: Bytes read from the pipe at a time
        """
        self.executable = executable
        self.max_file_size = max_file_size
        self.chunk_size = chunk_size

    async def resolve(self, url: str) -> ExtractionResult:
        cmd = [
            self.executable,
            "-f", "bestaudio[ext=mp3]/bestaudio",
            "-o", "-",
            "--no-playlist",
            "--quiet",
            url,
        ]
        try:
            proc = await asyncio.create_subprocess_exec(
                *cmd,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise RuntimeError(f"Failed to start yt-dlp process: {e}") from e

        try:
            stdout, stderr = await asyncio.gather(self._read_audio(proc), proc.stderr.read())
            await proc.wait()
        except (asyncio.CancelledError, OversizeMediaError):
            if proc.returncode is None:
                proc.kill()
                await proc.wait()
            raise

        if proc.returncode != 0:
            error_output = stderr.decode(errors="replace").strip() if stderr else "unknown error"
            raise RuntimeError(f"yt-dlp process exited with code {proc.returncode}: {error_output}")
        if not stdout:
            raise ValueError("No audio data returned for SoundCloud track")

        return ExtractionResult(buffer=stdout, mime_type="audio/mpeg")

    async def _read_audio(self, proc) -> bytes:
        body = bytearray()
        while True:
            chunk = await proc.stdout.read(self.chunk_size)
            if not chunk:
                return bytes(body)
            body.extend(chunk)
            if self.max_file_size is not None and len(body) > self.max_file_size:
                logger.warning(
                    "SoundCloud track exceeds size ceiling, stopping yt-dlp",
                    extra={"received": len(body), "max_file_size": self.max_file_size}
                )
                raise OversizeMediaError(len(body), self.max_file_size)


def build_default_resolvers(
    session: aiohttp.ClientSession,
    max_file_size: Optional[int] = None
) -> Dict[str, MediaResolver]:
    """Resolver per platform, keyed by platform name."""
    resolvers: List[MediaResolver] = [
        InstagramResolver(session),
        TikTokResolver(session),
        FacebookResolver(session),
        SoundCloudResolver(max_file_size=max_file_size),
    ]
    return {resolver.platform: resolver for resolver in resolvers}
