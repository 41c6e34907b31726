"""
Download service for fetching resolved media URLs.
"""
import asyncio
import logging
from typing import Dict, Optional

import aiohttp

from services.errors import (
    DownloadFailedError,
    InvalidMediaTypeError,
    OversizeMediaError,
    TransientDownloadError,
    redact_secrets,
    truncate_url,
)
from services.models import DEFAULT_MIME_TYPE, MediaPayload
from utils.media_validator import ValidationStatus, classify_content_type, normalize_content_type


logger = logging.getLogger(__name__)


USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/91.0.4472.124 Safari/537.36"
)

CHUNK_SIZE = 64 * 1024


def build_headers(url: str) -> Dict[str, str]:
    """Request headers for a media URL, with platform Referer where the CDN wants one."""
    headers = {
        "User-Agent": USER_AGENT,
        "Accept": "*/*",
        "Connection": "keep-alive",
    }
    if "tiktok" in url or "akamaized.net" in url:
        headers["Referer"] = "https://www.tiktok.com/"
        headers["Origin"] = "https://www.tiktok.com"
    elif "instagram" in url:
        headers["Referer"] = "https://www.instagram.com/"
        headers["Origin"] = "https://www.instagram.com"
    return headers


class DownloadService:
    """Fetches media bytes with a size ceiling and linear-backoff retries."""

    def __init__(
        self,
        session: aiohttp.ClientSession,
        max_file_size: int,
        max_retries: int = 3,
        retry_delay_seconds: float = 1.0,
        timeout_seconds: float = 60.0,
        expected_prefix: Optional[str] = None
    ):
        """
        Initialize download service.

        Args:
            session: Shared HTTP session
            max_file_size: Byte ceiling per download
            max_retries: Total attempts for transient failures
            retry_delay_seconds: Backoff unit; attempt N waits N * unit
            timeout_seconds: Per-attempt timeout
            expected_prefix: Required Content-Type prefix, e.g. ``image/``
        """
        self.session = session
        self.max_file_size = max_file_size
        self.max_retries = max_retries
        self.retry_delay_seconds = retry_delay_seconds
        self.timeout_seconds = timeout_seconds
        self.expected_prefix = expected_prefix

    async def download(self, url: str, tx_id: Optional[str] = None) -> MediaPayload:
        """
        Download a URL into a base64 payload.

        Oversize and wrong-type responses fail at once. Timeouts, connection
        errors, non-2xx statuses and empty bodies are retried.

        Args:
            url: Direct media URL
            tx_id: Transaction id for log correlation

        Returns:
            Downloaded payload

        Raises:
            OversizeMediaError: Advertised or received size exceeds the ceiling
            InvalidMediaTypeError: Content-Type does not match ``expected_prefix``
            DownloadFailedError: All attempts failed
        """
        if not url:
            raise DownloadFailedError(url, 0, ValueError("Invalid media URL"))

        last_error: Optional[BaseException] = None
        for attempt in range(1, self.max_retries + 1):
            try:
                logger.debug(
                    f"[TX:{tx_id}] Download attempt {attempt}",
                    extra={"url": truncate_url(url)}
                )
                return await self._fetch(url)

            except (OversizeMediaError, InvalidMediaTypeError) as e:
                logger.warning(f"[TX:{tx_id}] Download rejected: {e}", extra={"url": truncate_url(url)})
                raise

            except (TransientDownloadError, aiohttp.ClientError, asyncio.TimeoutError) as e:
                last_error = e
                logger.error(
                    f"[TX:{tx_id}] Download failed",
                    extra={
                        "attempt": attempt,
                        "error": redact_secrets(str(e)) or type(e).__name__,
                        "url": truncate_url(url)
                    }
                )
                if attempt < self.max_retries:
                    await asyncio.sleep(attempt * self.retry_delay_seconds)

        raise DownloadFailedError(url, self.max_retries, last_error)

    async def _fetch(self, url: str) -> MediaPayload:
        timeout = aiohttp.ClientTimeout(total=self.timeout_seconds)
        async with self.session.get(
            url,
            headers=build_headers(url),
            timeout=timeout,
            allow_redirects=True,
            max_redirects=10
        ) as response:
            if not 200 <= response.status < 300:
                raise TransientDownloadError(f"HTTP {response.status}")

            advertised = response.content_length
            if advertised is not None and advertised > self.max_file_size:
                raise OversizeMediaError(advertised, self.max_file_size)

            content_type = response.headers.get("Content-Type")
            check = classify_content_type(content_type, self.expected_prefix)
            if check.status is ValidationStatus.INVALID_TYPE:
                raise InvalidMediaTypeError(check.content_type)

            body = bytearray()
            async for chunk in response.content.iter_chunked(CHUNK_SIZE):
                body.extend(chunk)
                if len(body) > self.max_file_size:
                    raise OversizeMediaError(len(body), self.max_file_size)

        if not body:
            raise TransientDownloadError("Empty response")

        mime_type = normalize_content_type(content_type) or DEFAULT_MIME_TYPE
        return MediaPayload.from_bytes(bytes(body), mime_type)
