"""
Single place that decides whether a URL or response carries the expected media.
"""
import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional

import aiohttp

from services.errors import truncate_url


logger = logging.getLogger(__name__)


class ValidationStatus(str, Enum):
    VALID = "valid"
    INVALID_TYPE = "invalid_type"
    UNREACHABLE = "unreachable"


@dataclass(frozen=True)
class ValidationResult:
    """Tagged outcome of a media check."""
    status: ValidationStatus
    content_type: Optional[str] = None
    detail: Optional[str] = None

    @property
    def is_valid(self) -> bool:
        return self.status is ValidationStatus.VALID


def normalize_content_type(content_type: Optional[str]) -> str:
    """Strip parameters such as charset from a Content-Type header."""
    if not content_type:
        return ""
    return content_type.split(";", 1)[0].strip().lower()


def classify_content_type(content_type: Optional[str], expected_prefix: Optional[str]) -> ValidationResult:
    """
    Compare a Content-Type header against an expected prefix.

    Args:
        content_type: Raw header value
        expected_prefix: e.g. ``image/``; None accepts anything

    Returns:
        VALID or INVALID_TYPE result
    """
    normalized = normalize_content_type(content_type)
    if expected_prefix is None or normalized.startswith(expected_prefix):
        return ValidationResult(ValidationStatus.VALID, content_type=normalized or None)
    return ValidationResult(
        ValidationStatus.INVALID_TYPE,
        content_type=normalized or None,
        detail=f"expected {expected_prefix}*, got {normalized or 'nothing'}"
    )


class MediaValidator:
    """Checks reachability and content type of candidate media URLs with HEAD requests."""

    def __init__(
        self,
        session: aiohttp.ClientSession,
        expected_prefix: Optional[str] = "image/",
        max_retries: int = 3,
        retry_delay_seconds: float = 1.0,
        timeout_seconds: float = 5.0
    ):
        """
        Initialize media validator.

        Args:
            session: Shared HTTP session
            expected_prefix: Content-Type prefix a valid URL must serve
            max_retries: Extra attempts after an unreachable result
            retry_delay_seconds: Fixed delay between attempts
            timeout_seconds: Per-request timeout
        """
        self.session = session
        self.expected_prefix = expected_prefix
        self.max_retries = max_retries
        self.retry_delay_seconds = retry_delay_seconds
        self.timeout_seconds = timeout_seconds

    async def __call__(self, url: str) -> ValidationResult:
        return await self.validate(url)

    async def validate(self, url: str) -> ValidationResult:
        """
        Validate a URL, retrying only when it could not be reached.

        A wrong content type is final; unreachable results are retried up to
        ``max_retries`` times with a fixed delay.
        """
        result = ValidationResult(ValidationStatus.UNREACHABLE)
        for attempt in range(self.max_retries + 1):
            result = await self._check_once(url)
            if result.status is not ValidationStatus.UNREACHABLE:
                return result
            if attempt < self.max_retries:
                logger.debug(
                    f"Validation attempt {attempt + 1} failed for {truncate_url(url)}: {result.detail}"
                )
                await asyncio.sleep(self.retry_delay_seconds)

        logger.info(f"Discarding unreachable media URL {truncate_url(url)}: {result.detail}")
        return result

    async def _check_once(self, url: str) -> ValidationResult:
        try:
            timeout = aiohttp.ClientTimeout(total=self.timeout_seconds)
            async with self.session.head(url, timeout=timeout, allow_redirects=True) as response:
                if response.status != 200:
                    return ValidationResult(ValidationStatus.UNREACHABLE, detail=f"HTTP {response.status}")
                return classify_content_type(response.headers.get("Content-Type"), self.expected_prefix)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            return ValidationResult(ValidationStatus.UNREACHABLE, detail=str(e) or type(e).__name__)
