"""
Extraction service: platform detection and link resolution.
"""
import asyncio
import logging
import re
from typing import Dict, Optional, Pattern

from services.errors import (
    ExtractionError,
    ExtractionTimeoutError,
    PipelineError,
    UnsupportedMediaError,
    truncate_url,
)
from services.extractors import MediaResolver
from services.models import ExtractionResult


logger = logging.getLogger(__name__)


# Characters allowed after the recognised part of a link. Brackets and quotes
# end it so links wrapped in punctuation still match.
_TAIL = r"[^\s<>()\[\]{}\"']*"

# Checked in order; the first matching platform wins.
MEDIA_PATTERNS: Dict[str, Pattern] = {
    "instagram": re.compile(
        r"\bhttps?://(?:www\.)?(?:instagram\.com|instagr\.am)/(?:p|reels?|tv|stories)/[A-Za-z0-9_-]+" + _TAIL,
        re.IGNORECASE,
    ),
    "tiktok": re.compile(
        r"\bhttps?://(?:(?:www|vm|vt|m)\.)?tiktok\.com/(?:@[\w.-]+/(?:video|photo)/\d+|[vt]/[\w.-]+|[\w.-]+)/?"
        + _TAIL,
        re.IGNORECASE,
    ),
    "facebook": re.compile(
        r"\bhttps?://(?:"
        r"(?:(?:www|m|web)\.)?facebook\.com/"
        r"(?:watch/?\?v=\d+|[\w.-]+/videos/\d+|reel/\d+|share/[rv]/[\w-]+/?|[\w.-]+/(?:posts|photos)/[\w.-]+)"
        r"|fb\.watch/[\w-]+/?"
        r")" + _TAIL,
        re.IGNORECASE,
    ),
    "soundcloud": re.compile(
        r"\bhttps?://(?:(?:www|m|on)\.)?soundcloud\.com/[\w-]+(?:/[\w-]+)?" + _TAIL,
        re.IGNORECASE,
    ),
}


EXCLUDED_PATTERNS = (
    re.compile(r"https?://(?:www\.)?tiktok\.com/tiktoklite", re.IGNORECASE),
)

# Hosts that already serve the media file itself.
DIRECT_MEDIA_PATTERN = re.compile(
    r"^https?://[^/\s]*(?:akamaized\.net|tiktokcdn(?:-[a-z]+)?\.com|cdninstagram\.com|fbcdn\.net)/",
    re.IGNORECASE,
)


def detect_platform(url: Optional[str]) -> Optional[str]:
    """
    Match a URL against the platform patterns.

    Returns:
        Platform name, or None when no pattern matches
    """
    if not url:
        return None
    for platform, pattern in MEDIA_PATTERNS.items():
        if pattern.match(url):
            return platform
    if "akamaized.net" in url and "video/tos" in url:
        return "tiktok"
    return None


def is_direct_media_url(url: str) -> bool:
    return bool(DIRECT_MEDIA_PATTERN.match(url))


def find_media_url(text: Optional[str]) -> Optional[str]:
    """
    Find the first supported media link in free text.

    The whole text is searched, so links glued to punctuation are found.
    Trailing sentence punctuation is not part of the link.

    Returns:
        The matched link, or None
    """
    if not text:
        return None
    found = []
    for order, pattern in enumerate(MEDIA_PATTERNS.values()):
        for match in pattern.finditer(text):
            link = match.group(0).rstrip(".,;:!?")
            if any(excluded.match(link) for excluded in EXCLUDED_PATTERNS):
                continue
            found.append((match.start(), order, link))
            break
    if not found:
        return None
    return min(found)[2]


class ExtractionService:
    """Resolves shared links through per-platform resolvers under a global timeout."""

    def __init__(self, resolvers: Dict[str, MediaResolver], timeout_seconds: float = 60.0):
        """
        Initialize extraction service.

        Args:
            resolvers: Resolver per platform name
            timeout_seconds: Ceiling for a single resolver call
        """
        self.resolvers = resolvers
        self.timeout_seconds = timeout_seconds

    async def resolve(self, url: str, platform: Optional[str] = None) -> ExtractionResult:
        """
        Resolve a shared link into direct media.

        Direct CDN links are returned as already resolved. Resolver errors and
        timeouts are raised as ExtractionError tagged with platform and URL;
        nothing is retried here.

        Args:
            url: Shared link
            platform: Platform hint; detected from the URL when omitted

        Returns:
            Resolved URLs or buffered media

        Raises:
            UnsupportedMediaError: No platform or no resolver for it
            ExtractionTimeoutError: Resolver exceeded the global timeout
            ExtractionError: Resolver failed
            PipelineError: Raised by the resolver itself, e.g. oversize audio
        """
        if is_direct_media_url(url):
            logger.debug(f"Direct media URL, skipping extraction: {truncate_url(url)}")
            return ExtractionResult(urls=[url])

        platform = platform or detect_platform(url)
        resolver = self.resolvers.get(platform) if platform else None
        if resolver is None:
            raise UnsupportedMediaError(f"No extractor available for media type: {platform}")

        try:
            result = await asyncio.wait_for(resolver.resolve(url), timeout=self.timeout_seconds)
        except asyncio.TimeoutError as e:
            logger.error(
                f"Media extraction timed out for {platform}",
                extra={"url": truncate_url(url), "timeout": self.timeout_seconds}
            )
            raise ExtractionTimeoutError(platform, url, self.timeout_seconds) from e
        except PipelineError:
            raise
        except Exception as e:
            logger.error(
                f"Media extraction failed for {platform}",
                extra={"url": truncate_url(url), "error": str(e)}
            )
            raise ExtractionError(platform, url, str(e) or type(e).__name__) from e

        if not result.is_buffer and not result.urls:
            raise ExtractionError(platform, url, "Resolver returned no media")
        return result
