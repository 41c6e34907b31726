"""
Image search with per-query dedup for the !img command.
"""
import asyncio
import logging
import re
from typing import List, Optional, Tuple

import aiohttp

from services.download_service import DownloadService
from services.errors import PipelineError, truncate_url
from services.models import ImageCandidate, MediaPayload
from utils.dedup_cache import DedupCache, Validator


logger = logging.getLogger(__name__)


DEFAULT_IMAGE_COUNT = 1
MAX_IMAGE_COUNT = 10

_COUNT_PREFIX = re.compile(r"^\[(\d+)\]\s*")


def parse_request(text: str) -> Tuple[int, str]:
    """
    Split ``[n] query`` into a clamped count and the query.

    Args:
        text: Command arguments, e.g. ``[3] cats``

    Returns:
        Tuple of (count in 1..10, query)
    """
    text = text.strip()
    match = _COUNT_PREFIX.match(text)
    if not match:
        return DEFAULT_IMAGE_COUNT, text
    count = min(max(int(match.group(1)), 1), MAX_IMAGE_COUNT)
    return count, text[match.end():].strip()


class ImageSearchClient:
    """Queries a SearXNG-compatible JSON endpoint for images."""

    def __init__(self, session: aiohttp.ClientSession, base_url: str, timeout_seconds: float = 15.0):
        self.session = session
        self.base_url = base_url.rstrip("/")
        self.timeout_seconds = timeout_seconds

    async def search(self, query: str) -> List[ImageCandidate]:
        """
        Search images for a query.

        Returns:
            Candidates in ranking order

        Raises:
            aiohttp.ClientError: If the search backend is unreachable
        """
        params = {"q": query, "categories": "images", "format": "json"}
        timeout = aiohttp.ClientTimeout(total=self.timeout_seconds)
        async with self.session.get(f"{self.base_url}/search", params=params, timeout=timeout) as response:
            response.raise_for_status()
            data = await response.json(content_type=None)

        candidates = []
        for item in (data or {}).get("results", []):
            url = item.get("img_src")
            if not url:
                continue
            width, height = _parse_resolution(item.get("resolution"))
            candidates.append(ImageCandidate(url=url, title=item.get("title"), width=width, height=height))

        logger.debug(f"Image search returned {len(candidates)} candidates", extra={"query": query})
        return candidates


def _parse_resolution(value: Optional[str]) -> Tuple[Optional[int], Optional[int]]:
    # SearXNG reports "1920 x 1080"
    if not value:
        return None, None
    parts = [part.strip() for part in str(value).lower().split("x")]
    if len(parts) != 2 or not all(part.isdigit() for part in parts):
        return None, None
    return int(parts[0]), int(parts[1])


class ImageSearchService:
    """Finds images never sent before for a query and downloads them."""

    def __init__(
        self,
        client: ImageSearchClient,
        image_cache: DedupCache,
        validator: Validator,
        download_service: DownloadService
    ):
        """
        Initialize image search service.

        Args:
            client: Search backend
            image_cache: Delivered URLs per query
            validator: Reachability and content-type check for candidates
            download_service: Image downloader with the image size ceiling
        """
        self.client = client
        self.image_cache = image_cache
        self.validator = validator
        self.download_service = download_service

    async def find_images(self, query: str, count: int) -> List[ImageCandidate]:
        """
        Search and pick up to ``count`` valid images not yet sent for ``query``.
        """
        candidates = await self.client.search(query)
        if not candidates:
            return []
        return await self.image_cache.get_unique(query, count, candidates, self.validator)

    async def fetch_images(self, images: List[ImageCandidate], query: Optional[str] = None) -> List[MediaPayload]:
        """
        Download images concurrently, dropping the ones that fail.

        When ``query`` is given, images that could not be downloaded are
        released from its delivered set so a later search can offer them again.

        Returns:
            Payloads in the order of ``images``
        """
        results = await asyncio.gather(
            *(self.download_service.download(image.url) for image in images),
            return_exceptions=True
        )

        payloads = []
        failed = []
        for image, result in zip(images, results):
            if isinstance(result, PipelineError):
                logger.warning(f"Skipping image {truncate_url(image.url)}: {result}")
                failed.append(image.url)
                continue
            if isinstance(result, BaseException):
                logger.error(f"Unexpected error fetching image {truncate_url(image.url)}: {result}")
                failed.append(image.url)
                continue
            payloads.append(result)

        if query and failed:
            self.image_cache.release(query, failed)
        return payloads
