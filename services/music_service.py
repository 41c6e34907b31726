"""
Song search backend for the !song command.
"""
import logging
from dataclasses import dataclass
from typing import List, Optional

import aiohttp


logger = logging.getLogger(__name__)


MAX_SONG_RESULTS = 5


@dataclass(frozen=True)
class Track:
    """Song search result."""
    title: str
    artist: str
    album: str
    url: str
    cover: Optional[str] = None

    @property
    def caption(self) -> str:
        return f"🎵 *{self.title}*\n👤 {self.artist}\n💿 {self.album}"


class MusicClient:
    """
    Client for the song lookup service.

    ``GET /search?q=`` lists tracks; ``GET /getSong?url=`` returns track
    details whose ``urls`` mapping holds the downloadable audio.
    """

    def __init__(self, session: aiohttp.ClientSession, base_url: str, timeout_seconds: float = 30.0):
        self.session = session
        self.base_url = base_url.rstrip("/")
        self.timeout_seconds = timeout_seconds

    @property
    def enabled(self) -> bool:
        return bool(self.base_url)

    async def search(self, query: str, limit: int = MAX_SONG_RESULTS) -> List[Track]:
        """
        Search songs by free-text query.

        Returns:
            Up to ``limit`` tracks
        """
        data = await self._get_json("/search", {"q": query})
        items = data if isinstance(data, list) else (data or {}).get("results", [])

        tracks = []
        for item in items:
            url = item.get("url")
            if not url:
                continue
            tracks.append(Track(
                title=item.get("title") or "Unknown title",
                artist=item.get("artist") or "Unknown artist",
                album=item.get("album") or "",
                url=url,
                cover=item.get("cover"),
            ))
            if len(tracks) >= limit:
                break
        logger.debug(f"Song search returned {len(tracks)} tracks", extra={"query": query})
        return tracks

    async def get_audio_url(self, track: Track) -> str:
        """
        Resolve the downloadable audio URL of a track.

        Raises:
            ValueError: If the service returns no audio URL
        """
        data = await self._get_json("/getSong", {"url": track.url})
        urls = (data or {}).get("urls") or {}
        if isinstance(urls, str):
            return urls
        audio_url = urls.get("downloadUrl") or urls.get("audio") or next(iter(urls.values()), None)
        if not audio_url:
            raise ValueError("Invalid response format from song service")
        return audio_url

    async def _get_json(self, path: str, params: dict):
        timeout = aiohttp.ClientTimeout(total=self.timeout_seconds)
        async with self.session.get(
            f"{self.base_url}{path}",
            params=params,
            headers={"Accept": "application/json"},
            timeout=timeout
        ) as response:
            response.raise_for_status()
            return await response.json(content_type=None)
