"""
Artwork Lookup

Fills in cover art from the iTunes Search API when the recognition service
returned none. Free, no authentication. Every failure here is swallowed: a
track without artwork is still a good result.
"""

import re
from typing import Dict, Optional

import requests

from logging_config import get_logger
from .helpers import run_in_daemon_executor

logger = get_logger(__name__)

ITUNES_SEARCH_URL = "https://itunes.apple.com/search"

# iTunes artwork URLs carry their size as "<w>x<h>" (".../100x100bb.jpg")
_SIZE_TOKEN = re.compile(r"100x100")


def upsize_artwork_url(url: str, size: int = 600) -> str:
    """Swap the 100x100 dimension token for a larger size."""
    return _SIZE_TOKEN.sub(f"{size}x{size}", url)


class ArtworkLookup:
    """Best-effort cover art lookup keyed on "<artist> <title>"."""

    CACHE_SIZE = 100

    def __init__(
        self,
        search_url: str = ITUNES_SEARCH_URL,
        size: int = 600,
        timeout: float = 5,
        session: Optional[requests.Session] = None,
    ):
        self.search_url = search_url
        self.size = size
        self.timeout = timeout
        self._session = session or requests.Session()
        # Key: "artist::title" (normalized), Value: URL or None
        self._cache: Dict[str, Optional[str]] = {}

    async def find_artwork(self, artist: str, title: str) -> Optional[str]:
        """
        Look up cover art.

        Returns:
            Upsized artwork URL, or None on a miss or any failure
        """
        key = f"{artist.lower().strip()}::{title.lower().strip()}"
        if key in self._cache:
            return self._cache[key]

        try:
            url = await run_in_daemon_executor(self._search, f"{artist} {title}")
        except Exception as e:
            logger.debug(f"iTunes artwork lookup failed for {artist} - {title}: {e}")
            return None

        if len(self._cache) >= self.CACHE_SIZE:
            self._cache.pop(next(iter(self._cache)))
        self._cache[key] = url
        return url

    def _search(self, term: str) -> Optional[str]:
        """Blocking iTunes search - runs in the executor."""
        params = {
            "term": term,
            "media": "music",
            "entity": "song",
            "limit": 1,
        }
        response = self._session.get(self.search_url, params=params, timeout=self.timeout)
        if response.status_code != 200:
            logger.debug(f"iTunes search returned HTTP {response.status_code}")
            return None

        results = response.json().get("results") or []
        if not results:
            return None

        artwork = results[0].get("artworkUrl100")
        if not artwork:
            return None
        return upsize_artwork_url(artwork, self.size)

    async def close(self) -> None:
        self._session.close()
