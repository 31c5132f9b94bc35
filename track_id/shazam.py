"""
Shazam Recognition Module

Fallback recognition backend via ShazamIO, used when ACRCloud misses or is
unavailable. Shazam does not expose a confidence score.
"""

from typing import Optional

try:
    from shazamio import Shazam
except ImportError:
    Shazam = None

from logging_config import get_logger
from .client import RecognitionBackend
from .errors import IdentificationServiceError
from .models import UNKNOWN_ARTIST, UNKNOWN_TITLE, AudioSample, RecognitionMatch

logger = get_logger(__name__)

SERVICE_NAME = "Shazam"


def match_from_shazam(result: dict) -> Optional[RecognitionMatch]:
    """Map a ShazamIO response to a RecognitionMatch (None when there is no match)."""
    if not result.get('matches') or not result.get('track'):
        return None

    track = result['track']

    # Album and release date live in the SONG section metadata
    album = None
    release_date = None
    for section in track.get('sections', []):
        if section.get('type') != 'SONG':
            continue
        for item in section.get('metadata', []):
            if item.get('title') == 'Album':
                album = item.get('text')
            elif item.get('title') == 'Released':
                release_date = item.get('text')

    # Priority: coverarthq (high-res) > coverart > share.image
    images = track.get('images', {})
    artwork = (
        images.get('coverarthq') or
        images.get('coverart') or
        track.get('share', {}).get('image')
    )

    return RecognitionMatch(
        title=track.get('title') or UNKNOWN_TITLE,
        artist=track.get('subtitle') or UNKNOWN_ARTIST,
        service=SERVICE_NAME,
        service_id=track.get('key'),
        album=album,
        artwork=artwork,
        release_date=release_date,
        confidence_percent=None,
    )


class ShazamBackend(RecognitionBackend):
    name = SERVICE_NAME

    def __init__(self, enabled: bool = True):
        self._enabled = enabled
        self._shazam = None
        if enabled and Shazam is None:
            logger.warning("shazamio not installed. Shazam fallback unavailable.")

    def is_available(self) -> bool:
        return self._enabled and Shazam is not None

    async def recognize(self, sample: AudioSample) -> Optional[RecognitionMatch]:
        if not self.is_available():
            raise IdentificationServiceError("Shazam is not available", SERVICE_NAME)
        if self._shazam is None:
            self._shazam = Shazam()

        logger.debug(f"Sending to ShazamIO ({sample.size / 1024:.1f} KB)...")
        try:
            result = await self._shazam.recognize(sample.data)
        except Exception as e:
            raise IdentificationServiceError(f"Shazam request failed: {e}", SERVICE_NAME) from e

        if not isinstance(result, dict):
            raise IdentificationServiceError("Malformed Shazam response", SERVICE_NAME)

        match = match_from_shazam(result)
        if match is None:
            logger.info("Shazam: no match")
            return None

        logger.info(f"Shazam recognized: {match.artist} - {match.title}")
        return match

    async def close(self):
        """Close the Shazam client (its aiohttp session, when it exposes one)."""
        if self._shazam is None:
            return
        close = getattr(self._shazam, 'close', None)
        if close is not None:
            try:
                await close()
            except Exception as e:
                logger.debug(f"Error closing Shazam client: {e}")
        self._shazam = None
