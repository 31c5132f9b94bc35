"""
Identification Client

Submits a sample to the recognition backends in order and turns the first
hit into a Track. Missing cover art is filled from the secondary catalog on a
best-effort basis.
"""

from typing import List, Optional, Sequence

from logging_config import get_logger
from .errors import IdentificationServiceError
from .models import AudioSample, RecognitionMatch, Track

logger = get_logger(__name__)


class RecognitionBackend:
    """Base class for recognition services."""

    name = "backend"

    def is_available(self) -> bool:
        return True

    async def recognize(self, sample: AudioSample) -> Optional[RecognitionMatch]:
        """
        Returns:
            RecognitionMatch on a hit, None on a clean miss

        Raises:
            IdentificationServiceError: the service could not answer
        """
        raise NotImplementedError

    async def close(self) -> None:
        pass


class IdentificationClient:
    """
    Tries each available backend in order; the first hit wins.

    Result semantics:
    - hit from any backend -> Track
    - at least one clean miss and no hit -> None
    - every attempted backend failed -> the first IdentificationServiceError
    """

    def __init__(self, backends: Sequence[RecognitionBackend], artwork=None):
        self.backends: List[RecognitionBackend] = list(backends)
        self.artwork = artwork

    def available_backends(self) -> List[RecognitionBackend]:
        return [backend for backend in self.backends if backend.is_available()]

    async def identify(self, sample: AudioSample) -> Optional[Track]:
        """
        Identify one sample.

        Args:
            sample: Encoded recording; its completion time becomes the Track timestamp

        Returns:
            Track on a hit, None when the services found nothing

        Raises:
            IdentificationServiceError: no backend configured, or every backend errored
        """
        backends = self.available_backends()
        if not backends:
            raise IdentificationServiceError("No recognition service is configured")

        errors: List[IdentificationServiceError] = []
        missed = False
        for backend in backends:
            try:
                match = await backend.recognize(sample)
            except IdentificationServiceError as e:
                logger.warning(f"{backend.name} failed: {e}")
                errors.append(e)
                continue
            except Exception as e:
                # Unexpected backend bug: report it like a service failure
                logger.error(f"{backend.name} raised unexpectedly: {e}", exc_info=True)
                errors.append(IdentificationServiceError(str(e), backend.name))
                continue

            if match is None:
                logger.debug(f"{backend.name}: no match")
                missed = True
                continue

            match = await self._with_artwork(match)
            return Track.from_match(match, timestamp=sample.completed_at)

        if missed or not errors:
            return None
        raise errors[0]

    async def _with_artwork(self, match: RecognitionMatch) -> RecognitionMatch:
        if match.artwork or self.artwork is None:
            return match
        try:
            artwork = await self.artwork.find_artwork(match.artist, match.title)
        except Exception as e:
            logger.debug(f"Artwork lookup failed for {match.artist} - {match.title}: {e}")
            return match
        if not artwork:
            return match
        return RecognitionMatch(
            title=match.title,
            artist=match.artist,
            service=match.service,
            service_id=match.service_id,
            album=match.album,
            artwork=artwork,
            duration_seconds=match.duration_seconds,
            release_date=match.release_date,
            confidence_percent=match.confidence_percent,
        )

    async def close(self) -> None:
        for backend in self.backends:
            try:
                await backend.close()
            except Exception as e:
                logger.debug(f"Error closing {backend.name}: {e}")
        if self.artwork is not None:
            try:
                await self.artwork.close()
            except Exception as e:
                logger.debug(f"Error closing artwork lookup: {e}")
