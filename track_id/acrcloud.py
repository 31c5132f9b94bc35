"""
ACRCloud Recognition Module

Primary recognition backend. Submits the encoded sample as a signed
multipart POST to the ACRCloud identify endpoint and validates the JSON
response with pydantic. Credentials come from the environment (.env).
"""

import base64
import hashlib
import hmac
import time
from datetime import date
from typing import List, Optional

import requests
from pydantic import BaseModel, Field, ValidationError

from logging_config import get_logger
from .client import RecognitionBackend
from .errors import IdentificationServiceError
from .helpers import run_in_daemon_executor
from .models import UNKNOWN_ARTIST, UNKNOWN_TITLE, AudioSample, RecognitionMatch, normalize_confidence

logger = get_logger(__name__)

SERVICE_NAME = "ACRCloud"
HTTP_URI = "/v1/identify"
DATA_TYPE = "audio"
SIGNATURE_VERSION = "1"
NO_RESULT_CODE = 1001


# =============================================================================
# Response schema
# =============================================================================

class AcrStatus(BaseModel):
    code: int
    msg: str = ""


class AcrArtist(BaseModel):
    name: Optional[str] = None


class AcrAlbum(BaseModel):
    name: Optional[str] = None
    artwork_url_500: Optional[str] = None
    artwork_url_300: Optional[str] = None


class AcrMusic(BaseModel):
    title: Optional[str] = None
    artists: List[AcrArtist] = Field(default_factory=list)
    album: Optional[AcrAlbum] = None
    score: Optional[float] = None
    duration_ms: Optional[int] = None
    release_date: Optional[str] = None
    acrid: Optional[str] = None


class AcrMetadata(BaseModel):
    music: List[AcrMusic] = Field(default_factory=list)


class AcrResponse(BaseModel):
    status: AcrStatus
    metadata: Optional[AcrMetadata] = None


def create_signature(access_key: str, access_secret: str, timestamp: str) -> str:
    """Create HMAC-SHA1 signature for the ACRCloud identify API."""
    string_to_sign = f"POST\n{HTTP_URI}\n{access_key}\n{DATA_TYPE}\n{SIGNATURE_VERSION}\n{timestamp}"
    return base64.b64encode(
        hmac.new(
            access_secret.encode('ascii'),
            string_to_sign.encode('ascii'),
            digestmod=hashlib.sha1
        ).digest()
    ).decode('ascii')


def match_from_music(music: AcrMusic) -> RecognitionMatch:
    """Map an ACRCloud music entry to a RecognitionMatch."""
    names = [artist.name for artist in music.artists if artist.name]
    album = music.album
    artwork = None
    if album is not None:
        artwork = album.artwork_url_500 or album.artwork_url_300
    return RecognitionMatch(
        title=music.title or UNKNOWN_TITLE,
        artist=", ".join(names) if names else UNKNOWN_ARTIST,
        service=SERVICE_NAME,
        service_id=music.acrid,
        album=album.name if album is not None else None,
        artwork=artwork,
        duration_seconds=round(music.duration_ms / 1000) if music.duration_ms else None,
        release_date=music.release_date,
        confidence_percent=normalize_confidence(music.score),
    )


class ACRCloudBackend(RecognitionBackend):
    """
    ACRCloud identify client.

    Features:
    - Daily request limit to conserve quota (0 = unlimited)
    - Auto-disabled if credentials missing
    """

    name = SERVICE_NAME

    def __init__(
        self,
        host: str,
        access_key: Optional[str],
        access_secret: Optional[str],
        timeout: float = 10,
        daily_limit: int = 0,
        session: Optional[requests.Session] = None,
    ):
        self._host = host
        self._access_key = access_key or ""
        self._access_secret = access_secret or ""
        self._timeout = timeout
        self._daily_limit = daily_limit
        self._session = session or requests.Session()

        self._requests_today = 0
        self._last_request_date: Optional[date] = None

        self._enabled = bool(self._host and self._access_key and self._access_secret)
        if self._enabled:
            logger.info(f"ACRCloud initialized (host: {self._host}, daily limit: {self._daily_limit or 'none'})")
        else:
            logger.warning("ACRCloud not configured (missing credentials in .env)")

    @property
    def url(self) -> str:
        return f"https://{self._host}{HTTP_URI}"

    def is_available(self) -> bool:
        return self._enabled

    def _reset_daily_counter_if_needed(self) -> None:
        today = date.today()
        if self._last_request_date != today:
            self._requests_today = 0
            self._last_request_date = today

    async def recognize(self, sample: AudioSample) -> Optional[RecognitionMatch]:
        """
        Identify a sample.

        Returns:
            RecognitionMatch on a hit, None when ACRCloud found nothing

        Raises:
            IdentificationServiceError: transport failure, non-2xx, malformed
                response, or daily quota exhausted
        """
        if not self._enabled:
            raise IdentificationServiceError("ACRCloud credentials are not configured", SERVICE_NAME)

        self._reset_daily_counter_if_needed()
        if self._daily_limit and self._requests_today >= self._daily_limit:
            raise IdentificationServiceError(f"Daily limit reached ({self._daily_limit})", SERVICE_NAME)

        self._requests_today += 1
        payload = await run_in_daemon_executor(self._post, sample)
        return self._parse(payload)

    def _post(self, sample: AudioSample) -> dict:
        """Blocking HTTP call - runs in the executor."""
        timestamp = str(int(time.time()))
        files = {
            'sample': (sample.filename, sample.data, sample.container),
        }
        data = {
            'access_key': self._access_key,
            'data_type': DATA_TYPE,
            'signature_version': SIGNATURE_VERSION,
            'signature': create_signature(self._access_key, self._access_secret, timestamp),
            'sample_bytes': str(sample.size),
            'timestamp': timestamp,
        }

        logger.debug(f"Sending to ACRCloud ({sample.size / 1024:.1f} KB, {sample.mime_type})...")
        try:
            response = self._session.post(self.url, files=files, data=data, timeout=self._timeout)
        except requests.exceptions.Timeout as e:
            raise IdentificationServiceError("ACRCloud request timed out", SERVICE_NAME) from e
        except requests.exceptions.RequestException as e:
            raise IdentificationServiceError(f"ACRCloud request failed: {e}", SERVICE_NAME) from e

        if not response.ok:
            raise IdentificationServiceError(f"ACRCloud returned HTTP {response.status_code}", SERVICE_NAME)
        try:
            return response.json()
        except ValueError as e:
            raise IdentificationServiceError("ACRCloud returned a non-JSON response", SERVICE_NAME) from e

    def _parse(self, payload) -> Optional[RecognitionMatch]:
        try:
            result = AcrResponse.model_validate(payload)
        except ValidationError as e:
            raise IdentificationServiceError(f"Malformed ACRCloud response: {e.error_count()} errors", SERVICE_NAME) from e

        if result.status.code != 0:
            # Any non-zero status (1001 no result, 2004 no fingerprint, 3xxx quota/auth) is a miss
            if result.status.code == NO_RESULT_CODE:
                logger.info("ACRCloud: no match")
            else:
                logger.warning(f"ACRCloud: no match (code {result.status.code}: {result.status.msg})")
            return None

        music = result.metadata.music if result.metadata else []
        if not music:
            logger.info("ACRCloud: No music in response")
            return None

        match = match_from_music(music[0])
        logger.info(
            f"ACRCloud recognized: {match.artist} - {match.title} | "
            f"Score: {match.confidence_percent} | "
            f"Requests today: {self._requests_today}/{self._daily_limit or 'unlimited'}"
        )
        return match

    def get_usage_stats(self) -> dict:
        """Get current usage statistics."""
        self._reset_daily_counter_if_needed()
        return {
            "enabled": self._enabled,
            "requests_today": self._requests_today,
            "daily_limit": self._daily_limit,
            "remaining_today": max(0, self._daily_limit - self._requests_today) if self._daily_limit else None,
        }

    async def close(self) -> None:
        self._session.close()
