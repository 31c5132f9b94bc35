"""
Data model for track identification.

Track, AudioSample and RecognitionMatch are value objects passed between the
pipeline stages. CaptureSession tracks one attempt from graph setup to the
terminal state. IdentifyConfig gathers the tunables.
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Mapping, Optional, Tuple
from urllib.parse import quote_plus

DEFAULT_ENCODINGS = (
    "audio/webm;codecs=opus",
    "audio/webm",
    "audio/mp4",
    "audio/wav",
)

UNKNOWN_TITLE = "Unknown Title"
UNKNOWN_ARTIST = "Unknown Artist"

# File extensions the recognition services expect for each container
MIME_EXTENSIONS = {
    "audio/webm": "webm",
    "audio/ogg": "ogg",
    "audio/mp4": "m4a",
    "audio/mpeg": "mp3",
    "audio/wav": "wav",
    "audio/x-wav": "wav",
}


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def normalize_confidence(score: Any) -> Optional[int]:
    """
    Convert a recognition score to an integer percentage.

    Services report either a fraction (0.92) or a percentage (92). Values
    at or below 1 are treated as fractions.

    Returns:
        Integer in [0, 100], or None when the score is missing/not numeric
    """
    if score is None or isinstance(score, bool):
        return None
    try:
        value = float(score)
    except (TypeError, ValueError):
        return None
    if value <= 1:
        value *= 100
    return max(0, min(100, int(round(value))))


@dataclass(frozen=True)
class RecognitionMatch:
    """Backend-neutral recognition hit, before the pipeline mints a Track."""
    title: str
    artist: str
    service: str
    service_id: Optional[str] = None
    album: Optional[str] = None
    artwork: Optional[str] = None
    duration_seconds: Optional[int] = None
    release_date: Optional[str] = None
    confidence_percent: Optional[int] = None


@dataclass(frozen=True)
class Track:
    """
    One identified track.

    Attributes:
        id: Service-provided id, or a locally minted uuid
        title: Song title (placeholder when the service omits it)
        artist: Artist(s), multiple names joined with ", "
        album: Album name
        artwork: Cover image URL
        duration_seconds: Track length
        release_date: Release date as reported by the service
        confidence_percent: 0-100, None when the service reports no score
        service: Which service produced the match
        timestamp: Capture-completion time (UTC), set by the pipeline
    """
    id: str
    title: str
    artist: str
    service: str
    timestamp: datetime
    album: Optional[str] = None
    artwork: Optional[str] = None
    duration_seconds: Optional[int] = None
    release_date: Optional[str] = None
    confidence_percent: Optional[int] = None

    @classmethod
    def from_match(cls, match: RecognitionMatch, timestamp: datetime) -> 'Track':
        return cls(
            id=match.service_id or uuid.uuid4().hex,
            title=match.title or UNKNOWN_TITLE,
            artist=match.artist or UNKNOWN_ARTIST,
            service=match.service,
            timestamp=timestamp,
            album=match.album,
            artwork=match.artwork,
            duration_seconds=match.duration_seconds,
            release_date=match.release_date,
            confidence_percent=match.confidence_percent,
        )

    def search_url(self, template: str) -> str:
        """External search link for this track ("<artist> <title>")."""
        return template.format(query=quote_plus(f"{self.artist} {self.title}"))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "artist": self.artist,
            "album": self.album,
            "artwork": self.artwork,
            "duration_seconds": self.duration_seconds,
            "release_date": self.release_date,
            "confidence_percent": self.confidence_percent,
            "service": self.service,
            "timestamp": self.timestamp.isoformat(),
        }

    def __str__(self) -> str:
        return f"{self.artist} - {self.title}"


@dataclass(frozen=True)
class AudioSample:
    """Encoded recording ready for submission."""
    data: bytes
    mime_type: str
    sample_rate: int
    channels: int
    duration: float
    started_at: datetime
    completed_at: datetime

    @property
    def size(self) -> int:
        return len(self.data)

    @property
    def container(self) -> str:
        """MIME type without codec parameters (audio/webm;codecs=opus -> audio/webm)."""
        return self.mime_type.split(";")[0].strip()

    @property
    def filename(self) -> str:
        return f"sample.{MIME_EXTENSIONS.get(self.container, 'bin')}"


class SessionState(Enum):
    IDLE = "idle"
    SETTING_UP_GRAPH = "setting_up_graph"
    RECORDING = "recording"
    ENCODING = "encoding"
    SUBMITTING = "submitting"
    DONE = "done"
    FAILED = "failed"


_SESSION_ORDER = [
    SessionState.IDLE,
    SessionState.SETTING_UP_GRAPH,
    SessionState.RECORDING,
    SessionState.ENCODING,
    SessionState.SUBMITTING,
    SessionState.DONE,
]

TERMINAL_STATES = (SessionState.DONE, SessionState.FAILED)


@dataclass
class CaptureSession:
    """
    One identification attempt.

    States only move forward; FAILED is reachable from any non-terminal
    state. A terminal session is never reused.
    """
    window_seconds: float
    state: SessionState = SessionState.IDLE
    started_at: datetime = field(default_factory=utcnow)
    encoding: Optional[str] = None
    byte_size: Optional[int] = None
    recorded_seconds: float = 0.0
    error: Optional[BaseException] = None

    @property
    def is_active(self) -> bool:
        return self.state not in TERMINAL_STATES and self.state != SessionState.IDLE

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES

    @property
    def progress(self) -> int:
        """Recording progress 0-100."""
        if self.state in (SessionState.IDLE, SessionState.SETTING_UP_GRAPH):
            return 0
        if self.state != SessionState.RECORDING:
            return 100
        if self.window_seconds <= 0:
            return 100
        return min(100, int(self.recorded_seconds / self.window_seconds * 100))

    def advance(self, state: SessionState) -> None:
        if state == SessionState.FAILED:
            raise ValueError("use fail() to terminate a session with an error")
        if self.is_terminal:
            raise RuntimeError(f"Session already finished ({self.state.value})")
        if _SESSION_ORDER.index(state) <= _SESSION_ORDER.index(self.state):
            raise RuntimeError(f"Invalid session transition: {self.state.value} -> {state.value}")
        self.state = state

    def finish(self) -> None:
        self.advance(SessionState.DONE)

    def fail(self, error: BaseException) -> None:
        if self.is_terminal:
            raise RuntimeError(f"Session already finished ({self.state.value})")
        self.error = error
        self.state = SessionState.FAILED

    def to_dict(self) -> Dict[str, Any]:
        return {
            "state": self.state.value,
            "started_at": self.started_at.isoformat(),
            "encoding": self.encoding,
            "byte_size": self.byte_size,
            "progress": self.progress,
            "error": str(self.error) if self.error else None,
        }


@dataclass(frozen=True)
class IdentifyConfig:
    """Tunables for the identification pipeline."""
    record_seconds: float = 20.0
    tick_interval_seconds: float = 60.0
    preferred_encodings: Tuple[str, ...] = DEFAULT_ENCODINGS
    chunk_seconds: float = 1.0
    min_sample_bytes: int = 5000
    dedup_window_seconds: float = 7200.0
    history_limit: int = 50
    status_clear_seconds: float = 3.0

    MIN_RECORD_SECONDS = 14.0
    MAX_RECORD_SECONDS = 30.0
    MIN_TICK_SECONDS = 30.0
    MAX_TICK_SECONDS = 60.0

    def __post_init__(self):
        if not self.MIN_RECORD_SECONDS <= self.record_seconds <= self.MAX_RECORD_SECONDS:
            raise ValueError(
                f"record_seconds must be between {self.MIN_RECORD_SECONDS} and "
                f"{self.MAX_RECORD_SECONDS}, got {self.record_seconds}"
            )
        if not self.MIN_TICK_SECONDS <= self.tick_interval_seconds <= self.MAX_TICK_SECONDS:
            raise ValueError(
                f"tick_interval_seconds must be between {self.MIN_TICK_SECONDS} and "
                f"{self.MAX_TICK_SECONDS}, got {self.tick_interval_seconds}"
            )
        if self.tick_interval_seconds < self.record_seconds:
            raise ValueError("tick_interval_seconds must not be shorter than record_seconds")
        if not self.preferred_encodings:
            raise ValueError("preferred_encodings must not be empty")
        if self.chunk_seconds <= 0:
            raise ValueError("chunk_seconds must be positive")
        if self.min_sample_bytes < 0:
            raise ValueError("min_sample_bytes must not be negative")
        if self.dedup_window_seconds < 0:
            raise ValueError("dedup_window_seconds must not be negative")
        if self.history_limit < 1:
            raise ValueError("history_limit must be at least 1")

    @classmethod
    def from_mapping(cls, values: Mapping[str, Any]) -> 'IdentifyConfig':
        """Build from the IDENTIFY config dict; missing/None entries use defaults."""
        kwargs: Dict[str, Any] = {}
        converters = {
            "record_seconds": float,
            "tick_interval_seconds": float,
            "chunk_seconds": float,
            "min_sample_bytes": int,
            "dedup_window_seconds": float,
            "history_limit": int,
            "status_clear_seconds": float,
        }
        for key, convert in converters.items():
            if values.get(key) is not None:
                kwargs[key] = convert(values[key])
        if values.get("preferred_encodings"):
            kwargs["preferred_encodings"] = tuple(values["preferred_encodings"])
        return cls(**kwargs)
