"""
Track identification for a live radio stream.

Captures a window of the playing stream, fingerprints it with ACRCloud
(Shazam as fallback), and keeps a deduplicated history of identified tracks.
"""

from .errors import (
    TrackIdError,
    StreamConnectionError,
    CaptureSetupError,
    UnsupportedFormatError,
    AlreadyInProgressError,
    InsufficientAudioError,
    EncodingError,
    IdentificationServiceError,
)
from .models import Track, AudioSample, CaptureSession, SessionState, IdentifyConfig
from .stream import StreamElement, AudioOutput
from .graph import CaptureGraphBuilder, CapturableStream
from .player import PlaybackSource, ConnectionStatus
from .encoders import MediaEncoders
from .recorder import Recorder
from .client import IdentificationClient, RecognitionBackend
from .acrcloud import ACRCloudBackend
from .shazam import ShazamBackend
from .artwork import ArtworkLookup
from .dedup import DuplicateFilter
from .history import TrackHistory
from .status import StatusLine, StatusLevel
from .scheduler import AutoIdentifyScheduler, SchedulerState
from .engine import TrackIdentifier, IdentifyOutcome, OutcomeKind

__all__ = [
    'TrackIdError',
    'StreamConnectionError',
    'CaptureSetupError',
    'UnsupportedFormatError',
    'AlreadyInProgressError',
    'InsufficientAudioError',
    'EncodingError',
    'IdentificationServiceError',
    'Track',
    'AudioSample',
    'CaptureSession',
    'SessionState',
    'IdentifyConfig',
    'StreamElement',
    'AudioOutput',
    'CaptureGraphBuilder',
    'CapturableStream',
    'PlaybackSource',
    'ConnectionStatus',
    'MediaEncoders',
    'Recorder',
    'IdentificationClient',
    'RecognitionBackend',
    'ACRCloudBackend',
    'ShazamBackend',
    'ArtworkLookup',
    'DuplicateFilter',
    'TrackHistory',
    'StatusLine',
    'StatusLevel',
    'AutoIdentifyScheduler',
    'SchedulerState',
    'TrackIdentifier',
    'IdentifyOutcome',
    'OutcomeKind',
]
