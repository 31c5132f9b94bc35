"""
Error taxonomy for the identification pipeline.

Every failure a capture attempt can produce maps to one of these classes.
The controller catches them at the pipeline boundary and turns them into a
status message; nothing here is retried automatically.
"""


class TrackIdError(Exception):
    """Base class for identification pipeline errors."""

    #: Short user-facing description shown on the status line
    status_message = "Identification failed."


class StreamConnectionError(TrackIdError, ConnectionError):
    """Live stream could not be opened or dropped while playing."""

    status_message = "Stream connection failed."


class CaptureSetupError(TrackIdError):
    """Audio context could not be created/resumed, or the element is already bound."""

    status_message = "Audio setup failed. Start playback again to retry."


class UnsupportedFormatError(TrackIdError):
    """No container in the preference list can be encoded on this host."""

    status_message = "No supported audio encoding available."


class AlreadyInProgressError(TrackIdError):
    """A capture session is already active."""

    status_message = "Already identifying..."


class InsufficientAudioError(TrackIdError):
    """Encoded sample is below the minimum submit size."""

    status_message = "Audio sample too small. Increase volume."

    def __init__(self, size: int, minimum: int):
        super().__init__(f"Audio sample too small ({size} bytes < {minimum} bytes)")
        self.size = size
        self.minimum = minimum


class EncodingError(TrackIdError):
    """Encoder failed to produce a container from captured audio."""

    status_message = "Audio encoding failed. Will retry."


class IdentificationServiceError(TrackIdError):
    """Recognition service unreachable, rejected the request, or returned garbage."""

    status_message = "Identification service error. Please try again."

    def __init__(self, message: str, service: str = "unknown"):
        super().__init__(message)
        self.service = service
