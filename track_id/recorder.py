"""
Recorder Module

Records a fixed window of audio from the capturable stream and encodes it
into the first container the host supports.
"""

import asyncio
from typing import List, Optional, Sequence

from logging_config import get_logger
from .encoders import MediaEncoders
from .errors import AlreadyInProgressError, InsufficientAudioError, UnsupportedFormatError
from .graph import CapturableStream
from .helpers import run_in_daemon_executor
from .models import DEFAULT_ENCODINGS, AudioSample, CaptureSession, SessionState, utcnow
from .stream import BYTES_PER_SAMPLE

logger = get_logger(__name__)


class Recorder:
    """
    Records one sample at a time.

    The window is measured in wall time: whatever arrives from the stream
    before the deadline is kept, in chunks of `chunk_seconds`. A stream that
    delivers faster than real time (connection burst) is trimmed to the most
    recent `record_seconds` of audio.
    """

    DEFAULT_RECORD_SECONDS = 20.0
    DEFAULT_CHUNK_SECONDS = 1.0
    DEFAULT_MIN_SAMPLE_BYTES = 5000

    def __init__(
        self,
        encoders: MediaEncoders,
        preferred_encodings: Sequence[str] = DEFAULT_ENCODINGS,
        record_seconds: float = DEFAULT_RECORD_SECONDS,
        chunk_seconds: float = DEFAULT_CHUNK_SECONDS,
        min_sample_bytes: int = DEFAULT_MIN_SAMPLE_BYTES,
    ):
        if record_seconds <= 0:
            raise ValueError("record_seconds must be positive")
        if chunk_seconds <= 0:
            raise ValueError("chunk_seconds must be positive")
        self.encoders = encoders
        self.preferred_encodings = tuple(preferred_encodings)
        self.record_seconds = record_seconds
        self.chunk_seconds = chunk_seconds
        self.min_sample_bytes = min_sample_bytes
        self._recording = False

    @property
    def is_recording(self) -> bool:
        return self._recording

    def negotiate_encoding(self) -> str:
        """
        Pick the first preferred container the host can encode.

        Raises:
            UnsupportedFormatError: nothing in the preference list is supported
        """
        for mime_type in self.preferred_encodings:
            if self.encoders.is_type_supported(mime_type):
                return mime_type
            logger.debug(f"Encoding not supported: {mime_type}")
        raise UnsupportedFormatError(
            f"None of the preferred encodings are supported: {', '.join(self.preferred_encodings)}"
        )

    async def record(self, stream: CapturableStream, session: Optional[CaptureSession] = None) -> AudioSample:
        """
        Record one window from stream and encode it.

        Args:
            stream: Capturable stream from the capture graph
            session: Optional session to advance through recording/encoding

        Returns:
            Encoded AudioSample

        Raises:
            AlreadyInProgressError: another recording is running
            UnsupportedFormatError: no supported container
            InsufficientAudioError: encoded sample below min_sample_bytes
            EncodingError: encoder failed
        """
        if self._recording:
            raise AlreadyInProgressError("A recording is already in progress")

        mime_type = self.negotiate_encoding()
        self._recording = True
        try:
            if session is not None:
                session.encoding = mime_type
                session.advance(SessionState.RECORDING)

            started_at = utcnow()
            logger.info(f"Recording {self.record_seconds:.0f}s sample ({mime_type})")
            chunks = await self._collect(stream, session)
            completed_at = utcnow()

            frame_bytes = stream.channels * BYTES_PER_SAMPLE
            max_bytes = int(self.record_seconds * stream.sample_rate) * frame_bytes
            pcm = b"".join(chunks)
            if len(pcm) > max_bytes:
                pcm = pcm[-max_bytes:]
            duration = len(pcm) / frame_bytes / stream.sample_rate

            if session is not None:
                session.advance(SessionState.ENCODING)
            data = await run_in_daemon_executor(
                self.encoders.encode, pcm, stream.sample_rate, stream.channels, mime_type
            )
            if session is not None:
                session.byte_size = len(data)

            logger.debug(f"Encoded {duration:.1f}s of audio to {len(data) / 1024:.1f} KB ({mime_type})")
            if len(data) < self.min_sample_bytes:
                raise InsufficientAudioError(len(data), self.min_sample_bytes)

            return AudioSample(
                data=data,
                mime_type=mime_type,
                sample_rate=stream.sample_rate,
                channels=stream.channels,
                duration=duration,
                started_at=started_at,
                completed_at=completed_at,
            )
        finally:
            self._recording = False

    async def _collect(self, stream: CapturableStream, session: Optional[CaptureSession]) -> List[bytes]:
        loop = asyncio.get_running_loop()
        frame_bytes = stream.channels * BYTES_PER_SAMPLE
        chunk_bytes = max(frame_bytes, int(self.chunk_seconds * stream.sample_rate) * frame_bytes)
        deadline = loop.time() + self.record_seconds

        chunks: List[bytes] = []
        pending = bytearray()
        reader = stream.open_reader()
        try:
            while True:
                remaining = deadline - loop.time()
                if remaining <= 0:
                    break
                try:
                    data = await asyncio.wait_for(reader.get(), timeout=remaining)
                except asyncio.TimeoutError:
                    break
                pending.extend(data)
                while len(pending) >= chunk_bytes:
                    chunks.append(bytes(pending[:chunk_bytes]))
                    del pending[:chunk_bytes]
                    if session is not None:
                        session.recorded_seconds = len(chunks) * self.chunk_seconds
        finally:
            stream.close_reader(reader)

        if pending:
            chunks.append(bytes(pending))
        return chunks
