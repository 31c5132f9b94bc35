"""
Audio Encoders

Turns captured int16 PCM into a container the recognition services accept.
WAV uses the stdlib wave module; compressed containers (webm/opus, mp4/aac,
ogg, mp3) go through ffmpeg. Which containers ffmpeg can produce is probed
once from `ffmpeg -encoders` and `ffmpeg -muxers`.
"""

import io
import shutil
import subprocess
import wave
from typing import Dict, Iterable, List, Optional, Set, Tuple

from logging_config import get_logger
from .errors import EncodingError

logger = get_logger(__name__)


class WavEncoder:
    """Encodes PCM to WAV using stdlib wave (no FFmpeg dependency)."""

    mime_types = ("audio/wav", "audio/x-wav")

    def supports(self, mime_type: str) -> bool:
        return mime_type in self.mime_types

    def encode(self, pcm: bytes, sample_rate: int, channels: int, mime_type: str = "audio/wav") -> bytes:
        buffer = io.BytesIO()
        with wave.open(buffer, 'wb') as wf:
            wf.setnchannels(channels)
            wf.setsampwidth(2)  # int16 = 2 bytes per sample
            wf.setframerate(sample_rate)
            wf.writeframes(pcm)
        return buffer.getvalue()


class FfmpegEncoder:
    """Encodes PCM through an ffmpeg subprocess."""

    # mime type -> (muxer, audio codec, extra output args)
    FORMATS: Dict[str, Tuple[str, str, Tuple[str, ...]]] = {
        "audio/webm;codecs=opus": ("webm", "libopus", ()),
        "audio/webm": ("webm", "libopus", ()),
        "audio/ogg;codecs=opus": ("ogg", "libopus", ()),
        "audio/ogg": ("ogg", "libvorbis", ()),
        # mp4 needs a fragmented layout to be written to a pipe
        "audio/mp4": ("mp4", "aac", ("-movflags", "frag_keyframe+empty_moov")),
        "audio/mpeg": ("mp3", "libmp3lame", ()),
    }

    BITRATE = "128k"
    PROBE_TIMEOUT = 10
    ENCODE_TIMEOUT = 60

    def __init__(self, ffmpeg_path: str = "ffmpeg"):
        self.ffmpeg_path = ffmpeg_path
        self._capabilities: Optional[Tuple[Set[str], Set[str]]] = None

    def is_available(self) -> bool:
        return shutil.which(self.ffmpeg_path) is not None

    def supports(self, mime_type: str) -> bool:
        fmt = self.FORMATS.get(mime_type)
        if fmt is None:
            return False
        muxer, codec, _ = fmt
        encoders, muxers = self._probe()
        return muxer in muxers and codec in encoders

    def encode(self, pcm: bytes, sample_rate: int, channels: int, mime_type: str) -> bytes:
        """Blocking encode - call from the executor."""
        fmt = self.FORMATS.get(mime_type)
        if fmt is None:
            raise EncodingError(f"ffmpeg encoder has no mapping for {mime_type}")
        muxer, codec, extra = fmt
        command = [
            self.ffmpeg_path, "-hide_banner", "-loglevel", "error",
            "-f", "s16le", "-ar", str(sample_rate), "-ac", str(channels),
            "-i", "pipe:0",
            "-c:a", codec, "-b:a", self.BITRATE,
            *extra,
            "-f", muxer, "pipe:1",
        ]
        try:
            result = subprocess.run(command, input=pcm, capture_output=True, timeout=self.ENCODE_TIMEOUT)
        except (OSError, subprocess.TimeoutExpired) as e:
            raise EncodingError(f"ffmpeg encode failed: {e}") from e
        if result.returncode != 0:
            stderr = result.stderr.decode(errors='replace').strip()
            raise EncodingError(f"ffmpeg exited with {result.returncode}: {stderr}")
        return result.stdout

    def _probe(self) -> Tuple[Set[str], Set[str]]:
        if self._capabilities is None:
            if not self.is_available():
                self._capabilities = (set(), set())
            else:
                self._capabilities = (
                    self._list_names("-encoders"),
                    self._list_names("-muxers"),
                )
                logger.debug(
                    f"ffmpeg capabilities: {len(self._capabilities[0])} encoders, "
                    f"{len(self._capabilities[1])} muxers"
                )
        return self._capabilities

    def _list_names(self, flag: str) -> Set[str]:
        try:
            result = subprocess.run(
                [self.ffmpeg_path, "-hide_banner", flag],
                capture_output=True, text=True, timeout=self.PROBE_TIMEOUT,
            )
        except (OSError, subprocess.TimeoutExpired) as e:
            logger.warning(f"Could not probe ffmpeg {flag}: {e}")
            return set()
        return parse_ffmpeg_listing(result.stdout)


def parse_ffmpeg_listing(output: str) -> Set[str]:
    """
    Extract names from `ffmpeg -encoders` / `ffmpeg -muxers` output.

    Entries look like " A..... libopus   libopus Opus" or " E webm    WebM";
    everything before the "--" separator line is legend.
    """
    names: Set[str] = set()
    in_body = False
    for line in output.splitlines():
        stripped = line.strip()
        if not in_body:
            if stripped.startswith("--"):
                in_body = True
            continue
        parts = stripped.split()
        if len(parts) >= 2:
            # muxers may list several comma-separated names ("mov,mp4,m4a")
            names.update(parts[1].split(","))
    return names


class MediaEncoders:
    """Registry of encoders consulted when negotiating a container."""

    def __init__(self, encoders: Optional[Iterable] = None):
        self._encoders: List = list(encoders) if encoders is not None else [FfmpegEncoder(), WavEncoder()]

    @classmethod
    def default(cls, ffmpeg_path: str = "ffmpeg") -> 'MediaEncoders':
        return cls([FfmpegEncoder(ffmpeg_path), WavEncoder()])

    def is_type_supported(self, mime_type: str) -> bool:
        return self.encoder_for(mime_type) is not None

    def encoder_for(self, mime_type: str):
        for encoder in self._encoders:
            if encoder.supports(mime_type):
                return encoder
        return None

    def encode(self, pcm: bytes, sample_rate: int, channels: int, mime_type: str) -> bytes:
        encoder = self.encoder_for(mime_type)
        if encoder is None:
            raise EncodingError(f"No encoder for {mime_type}")
        return encoder.encode(pcm, sample_rate, channels, mime_type)
