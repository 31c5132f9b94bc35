"""
Live Stream Module

Decodes an internet radio stream to raw PCM with an ffmpeg subprocess and
renders it to the local sound device using sounddevice.

StreamElement is the playback element the rest of the pipeline works with:
it can be played/paused, has its own volume and mute, emits events, and its
decoded audio can be re-routed into a capture graph exactly once.
"""

import asyncio
from typing import Awaitable, Callable, Dict, List, Optional

import numpy as np

try:
    import sounddevice as sd
except (ImportError, OSError):  # OSError for missing PortAudio library
    sd = None

from logging_config import get_logger
from .helpers import run_in_daemon_executor

logger = get_logger(__name__)

BYTES_PER_SAMPLE = 2  # int16

PcmSink = Callable[[bytes], Awaitable[None]]


def apply_gain(data: bytes, gain: float) -> bytes:
    """Scale interleaved int16 PCM by gain (clipped to the int16 range)."""
    if gain == 1.0:
        return data
    if gain <= 0.0:
        return bytes(len(data))
    samples = np.frombuffer(data, dtype=np.int16).astype(np.float32)
    samples *= gain
    np.clip(samples, -32768, 32767, out=samples)
    return samples.astype(np.int16).tobytes()


class AudioOutput:
    """Audible output on the local sound device (int16 raw stream)."""

    def __init__(self, sample_rate: int, channels: int, device: Optional[str] = None):
        self.sample_rate = sample_rate
        self.channels = channels
        self.device = device
        self._stream = None

    @staticmethod
    def is_available() -> bool:
        """Check if sounddevice (and PortAudio) is available."""
        return sd is not None

    @property
    def is_open(self) -> bool:
        return self._stream is not None

    def open(self) -> None:
        """Open the device. Blocking - call from the executor."""
        if self._stream is not None:
            return
        if sd is None:
            raise OSError("sounddevice/PortAudio not available")
        stream = sd.RawOutputStream(
            samplerate=self.sample_rate,
            channels=self.channels,
            dtype='int16',
            device=self.device,
        )
        stream.start()
        self._stream = stream
        logger.info(f"Audio output opened ({self.sample_rate} Hz, {self.channels} ch, device={self.device or 'default'})")

    def write(self, data: bytes) -> None:
        """Blocking write; paces the caller to real time."""
        if self._stream is not None:
            self._stream.write(data)

    def close(self) -> None:
        if self._stream is None:
            return
        try:
            self._stream.stop()
            self._stream.close()
        except Exception as e:
            logger.debug(f"Error closing audio output: {e}")
        self._stream = None


class StreamElement:
    """
    Playback element for a live radio stream.

    Events (add_event_listener):
        timeupdate: a block of audio was delivered
        ended: the stream closed
        error: decoding/delivery failed while playing
    """

    BLOCK_SECONDS = 0.1
    EVENTS = ("timeupdate", "ended", "error")

    def __init__(
        self,
        url: str,
        sample_rate: int = 44100,
        channels: int = 2,
        ffmpeg_path: str = "ffmpeg",
        output: Optional[AudioOutput] = None,
        connect_timeout: float = 10.0,
    ):
        self.url = url
        self.sample_rate = sample_rate
        self.channels = channels
        self.ffmpeg_path = ffmpeg_path
        self.connect_timeout = connect_timeout
        self._output = output

        self._volume = 1.0
        self.muted = False
        self._paused = True
        self._frames_delivered = 0

        self._process: Optional[asyncio.subprocess.Process] = None
        self._pump_task: Optional[asyncio.Task] = None
        self._sink: Optional[PcmSink] = None
        self._listeners: Dict[str, List[Callable]] = {event: [] for event in self.EVENTS}

    @property
    def block_bytes(self) -> int:
        return int(self.sample_rate * self.BLOCK_SECONDS) * self.channels * BYTES_PER_SAMPLE

    @property
    def volume(self) -> float:
        return self._volume

    @volume.setter
    def volume(self, value: float) -> None:
        if not 0.0 <= value <= 1.0:
            raise ValueError(f"volume must be within [0, 1], got {value}")
        self._volume = value

    @property
    def paused(self) -> bool:
        return self._paused

    @property
    def current_time(self) -> float:
        """Seconds of audio delivered since the element was created."""
        return self._frames_delivered / self.sample_rate

    @property
    def is_captured(self) -> bool:
        return self._sink is not None

    def add_event_listener(self, event: str, callback: Callable) -> None:
        if event not in self._listeners:
            raise ValueError(f"Unknown event: {event}")
        self._listeners[event].append(callback)

    def remove_event_listener(self, event: str, callback: Callable) -> None:
        if callback in self._listeners.get(event, []):
            self._listeners[event].remove(callback)

    def capture_source(self, sink: PcmSink) -> None:
        """
        Route decoded audio into sink instead of the element's own output.

        An element can only be captured once; the original output path is
        never restored.

        Raises:
            RuntimeError: if the element was already captured
        """
        if self._sink is not None:
            raise RuntimeError("Stream element is already connected to a capture source")
        self._sink = sink
        if self._output is not None and self._output.is_open:
            self._output.close()

    async def play(self) -> None:
        """
        Start decoding the stream.

        Resolves once the first block of audio arrived.

        Raises:
            OSError: ffmpeg missing, stream unreachable, or output device failure
            asyncio.TimeoutError: no audio within connect_timeout
        """
        if not self._paused:
            return

        if self._output is not None and self._sink is None and not self._output.is_open:
            await run_in_daemon_executor(self._output.open)

        self._process = await asyncio.create_subprocess_exec(
            self.ffmpeg_path,
            "-hide_banner", "-loglevel", "error",
            "-re",
            "-reconnect", "1", "-reconnect_streamed", "1",
            "-i", self.url,
            "-vn",
            "-f", "s16le", "-acodec", "pcm_s16le",
            "-ar", str(self.sample_rate),
            "-ac", str(self.channels),
            "pipe:1",
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        logger.info(f"Connecting to stream {self.url} (ffmpeg pid {self._process.pid})")

        try:
            first = await asyncio.wait_for(self._read_block(), timeout=self.connect_timeout)
        except asyncio.TimeoutError:
            await self._terminate()
            raise
        if not first:
            stderr = await self._process.stderr.read()
            await self._terminate()
            raise OSError(f"Stream ended before any audio: {stderr.decode(errors='replace').strip()}")

        self._paused = False
        self._pump_task = asyncio.create_task(self._pump(first))

    async def pause(self) -> None:
        self._paused = True
        task = self._pump_task
        self._pump_task = None
        if task is not None and task is not asyncio.current_task():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        await self._terminate()

    async def close(self) -> None:
        await self.pause()
        if self._output is not None:
            self._output.close()

    async def _read_block(self) -> bytes:
        try:
            return await self._process.stdout.readexactly(self.block_bytes)
        except asyncio.IncompleteReadError as e:
            return e.partial

    async def _pump(self, first: bytes) -> None:
        data = first
        try:
            while data:
                await self._deliver(data)
                self._emit("timeupdate", self.current_time)
                data = await self._read_block()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Stream playback error: {e}")
            self._paused = True
            self._emit("error", e)
            await self._terminate()
            return

        logger.warning("Stream ended")
        self._paused = True
        self._emit("ended", None)
        await self._terminate()

    async def _deliver(self, data: bytes) -> None:
        # Drop any trailing partial frame
        frame_bytes = self.channels * BYTES_PER_SAMPLE
        usable = len(data) - (len(data) % frame_bytes)
        if usable <= 0:
            return
        data = data[:usable]
        self._frames_delivered += usable // frame_bytes

        if self._sink is not None:
            await self._sink(data)
        elif self._output is not None and self._output.is_open:
            gain = 0.0 if self.muted else self._volume
            await run_in_daemon_executor(self._output.write, apply_gain(data, gain))

    async def _terminate(self) -> None:
        process = self._process
        self._process = None
        if process is None or process.returncode is not None:
            return
        try:
            process.terminate()
            await asyncio.wait_for(process.wait(), timeout=2.0)
        except ProcessLookupError:
            pass
        except asyncio.TimeoutError:
            logger.warning("ffmpeg did not exit, killing it")
            process.kill()
            await process.wait()

    def _emit(self, event: str, payload) -> None:
        for callback in list(self._listeners[event]):
            try:
                callback(payload)
            except Exception as e:
                logger.error(f"Error in {event} listener: {e}")
