"""Pytest configuration and shared fixtures"""
import asyncio
from datetime import datetime, timedelta, timezone
from typing import List, Optional
from unittest.mock import MagicMock

import numpy as np
import pytest

from track_id.acrcloud import ACRCloudBackend
from track_id.client import IdentificationClient, RecognitionBackend
from track_id.encoders import MediaEncoders, WavEncoder
from track_id.engine import TrackIdentifier
from track_id.graph import CaptureGraphBuilder
from track_id.models import AudioSample, IdentifyConfig, RecognitionMatch, Track
from track_id.player import PlaybackSource
from track_id.recorder import Recorder
from track_id.status import StatusLine

SAMPLE_RATE = 8000
CHANNELS = 1
BLOCK_SAMPLES = 400  # 50ms at 8 kHz


class FakeElement:
    """Stands in for StreamElement: no ffmpeg, audio is pushed by the test."""

    def __init__(self, sample_rate=SAMPLE_RATE, channels=CHANNELS, fail_play: Optional[Exception] = None):
        self.sample_rate = sample_rate
        self.channels = channels
        self.volume = 1.0
        self.muted = False
        self.paused = True
        self.fail_play = fail_play
        self.sink = None
        self.listeners = {"timeupdate": [], "ended": [], "error": []}

    def add_event_listener(self, event, callback):
        self.listeners[event].append(callback)

    def capture_source(self, sink):
        if self.sink is not None:
            raise RuntimeError("already captured")
        self.sink = sink

    async def play(self):
        if self.fail_play is not None:
            raise self.fail_play
        self.paused = False

    async def pause(self):
        self.paused = True

    async def emit(self, data: bytes):
        if not self.paused and self.sink is not None:
            await self.sink(data)

    def fire(self, event, payload=None):
        for callback in self.listeners[event]:
            callback(payload)


def noise_block(samples: int = BLOCK_SAMPLES, channels: int = CHANNELS, amplitude: int = 8000) -> bytes:
    rng = np.random.default_rng(0)
    return rng.integers(-amplitude, amplitude, size=samples * channels, dtype=np.int16).tobytes()


async def feed(element: FakeElement, interval: float = 0.01):
    """Push noise into the element until cancelled."""
    block = noise_block(channels=element.channels)
    while True:
        await element.emit(block)
        await asyncio.sleep(interval)


class FakeBackend(RecognitionBackend):
    """Scripted recognition backend; records every sample it is given."""

    def __init__(self, name="ACRCloud", results: Optional[list] = None, available=True):
        self.name = name
        self.results = list(results or [])
        self.available = available
        self.samples: List[AudioSample] = []
        self.closed = False

    def is_available(self):
        return self.available

    async def recognize(self, sample):
        self.samples.append(sample)
        result = self.results.pop(0) if self.results else None
        if isinstance(result, Exception):
            raise result
        return result

    async def close(self):
        self.closed = True


def make_match(title="Strobe", artist="deadmau5", service="ACRCloud", confidence=92, artwork=None, service_id="acr-1"):
    return RecognitionMatch(
        title=title,
        artist=artist,
        service=service,
        service_id=service_id,
        artwork=artwork,
        confidence_percent=confidence,
    )


def make_track(title="Strobe", artist="deadmau5", timestamp: Optional[datetime] = None, track_id="t-1"):
    return Track(
        id=track_id,
        title=title,
        artist=artist,
        service="ACRCloud",
        timestamp=timestamp or datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc),
    )


def make_sample(size=6000, completed_at: Optional[datetime] = None) -> AudioSample:
    completed = completed_at or datetime(2024, 5, 1, 12, 0, 20, tzinfo=timezone.utc)
    return AudioSample(
        data=b"\x00" * size,
        mime_type="audio/wav",
        sample_rate=SAMPLE_RATE,
        channels=CHANNELS,
        duration=20.0,
        started_at=completed - timedelta(seconds=20),
        completed_at=completed,
    )


class OnlyTypes:
    """Encoder that claims support for a fixed set of MIME types."""

    def __init__(self, *mime_types):
        self.mime_types = mime_types

    def supports(self, mime_type):
        return mime_type in self.mime_types

    def encode(self, pcm, sample_rate, channels, mime_type):
        return b"ENC" + pcm


class BrokenOutput:
    def open(self):
        raise OSError("no audio device")

    def write(self, data):
        pass

    def close(self):
        pass


def acr_response(payload, status_code=200):
    response = MagicMock()
    response.status_code = status_code
    response.ok = 200 <= status_code < 300
    response.json.return_value = payload
    return response


def make_acr(session, daily_limit=0):
    return ACRCloudBackend(
        host="identify-eu-west-1.acrcloud.com",
        access_key="key",
        access_secret="secret",
        daily_limit=daily_limit,
        session=session,
    )


ACR_HIT = {
    "status": {"code": 0, "msg": "Success"},
    "metadata": {
        "music": [{
            "title": "Strobe",
            "artists": [{"name": "deadmau5"}, {"name": "Kaskade"}],
            "album": {"name": "For Lack of a Better Name"},
            "score": 0.92,
            "duration_ms": 634500,
            "release_date": "2009-09-22",
            "acrid": "acr-123",
        }]
    },
}




@pytest.fixture
def element():
    return FakeElement()


@pytest.fixture
def graph_builder():
    return CaptureGraphBuilder()  # headless


@pytest.fixture
def player(element, graph_builder):
    return PlaybackSource(element, graph_builder, volume=1.0)


@pytest.fixture
def wav_only_encoders():
    return MediaEncoders([WavEncoder()])


@pytest.fixture
def recorder(wav_only_encoders):
    # Short window so tests run in well under a second
    return Recorder(
        wav_only_encoders,
        preferred_encodings=("audio/webm;codecs=opus", "audio/wav"),
        record_seconds=0.3,
        chunk_seconds=0.1,
        min_sample_bytes=1000,
    )


@pytest.fixture
def backend():
    return FakeBackend()


@pytest.fixture
def identifier(player, graph_builder, recorder, backend):
    config = IdentifyConfig(record_seconds=20, tick_interval_seconds=60)
    return TrackIdentifier(
        player=player,
        graph_builder=graph_builder,
        recorder=recorder,
        client=IdentificationClient([backend]),
        status=StatusLine(clear_after=3.0),
        config=config,
        auto_identify=False,
    )


@pytest.fixture
async def feeding(element):
    """Background task streaming noise into the element for the test's duration."""
    task = asyncio.create_task(feed(element))
    yield element
    task.cancel()
    try:
        await task
    except asyncio.CancelledError:
        pass
