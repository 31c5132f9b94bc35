"""Tests for the capture graph, encoders and recorder"""
import asyncio
import io
import wave

import numpy as np
import pytest

from conftest import CHANNELS, SAMPLE_RATE, BrokenOutput, FakeElement, OnlyTypes, noise_block
from track_id.encoders import FfmpegEncoder, MediaEncoders, WavEncoder, parse_ffmpeg_listing
from track_id.errors import (
    AlreadyInProgressError,
    CaptureSetupError,
    InsufficientAudioError,
    UnsupportedFormatError,
)
from track_id.graph import CaptureGraphBuilder
from track_id.models import CaptureSession, SessionState
from track_id.recorder import Recorder
from track_id.stream import apply_gain


# --- Graph ---

async def test_graph_is_built_once(element, graph_builder):
    stream = await graph_builder.ensure_graph(element)
    again = await graph_builder.ensure_graph(element)
    assert stream is again
    assert element.sink is not None
    assert graph_builder.graph.context.state == "running"


async def test_graph_rejects_second_element(element, graph_builder):
    await graph_builder.ensure_graph(element)
    with pytest.raises(CaptureSetupError):
        await graph_builder.ensure_graph(FakeElement())


async def test_context_failure_does_not_consume_attachment(element):
    builder = CaptureGraphBuilder(output_factory=lambda rate, ch: BrokenOutput())
    with pytest.raises(CaptureSetupError):
        await builder.ensure_graph(element)
    assert element.sink is None
    assert not builder.is_built


async def test_already_captured_element_is_setup_error(element, graph_builder):
    element.capture_source(lambda data: None)
    with pytest.raises(CaptureSetupError):
        await graph_builder.ensure_graph(element)


async def test_tap_receives_audio_through_gain(element, graph_builder):
    await element.play()
    stream = await graph_builder.ensure_graph(element)
    reader = stream.open_reader()
    block = noise_block()

    await element.emit(block)
    assert reader.get_nowait() == block

    graph_builder.set_gain(0.7, muted=True)
    await element.emit(block)
    assert reader.get_nowait() == bytes(len(block))
    stream.close_reader(reader)


def test_apply_gain_scales_and_clips():
    pcm = np.array([1000, -1000, 30000], dtype=np.int16).tobytes()
    half = np.frombuffer(apply_gain(pcm, 0.5), dtype=np.int16)
    assert list(half) == [500, -500, 15000]
    loud = np.frombuffer(apply_gain(pcm, 2.0), dtype=np.int16)
    assert loud[2] == 32767
    assert apply_gain(pcm, 1.0) is pcm


# --- Encoders ---

def test_wav_encoder_produces_valid_wav():
    pcm = noise_block()
    data = WavEncoder().encode(pcm, SAMPLE_RATE, CHANNELS)
    with wave.open(io.BytesIO(data), 'rb') as wf:
        assert wf.getframerate() == SAMPLE_RATE
        assert wf.getnchannels() == CHANNELS
        assert wf.readframes(wf.getnframes()) == pcm


def test_parse_ffmpeg_listing():
    output = (
        "File formats:\n"
        " D. = Demuxing supported\n"
        " .E = Muxing supported\n"
        " --\n"
        "  E mov,mp4,m4a        QuickTime / MOV\n"
        "  E webm            WebM\n"
    )
    assert parse_ffmpeg_listing(output) == {"mov", "mp4", "m4a", "webm"}


def test_ffmpeg_encoder_without_binary_supports_nothing():
    encoder = FfmpegEncoder(ffmpeg_path="definitely-not-ffmpeg-binary")
    assert not encoder.is_available()
    assert not encoder.supports("audio/webm;codecs=opus")
    assert not encoder.supports("audio/wav")


# --- Recorder ---

def test_negotiation_walks_preference_list():
    encoders = MediaEncoders([OnlyTypes("audio/mp4", "audio/wav")])
    recorder = Recorder(encoders, preferred_encodings=("audio/webm;codecs=opus", "audio/webm", "audio/mp4", "audio/wav"))
    assert recorder.negotiate_encoding() == "audio/mp4"


def test_negotiation_fails_when_nothing_is_supported():
    recorder = Recorder(MediaEncoders([OnlyTypes()]), preferred_encodings=("audio/webm",))
    with pytest.raises(UnsupportedFormatError):
        recorder.negotiate_encoding()


async def test_record_produces_encoded_sample(feeding, graph_builder, recorder):
    await feeding.play()
    stream = await graph_builder.ensure_graph(feeding)
    session = CaptureSession(window_seconds=recorder.record_seconds)
    session.advance(SessionState.SETTING_UP_GRAPH)

    sample = await recorder.record(stream, session)

    assert sample.mime_type == "audio/wav"
    assert sample.size >= 1000
    assert sample.completed_at >= sample.started_at
    assert 0 < sample.duration <= recorder.record_seconds + 1e-6
    assert session.state == SessionState.ENCODING
    assert session.encoding == "audio/wav"
    assert session.byte_size == sample.size
    assert stream.reader_count == 0


async def test_record_rejects_tiny_sample(element, graph_builder, wav_only_encoders):
    await element.play()
    stream = await graph_builder.ensure_graph(element)
    recorder = Recorder(wav_only_encoders, ("audio/wav",), record_seconds=0.1, min_sample_bytes=5000)
    # nothing is fed: only the WAV header comes out
    with pytest.raises(InsufficientAudioError) as exc_info:
        await recorder.record(stream)
    assert exc_info.value.size < 5000
    assert not recorder.is_recording


async def test_second_concurrent_record_is_rejected(feeding, graph_builder, recorder):
    await feeding.play()
    stream = await graph_builder.ensure_graph(feeding)
    first = asyncio.create_task(recorder.record(stream))
    await asyncio.sleep(0.05)
    with pytest.raises(AlreadyInProgressError):
        await recorder.record(stream)
    sample = await first
    assert sample.size > 0
