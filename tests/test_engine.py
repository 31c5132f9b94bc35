"""End-to-end tests for the identification pipeline controller"""
import asyncio
from datetime import timedelta
from unittest.mock import MagicMock

import pytest

from conftest import ACR_HIT, BrokenOutput, FakeElement, OnlyTypes, acr_response, make_acr, make_match, make_track
from track_id.client import IdentificationClient
from track_id.encoders import MediaEncoders
from track_id.engine import OutcomeKind, TrackIdentifier
from track_id.errors import (
    AlreadyInProgressError,
    CaptureSetupError,
    InsufficientAudioError,
    StreamConnectionError,
    UnsupportedFormatError,
)
from track_id.graph import CaptureGraphBuilder
from track_id.models import IdentifyConfig, SessionState, utcnow
from track_id.player import ConnectionStatus, PlaybackSource
from track_id.recorder import Recorder
from track_id.scheduler import SchedulerState
from track_id.status import StatusLine


async def wait_for(predicate, timeout=2.0):
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached")
        await asyncio.sleep(0.01)


def build_identifier(element, recorder, backends, graph_builder=None, **kwargs):
    graph_builder = graph_builder or CaptureGraphBuilder()
    player = PlaybackSource(element, graph_builder, volume=1.0)
    return TrackIdentifier(
        player=player,
        graph_builder=graph_builder,
        recorder=recorder,
        client=IdentificationClient(backends),
        config=IdentifyConfig(),
        auto_identify=False,
        **kwargs,
    )


# --- Scenarios ---

async def test_accepted_track_end_to_end(feeding, recorder):
    session = MagicMock()
    session.post.return_value = acr_response(ACR_HIT)
    identifier = build_identifier(feeding, recorder, [make_acr(session)])
    await identifier.start_playback()

    outcome = await identifier.identify()

    assert outcome.kind == OutcomeKind.ACCEPTED
    track = identifier.history.latest
    assert track is outcome.track
    assert track.title == "Strobe"
    assert track.confidence_percent == 92
    assert track.service == "ACRCloud"
    assert identifier.current_track is track
    assert identifier.session.state == SessionState.DONE
    assert identifier.status.message == "Track identified: Strobe"
    assert not identifier.is_identifying


async def test_duplicate_is_suppressed(identifier, backend, feeding):
    identifier.history.add(make_track(timestamp=utcnow() - timedelta(minutes=30)))
    backend.results = [make_match(title="strobe", artist="DEADMAU5")]
    await identifier.start_playback()

    outcome = await identifier.identify()

    assert outcome.kind == OutcomeKind.DUPLICATE
    assert len(identifier.history) == 1
    assert identifier.status.message == "Track already identified recently."


async def test_repeat_after_window_is_accepted(identifier, backend, feeding):
    identifier.history.add(make_track(timestamp=utcnow() - timedelta(hours=3)))
    backend.results = [make_match()]
    await identifier.start_playback()

    outcome = await identifier.identify()

    assert outcome.kind == OutcomeKind.ACCEPTED
    assert len(identifier.history) == 2


async def test_tiny_sample_never_reaches_service(element, wav_only_encoders, backend):
    recorder = Recorder(wav_only_encoders, ("audio/wav",), record_seconds=0.2, chunk_seconds=0.1, min_sample_bytes=5000)
    identifier = build_identifier(element, recorder, [backend])
    await identifier.start_playback()

    outcome = await identifier.identify()

    assert outcome.kind == OutcomeKind.FAILED
    assert isinstance(outcome.error, InsufficientAudioError)
    assert backend.samples == []
    assert identifier.session.state == SessionState.FAILED
    assert identifier.status.message == "Audio sample too small. Increase volume."
    assert len(identifier.history) == 0


async def test_negative_result_leaves_history_untouched(identifier, backend, feeding):
    backend.results = [None]
    await identifier.start_playback()

    outcome = await identifier.identify()

    assert outcome.kind == OutcomeKind.NO_MATCH
    assert len(identifier.history) == 0
    assert identifier.status.message == "No match found. Try again in a few seconds."
    assert len(backend.samples) == 1


async def test_service_error_is_reported(identifier, backend, feeding):
    from track_id.errors import IdentificationServiceError
    backend.results = [IdentificationServiceError("HTTP 500")]
    await identifier.start_playback()

    outcome = await identifier.identify()

    assert outcome.kind == OutcomeKind.FAILED
    assert identifier.status.message == "Identification service error. Please try again."


async def test_single_flight(identifier, backend, feeding):
    backend.results = [make_match()]
    await identifier.start_playback()

    first = asyncio.create_task(identifier.identify())
    await asyncio.sleep(0.05)
    assert identifier.is_identifying

    with pytest.raises(AlreadyInProgressError):
        await identifier.identify()
    with pytest.raises(AlreadyInProgressError):
        await identifier.identify_now()

    outcome = await first
    assert outcome.kind == OutcomeKind.ACCEPTED
    assert len(backend.samples) == 1


async def test_busy_message_gives_way_to_progress(feeding, recorder, backend):
    identifier = build_identifier(feeding, recorder, [backend], status=StatusLine(clear_after=0.05))
    await identifier.start_playback()

    first = asyncio.create_task(identifier.identify())
    await asyncio.sleep(0.05)
    with pytest.raises(AlreadyInProgressError):
        await identifier.identify_now()
    assert identifier.status.message == "Already identifying..."

    await asyncio.sleep(0.08)
    assert identifier.is_identifying
    assert identifier.status.message == "Capturing audio from stream..."
    await first


async def test_not_playing_is_not_ready(identifier, backend):
    outcome = await identifier.identify()
    assert outcome.kind == OutcomeKind.NOT_READY
    assert identifier.session is None
    assert identifier.status.message == "Please start playing the stream first"
    assert backend.samples == []


async def test_access_gate_blocks_identification(element, recorder, backend):
    identifier = build_identifier(element, recorder, [backend], access_gate=lambda: False)
    await identifier.start_playback()
    outcome = await identifier.identify()
    assert outcome.kind == OutcomeKind.NOT_READY
    assert not identifier.can_identify


async def test_unsupported_format_disables_identification(element, backend):
    recorder = Recorder(MediaEncoders([OnlyTypes()]), ("audio/webm", "audio/wav"), record_seconds=0.2)
    identifier = build_identifier(element, recorder, [backend])
    await identifier.start_playback()

    outcome = await identifier.identify()
    assert outcome.kind == OutcomeKind.FAILED
    assert isinstance(outcome.error, UnsupportedFormatError)
    assert not identifier.can_identify

    again = await identifier.identify()
    assert again.kind == OutcomeKind.NOT_READY


async def test_capture_setup_failure_blocks_auto_identify(element, recorder, backend):
    builder = CaptureGraphBuilder(output_factory=lambda rate, ch: BrokenOutput())
    identifier = build_identifier(element, recorder, [backend], graph_builder=builder)
    await identifier.start_playback()

    outcome = await identifier.identify()
    assert isinstance(outcome.error, CaptureSetupError)
    assert identifier.status.message == "Audio setup failed. Start playback again to retry."

    identifier.set_auto_identify(True)
    assert identifier.scheduler.state == SchedulerState.DISABLED

    # a manual attempt is allowed again (and fails the same way)
    retry = await identifier.identify_now()
    assert isinstance(retry.error, CaptureSetupError)
    identifier.scheduler.shutdown()


# --- Scheduling ---

async def test_auto_identify_ticks_and_rearms(identifier, backend, feeding):
    backend.results = [make_match()]
    await identifier.start_playback()
    identifier.scheduler.interval = 0.05
    identifier.set_auto_identify(True)
    assert identifier.scheduler.state == SchedulerState.ARMED

    await wait_for(lambda: len(identifier.history) == 1 and not identifier.is_identifying)
    await wait_for(lambda: identifier.scheduler.state == SchedulerState.ARMED)

    await identifier.shutdown()
    assert not identifier.scheduler.has_pending_timer


async def test_stop_playback_cancels_timer(identifier):
    await identifier.start_playback()
    identifier.set_auto_identify(True)
    assert identifier.scheduler.has_pending_timer

    await identifier.stop_playback()

    assert identifier.scheduler.state == SchedulerState.DISABLED
    assert not identifier.scheduler.has_pending_timer


async def test_toggle_off_cancels_timer(identifier):
    await identifier.start_playback()
    identifier.set_auto_identify(True)
    identifier.set_auto_identify(False)
    assert not identifier.scheduler.has_pending_timer


async def test_manual_attempt_disarms_timer_until_done(identifier, backend, feeding):
    backend.results = [None]
    await identifier.start_playback()
    identifier.set_auto_identify(True)

    task = asyncio.create_task(identifier.identify_now())
    await asyncio.sleep(0.05)
    assert identifier.session.state == SessionState.RECORDING
    assert identifier.scheduler.state == SchedulerState.DISABLED
    assert not identifier.scheduler.has_pending_timer
    await task
    assert identifier.scheduler.state == SchedulerState.ARMED
    await identifier.shutdown()


async def test_timer_is_cancelled_as_soon_as_attempt_starts(identifier, backend, feeding):
    backend.results = [None]
    await identifier.start_playback()
    identifier.set_auto_identify(True)
    assert identifier.scheduler.has_pending_timer

    task = asyncio.create_task(identifier.identify())
    await asyncio.sleep(0)

    assert identifier.is_identifying
    assert identifier.scheduler.state == SchedulerState.DISABLED
    assert not identifier.scheduler.has_pending_timer
    await task
    await identifier.shutdown()


async def test_result_after_stop_is_still_recorded(identifier, backend, feeding):
    backend.results = [make_match()]
    await identifier.start_playback()

    task = asyncio.create_task(identifier.identify())
    await asyncio.sleep(0.15)
    await identifier.stop_playback()

    outcome = await task
    assert outcome.kind == OutcomeKind.ACCEPTED
    assert len(identifier.history) == 1


# --- Playback ---

async def test_connection_failure_raises_stream_error(recorder, backend):
    element = FakeElement(fail_play=OSError("connection refused"))
    identifier = build_identifier(element, recorder, [backend])

    with pytest.raises(StreamConnectionError):
        await identifier.start_playback()

    assert identifier.player.connection_status == ConnectionStatus.ERROR
    assert identifier.status.message == "Stream connection failed."


async def test_stream_drop_moves_to_error(identifier, element):
    await identifier.start_playback()
    element.paused = True
    element.fire("ended")
    assert identifier.player.connection_status == ConnectionStatus.ERROR
    assert not identifier.player.is_playing


async def test_volume_and_mute_reach_element_and_graph(identifier, element, graph_builder):
    await identifier.start_playback()
    await graph_builder.ensure_graph(element)

    identifier.set_volume(0.4)
    assert element.volume == 0.4
    assert graph_builder.graph.gain.gain == 0.4

    identifier.set_muted(True)
    assert element.muted is True
    assert graph_builder.graph.gain.gain == 0.0

    with pytest.raises(ValueError):
        identifier.set_volume(1.5)


async def test_history_controls(identifier):
    identifier.history.add(make_track(track_id="a"))
    identifier.history.add(make_track(track_id="b"))
    assert identifier.remove_track("b")
    assert not identifier.remove_track("missing")
    identifier.clear_history()
    assert len(identifier.history) == 0
    assert identifier.current_track is None


async def test_shutdown_closes_backends(identifier, backend):
    await identifier.start_playback()
    await identifier.shutdown()
    assert backend.closed
    assert not identifier.player.is_playing


async def test_status_snapshot(identifier):
    status = identifier.get_status()
    assert status["connection_status"] == "idle"
    assert status["is_identifying"] is False
    assert status["scheduler_state"] == "disabled"
    assert status["backends"] == ["ACRCloud"]
