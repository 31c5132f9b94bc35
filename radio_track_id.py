"""
Radio Track ID - identify what is playing on a live radio stream.

Entry point: builds the pipeline, serves the HTTP API with Hypercorn and
shuts everything down cleanly on Ctrl+C.
"""
import asyncio
import signal
from datetime import timedelta

from hypercorn.asyncio import serve
from hypercorn.config import Config

from config import ACRCLOUD, ARTWORK, DEBUG, FEATURES, IDENTIFY, SERVER, SHAZAM, STREAM, VERSION
from logging_config import get_logger, setup_logging
from server import create_app
from track_id import (
    ACRCloudBackend,
    ArtworkLookup,
    AudioOutput,
    CaptureGraphBuilder,
    DuplicateFilter,
    IdentificationClient,
    IdentifyConfig,
    MediaEncoders,
    PlaybackSource,
    Recorder,
    ShazamBackend,
    StatusLine,
    StreamConnectionError,
    StreamElement,
    TrackHistory,
    TrackIdentifier,
)
from track_id.helpers import shutdown_daemon_executor

logger = get_logger(__name__)


def build_identifier(stream_url: str, audio_output: bool, auto_identify: bool) -> TrackIdentifier:
    """Wire every collaborator from config. No module-level singletons."""
    config = IdentifyConfig.from_mapping(IDENTIFY)
    sample_rate = STREAM["sample_rate"]
    channels = STREAM["channels"]

    output_factory = None
    element_output = None
    if audio_output:
        if AudioOutput.is_available():
            device = STREAM.get("output_device")
            element_output = AudioOutput(sample_rate, channels, device)
            output_factory = lambda rate, ch: AudioOutput(rate, ch, device)
        else:
            logger.warning("sounddevice not available, running headless (no audible output)")

    element = StreamElement(
        stream_url,
        sample_rate=sample_rate,
        channels=channels,
        ffmpeg_path=STREAM["ffmpeg_path"],
        output=element_output,
        connect_timeout=float(STREAM["connect_timeout"]),
    )
    graph_builder = CaptureGraphBuilder(output_factory)
    player = PlaybackSource(element, graph_builder, volume=float(STREAM["initial_volume"]))

    recorder = Recorder(
        MediaEncoders.default(STREAM["ffmpeg_path"]),
        preferred_encodings=config.preferred_encodings,
        record_seconds=config.record_seconds,
        chunk_seconds=config.chunk_seconds,
        min_sample_bytes=config.min_sample_bytes,
    )

    backends = [
        ACRCloudBackend(
            host=ACRCLOUD["host"],
            access_key=ACRCLOUD["access_key"],
            access_secret=ACRCLOUD["access_secret"],
            timeout=ACRCLOUD["timeout"],
            daily_limit=int(ACRCLOUD["daily_limit"]),
        ),
        ShazamBackend(enabled=bool(SHAZAM["enabled"])),
    ]
    artwork = None
    if ARTWORK["enabled"]:
        artwork = ArtworkLookup(ARTWORK["search_url"], size=int(ARTWORK["size"]), timeout=ARTWORK["timeout"])

    return TrackIdentifier(
        player=player,
        graph_builder=graph_builder,
        recorder=recorder,
        client=IdentificationClient(backends, artwork),
        dedup=DuplicateFilter(timedelta(seconds=config.dedup_window_seconds)),
        history=TrackHistory(config.history_limit),
        status=StatusLine(config.status_clear_seconds),
        config=config,
        access_gate=lambda: bool(FEATURES["track_identification"]),
        auto_identify=auto_identify,
    )


async def main(args) -> None:
    identifier = build_identifier(
        stream_url=args.stream_url,
        audio_output=not args.no_audio_output,
        auto_identify=not args.no_auto_identify,
    )
    app = create_app(identifier)

    hypercorn_config = Config()
    hypercorn_config.bind = [f"{args.host}:{args.port}"]
    hypercorn_config.use_reloader = False
    hypercorn_config.ignore_keyboard_interrupt = True
    hypercorn_config.graceful_timeout = 2
    hypercorn_config.accesslog = None

    shutdown_event = asyncio.Event()
    loop = asyncio.get_running_loop()

    def handle_interrupt(signum, frame):
        logger.info("Received interrupt, shutting down...")
        loop.call_soon_threadsafe(shutdown_event.set)

    signal.signal(signal.SIGINT, handle_interrupt)
    signal.signal(signal.SIGTERM, handle_interrupt)

    if args.play:
        try:
            await identifier.start_playback()
        except StreamConnectionError as e:
            logger.error(f"Could not start playback: {e}")

    logger.info(f"Radio Track ID {VERSION} listening on http://{args.host}:{args.port}")
    try:
        await serve(app, hypercorn_config, shutdown_trigger=shutdown_event.wait)
    finally:
        logger.info("Cleaning up resources...")
        try:
            await asyncio.wait_for(identifier.shutdown(), timeout=5.0)
        except asyncio.TimeoutError:
            logger.warning("Shutdown timed out - forcing exit")
        shutdown_daemon_executor()


if __name__ == "__main__":
    import argparse
    parser = argparse.ArgumentParser(description='Radio Track ID - identify tracks on a live radio stream')
    parser.add_argument('--stream-url', default=STREAM["url"], help='Radio stream URL')
    parser.add_argument('--host', default=SERVER["host"], help='Bind address')
    parser.add_argument('--port', type=int, default=int(SERVER["port"]), help='HTTP port')
    parser.add_argument('--no-audio-output', action='store_true',
                        help='Run headless (do not play the stream on the sound device)')
    parser.add_argument('--no-auto-identify', action='store_true',
                        help='Only identify on demand')
    parser.add_argument('--play', action='store_true', help='Start playback immediately')
    args = parser.parse_args()

    if not STREAM["audio_output"]:
        args.no_audio_output = True
    if not IDENTIFY["auto_identify"]:
        args.no_auto_identify = True

    setup_logging(
        console_level=DEBUG.get("log_level", "INFO"),
        file_level="DEBUG" if DEBUG.get("enabled", False) else "INFO",
        log_file=DEBUG.get("log_file", "radio_track_id.log"),
        log_recognition=DEBUG.get("log_recognition", True),
    )

    try:
        logger.info("Starting Radio Track ID...")
        asyncio.run(main(args))
    except KeyboardInterrupt:
        logger.info("Keyboard interrupt caught in main...")
    except Exception as e:
        logger.error(f"Unexpected error: {e}", exc_info=True)
        raise
