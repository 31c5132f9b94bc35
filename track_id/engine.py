"""
Track Identifier

Owns the identification pipeline for one playback session:

    capture graph -> record -> identify -> dedup -> history

Manual and automatic attempts share a single-flight guard: at most one
capture session is active at any time. Every pipeline error is caught here
and surfaced on the status line; nothing propagates to the playback layer.
"""

import asyncio
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional

from logging_config import get_logger
from .client import IdentificationClient
from .dedup import DuplicateFilter
from .errors import AlreadyInProgressError, CaptureSetupError, TrackIdError, UnsupportedFormatError
from .graph import CaptureGraphBuilder
from .helpers import create_tracked_task
from .history import TrackHistory
from .models import CaptureSession, IdentifyConfig, SessionState, Track
from .player import ConnectionStatus, PlaybackSource
from .recorder import Recorder
from .scheduler import AutoIdentifyScheduler
from .status import StatusLevel, StatusLine

logger = get_logger(__name__)

MSG_CONNECTING = "Connecting to stream..."
MSG_CONNECTED = "Connected! Ready to identify tracks."
MSG_STOPPED = "Playback stopped."
MSG_NOT_PLAYING = "Please start playing the stream first"
MSG_NOT_AVAILABLE = "Track identification is not available for this account."
MSG_CAPTURING = "Capturing audio from stream..."
MSG_ANALYZING = "Analyzing audio fingerprint..."
MSG_NO_MATCH = "No match found. Try again in a few seconds."
MSG_DUPLICATE = "Track already identified recently."


class OutcomeKind(Enum):
    ACCEPTED = "accepted"
    DUPLICATE = "duplicate"
    NO_MATCH = "no_match"
    FAILED = "failed"
    NOT_READY = "not_ready"


@dataclass
class IdentifyOutcome:
    kind: OutcomeKind
    track: Optional[Track] = None
    error: Optional[BaseException] = None
    message: str = ""

    def to_dict(self) -> dict:
        return {
            "result": self.kind.value,
            "track": self.track.to_dict() if self.track else None,
            "message": self.message,
        }


class TrackIdentifier:
    """
    Pipeline controller.

    Args:
        player: Playback source adapter
        graph_builder: Capture graph builder shared with the player
        recorder: Recorder for one sample at a time
        client: Identification client
        dedup: Duplicate filter (2h window by default)
        history: Track history (50 entries by default)
        status: Status line
        config: Pipeline tunables (tick interval)
        access_gate: Returns False when the account may not identify tracks
        auto_identify: Initial state of the auto-identify toggle
    """

    def __init__(
        self,
        player: PlaybackSource,
        graph_builder: CaptureGraphBuilder,
        recorder: Recorder,
        client: IdentificationClient,
        dedup: Optional[DuplicateFilter] = None,
        history: Optional[TrackHistory] = None,
        status: Optional[StatusLine] = None,
        config: Optional[IdentifyConfig] = None,
        access_gate: Optional[Callable[[], bool]] = None,
        auto_identify: bool = True,
    ):
        self.config = config or IdentifyConfig()
        self.player = player
        self.graph_builder = graph_builder
        self.recorder = recorder
        self.client = client
        self.dedup = dedup or DuplicateFilter()
        self.history = history or TrackHistory(self.config.history_limit)
        self.status = status or StatusLine(self.config.status_clear_seconds)
        self._access_gate = access_gate or (lambda: True)

        self.scheduler = AutoIdentifyScheduler(self._on_tick, self.config.tick_interval_seconds)
        self._auto_enabled = auto_identify
        self._session: Optional[CaptureSession] = None
        self._current_track: Optional[Track] = None
        self._pipeline_task: Optional[asyncio.Task] = None
        self._format_unsupported = False
        self._setup_blocked = False

        player.add_listener(self._on_connection_change)

    # =========================================================================
    # Properties
    # =========================================================================

    @property
    def is_available(self) -> bool:
        """Access gate (subscriber tier precondition)."""
        try:
            return bool(self._access_gate())
        except Exception as e:
            logger.error(f"Access gate check failed: {e}")
            return False

    @property
    def is_identifying(self) -> bool:
        # In flight from session creation until a terminal state, IDLE included
        return self._session is not None and not self._session.is_terminal

    @property
    def can_identify(self) -> bool:
        return self.is_available and not self._format_unsupported and self.player.is_playing

    @property
    def auto_identify(self) -> bool:
        return self._auto_enabled

    @property
    def current_track(self) -> Optional[Track]:
        return self._current_track

    @property
    def session(self) -> Optional[CaptureSession]:
        return self._session

    # =========================================================================
    # Playback controls
    # =========================================================================

    async def start_playback(self) -> None:
        """
        Raises:
            StreamConnectionError: stream could not be opened
        """
        # A new user gesture may retry a failed audio setup
        self._setup_blocked = False
        await self.player.start()

    async def stop_playback(self) -> None:
        """Stop playback. An attempt in flight completes and is still recorded."""
        await self.player.stop()

    def set_volume(self, volume: float) -> None:
        self.player.set_volume(volume)

    def set_muted(self, muted: bool) -> None:
        self.player.set_muted(muted)

    def set_auto_identify(self, enabled: bool) -> None:
        self._auto_enabled = bool(enabled)
        logger.info(f"Auto-identify {'enabled' if self._auto_enabled else 'disabled'}")
        self._refresh_scheduler()

    # =========================================================================
    # History
    # =========================================================================

    def clear_history(self) -> None:
        self.history.clear()
        self._current_track = None

    def remove_track(self, track_id: str) -> bool:
        removed = self.history.remove(track_id)
        if removed and self._current_track is not None and self._current_track.id == track_id:
            self._current_track = self.history.latest
        return removed

    # =========================================================================
    # Identification
    # =========================================================================

    async def identify_now(self) -> IdentifyOutcome:
        """
        Manual identification (user gesture).

        Raises:
            AlreadyInProgressError: an attempt is already running
        """
        self._setup_blocked = False
        try:
            return await self.identify()
        except AlreadyInProgressError as e:
            self.status.flash(e.status_message, StatusLevel.INFO)
            raise

    async def identify(self) -> IdentifyOutcome:
        """
        Run one identification attempt end-to-end.

        Returns:
            IdentifyOutcome describing what happened

        Raises:
            AlreadyInProgressError: an attempt is already running
        """
        if self.is_identifying:
            raise AlreadyInProgressError("Identification already in progress")

        if not self.is_available:
            return self._not_ready(MSG_NOT_AVAILABLE)
        if self._format_unsupported:
            return self._not_ready(UnsupportedFormatError.status_message)
        if not self.player.is_playing:
            return self._not_ready(MSG_NOT_PLAYING)

        session = CaptureSession(window_seconds=self.recorder.record_seconds)
        self._session = session
        self._refresh_scheduler()
        try:
            return await self._run_pipeline(session)
        except asyncio.CancelledError:
            if not session.is_terminal:
                session.fail(asyncio.CancelledError())
            raise
        finally:
            self._refresh_scheduler()

    async def _run_pipeline(self, session: CaptureSession) -> IdentifyOutcome:
        try:
            session.advance(SessionState.SETTING_UP_GRAPH)
            self.status.show(MSG_CAPTURING, StatusLevel.PROGRESS)
            stream = await self.graph_builder.ensure_graph(self.player.element)

            sample = await self.recorder.record(stream, session)

            session.advance(SessionState.SUBMITTING)
            self.status.show(MSG_ANALYZING, StatusLevel.PROGRESS)
            track = await self.client.identify(sample)
        except UnsupportedFormatError as e:
            self._format_unsupported = True
            logger.error(f"Disabling identification: {e}")
            return self._fail(session, e)
        except CaptureSetupError as e:
            # No automatic retry; a manual attempt or a new playback start clears this
            self._setup_blocked = True
            return self._fail(session, e)
        except TrackIdError as e:
            return self._fail(session, e)
        except Exception as e:
            logger.error(f"Unexpected identification failure: {e}", exc_info=True)
            return self._fail(session, e)

        session.finish()

        if track is None:
            logger.info("No match found")
            self.status.show(MSG_NO_MATCH, StatusLevel.WARNING)
            return IdentifyOutcome(OutcomeKind.NO_MATCH, message=MSG_NO_MATCH)

        if self.dedup.is_duplicate(track, self.history):
            logger.info(f"Duplicate suppressed: {track}")
            self.status.show(MSG_DUPLICATE, StatusLevel.INFO)
            return IdentifyOutcome(OutcomeKind.DUPLICATE, track=track, message=MSG_DUPLICATE)

        self.history.add(track)
        self._current_track = track
        message = f"Track identified: {track.title}"
        logger.info(f"Identified via {track.service}: {track} (confidence: {track.confidence_percent})")
        self.status.show(message, StatusLevel.SUCCESS, clear_after=max(self.status.clear_after, 5.0))
        return IdentifyOutcome(OutcomeKind.ACCEPTED, track=track, message=message)

    def _fail(self, session: CaptureSession, error: BaseException) -> IdentifyOutcome:
        session.fail(error)
        message = getattr(error, "status_message", TrackIdError.status_message)
        logger.warning(f"Identification failed in {self._failed_stage(session)}: {error}")
        self.status.show(message, StatusLevel.ERROR, clear_after=max(self.status.clear_after, 5.0))
        return IdentifyOutcome(OutcomeKind.FAILED, error=error, message=message)

    @staticmethod
    def _failed_stage(session: CaptureSession) -> str:
        if session.byte_size is not None:
            return "submit"
        if session.encoding is not None:
            return "recording"
        return "setup"

    def _not_ready(self, message: str) -> IdentifyOutcome:
        self.status.show(message, StatusLevel.INFO)
        return IdentifyOutcome(OutcomeKind.NOT_READY, message=message)

    # =========================================================================
    # Scheduling
    # =========================================================================

    def _on_tick(self) -> None:
        self._pipeline_task = create_tracked_task(self._auto_identify(), name="auto-identify")

    async def _auto_identify(self) -> None:
        try:
            await self.identify()
        except AlreadyInProgressError:
            logger.debug("Auto-identify tick skipped, attempt already running")
            self._refresh_scheduler()

    def _refresh_scheduler(self) -> None:
        enabled = (
            self._auto_enabled
            and self.is_available
            and not self._format_unsupported
            and not self._setup_blocked
        )
        self.scheduler.refresh(
            enabled=enabled,
            connected=self.player.is_playing,
            in_flight=self.is_identifying,
        )

    def _on_connection_change(self, status: ConnectionStatus) -> None:
        if status == ConnectionStatus.CONNECTING:
            self.status.show(MSG_CONNECTING, StatusLevel.PROGRESS)
        elif status == ConnectionStatus.CONNECTED:
            self.status.show(MSG_CONNECTED, StatusLevel.SUCCESS)
        elif status == ConnectionStatus.ERROR:
            self.status.show("Stream connection failed.", StatusLevel.ERROR)
        elif status == ConnectionStatus.IDLE:
            self.status.show(MSG_STOPPED, StatusLevel.INFO)
        self._refresh_scheduler()

    # =========================================================================
    # Status / lifecycle
    # =========================================================================

    def get_status(self) -> dict:
        usage = {}
        for backend in self.client.backends:
            stats = getattr(backend, "get_usage_stats", None)
            if stats is not None:
                usage[backend.name] = stats()

        return {
            "available": self.is_available,
            "connection_status": self.player.connection_status.value,
            "is_playing": self.player.is_playing,
            "volume": self.player.volume,
            "muted": self.player.muted,
            "can_identify": self.can_identify,
            "is_identifying": self.is_identifying,
            "auto_identify": self._auto_enabled,
            "scheduler_state": self.scheduler.state.value,
            "session": self._session.to_dict() if self._session else None,
            "status": self.status.to_dict(),
            "current_track": self._current_track.to_dict() if self._current_track else None,
            "history_count": len(self.history),
            "backends": [backend.name for backend in self.client.available_backends()],
            "usage": usage,
        }

    async def shutdown(self) -> None:
        """Cancel the timer and any attempt, stop playback, release backends."""
        logger.info("Shutting down track identifier...")
        self.scheduler.shutdown()
        task = self._pipeline_task
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        try:
            await self.player.stop()
        except Exception as e:
            logger.debug(f"Error stopping playback: {e}")
        await self.graph_builder.close()
        await self.client.close()
