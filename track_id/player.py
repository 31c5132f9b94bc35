"""
Playback Source Adapter

Owns the playback element's lifecycle: connect/disconnect, volume and mute,
and the connection status the rest of the pipeline keys off.
"""

from enum import Enum
from typing import Callable, List, Optional

from logging_config import get_logger
from .errors import StreamConnectionError
from .graph import CaptureGraphBuilder

logger = get_logger(__name__)


class ConnectionStatus(Enum):
    IDLE = "idle"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    ERROR = "error"


class PlaybackSource:
    """
    Wraps a StreamElement.

    Volume and mute changes are written through to the element and to the
    capture graph's gain stage immediately, so they are audible both before
    and after the graph exists.
    """

    def __init__(
        self,
        element,
        graph_builder: Optional[CaptureGraphBuilder] = None,
        volume: float = 0.7,
        muted: bool = False,
    ):
        self.element = element
        self.graph_builder = graph_builder
        self._status = ConnectionStatus.IDLE
        self._listeners: List[Callable[[ConnectionStatus], None]] = []
        self._volume = volume
        self._muted = muted
        self._last_error: Optional[str] = None

        element.add_event_listener("ended", self._on_element_dropped)
        element.add_event_listener("error", self._on_element_dropped)
        self._apply_volume()

    @property
    def connection_status(self) -> ConnectionStatus:
        return self._status

    @property
    def is_playing(self) -> bool:
        return self._status == ConnectionStatus.CONNECTED and not self.element.paused

    @property
    def volume(self) -> float:
        return self._volume

    @property
    def muted(self) -> bool:
        return self._muted

    @property
    def last_error(self) -> Optional[str]:
        return self._last_error

    def add_listener(self, callback: Callable[[ConnectionStatus], None]) -> None:
        self._listeners.append(callback)

    async def start(self) -> None:
        """
        Connect to the stream and start playback.

        Raises:
            StreamConnectionError: stream unreachable or no audio arrived
        """
        if self.is_playing:
            return

        self._set_status(ConnectionStatus.CONNECTING)
        try:
            await self.element.play()
        except Exception as e:
            self._last_error = str(e) or e.__class__.__name__
            logger.error(f"Stream connection failed: {self._last_error}")
            self._set_status(ConnectionStatus.ERROR)
            raise StreamConnectionError(f"Could not connect to stream: {self._last_error}") from e

        self._last_error = None
        self._set_status(ConnectionStatus.CONNECTED)

    async def stop(self) -> None:
        await self.element.pause()
        self._set_status(ConnectionStatus.IDLE)

    def set_volume(self, volume: float) -> None:
        if not 0.0 <= volume <= 1.0:
            raise ValueError(f"volume must be within [0, 1], got {volume}")
        self._volume = volume
        self._apply_volume()

    def set_muted(self, muted: bool) -> None:
        self._muted = bool(muted)
        self._apply_volume()

    def _apply_volume(self) -> None:
        self.element.volume = self._volume
        self.element.muted = self._muted
        if self.graph_builder is not None:
            self.graph_builder.set_gain(self._volume, self._muted)

    def _on_element_dropped(self, payload) -> None:
        if self._status != ConnectionStatus.CONNECTED:
            return
        self._last_error = str(payload) if payload else "Stream ended"
        logger.warning(f"Stream connection dropped: {self._last_error}")
        self._set_status(ConnectionStatus.ERROR)

    def _set_status(self, status: ConnectionStatus) -> None:
        if status == self._status:
            return
        old = self._status
        self._status = status
        logger.debug(f"Connection status: {old.value} -> {status.value}")
        for callback in list(self._listeners):
            try:
                callback(status)
            except Exception as e:
                logger.error(f"Error in connection status callback: {e}")
