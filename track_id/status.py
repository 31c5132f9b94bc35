"""
Status line shown to the user.

Transient messages expire after a few seconds; progress messages stay until
the operation in flight replaces them.
"""

import time
from enum import Enum
from typing import Callable, Optional, Tuple

from logging_config import get_logger

logger = get_logger(__name__)


class StatusLevel(Enum):
    INFO = "info"
    PROGRESS = "progress"
    SUCCESS = "success"
    WARNING = "warning"
    ERROR = "error"


class StatusLine:
    DEFAULT_CLEAR_AFTER = 3.0

    def __init__(self, clear_after: float = DEFAULT_CLEAR_AFTER, clock: Callable[[], float] = time.monotonic):
        self.clear_after = clear_after
        self._clock = clock
        self._message = ""
        self._level = StatusLevel.INFO
        self._expires_at: Optional[float] = None
        self._restore: Optional[Tuple[str, StatusLevel]] = None

    def show(self, message: str, level: StatusLevel = StatusLevel.INFO,
             clear_after: Optional[float] = None) -> None:
        """
        Replace the current message.

        Progress messages never expire on their own; every other level
        clears after `clear_after` seconds (instance default when None).
        """
        self._restore = None
        self._message = message
        self._level = level
        if level == StatusLevel.PROGRESS:
            self._expires_at = None
        else:
            delay = self.clear_after if clear_after is None else clear_after
            self._expires_at = self._clock() + delay
        logger.debug(f"Status [{level.value}]: {message}")

    def flash(self, message: str, level: StatusLevel = StatusLevel.INFO,
              clear_after: Optional[float] = None) -> None:
        """Show a transient message; a progress message underneath comes back when it expires."""
        self._expire()
        underneath = self._restore
        if self._level == StatusLevel.PROGRESS:
            underneath = (self._message, self._level)
        self.show(message, level, clear_after)
        self._restore = underneath

    def clear(self) -> None:
        self._message = ""
        self._level = StatusLevel.INFO
        self._expires_at = None
        self._restore = None

    def _expire(self) -> None:
        if self._expires_at is None or self._clock() < self._expires_at:
            return
        if self._restore is not None:
            self._message, self._level = self._restore
            self._expires_at = None
            self._restore = None
        else:
            self.clear()

    @property
    def message(self) -> str:
        self._expire()
        return self._message

    @property
    def level(self) -> StatusLevel:
        self._expire()
        return self._level

    def to_dict(self) -> dict:
        self._expire()
        return {"message": self._message, "level": self._level.value}
