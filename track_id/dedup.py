"""Duplicate suppression for identified tracks."""

from datetime import timedelta
from typing import Iterable

from .models import Track


def _normalize(value: str) -> str:
    return value.lower().strip()


class DuplicateFilter:
    """
    A candidate is a duplicate when a history entry has the same title and
    artist (case-insensitive) and was identified less than `window` apart.
    """

    DEFAULT_WINDOW = timedelta(hours=2)

    def __init__(self, window: timedelta = DEFAULT_WINDOW):
        self.window = window

    def is_duplicate(self, candidate: Track, history: Iterable[Track]) -> bool:
        title = _normalize(candidate.title)
        artist = _normalize(candidate.artist)
        for entry in history:
            if _normalize(entry.title) != title or _normalize(entry.artist) != artist:
                continue
            if abs(candidate.timestamp - entry.timestamp) < self.window:
                return True
        return False
