"""
Track History

In-memory, most-recent-first list of accepted tracks. Bounded: adding past
the limit evicts the oldest entry.
"""

from collections import deque
from typing import Deque, Dict, Iterator, List, Optional

from logging_config import get_logger
from .models import Track

logger = get_logger(__name__)


class TrackHistory:
    DEFAULT_LIMIT = 50

    def __init__(self, limit: int = DEFAULT_LIMIT):
        if limit < 1:
            raise ValueError("limit must be at least 1")
        self.limit = limit
        self._tracks: Deque[Track] = deque(maxlen=limit)

    def add(self, track: Track) -> None:
        if len(self._tracks) == self.limit:
            evicted = self._tracks[-1]
            logger.debug(f"History full, evicting {evicted}")
        self._tracks.appendleft(track)

    def clear(self) -> None:
        self._tracks.clear()

    def remove(self, track_id: str) -> bool:
        """Remove the entry with track_id. Returns False if it was not there."""
        track = self.get(track_id)
        if track is None:
            return False
        self._tracks.remove(track)
        return True

    def get(self, track_id: str) -> Optional[Track]:
        for track in self._tracks:
            if track.id == track_id:
                return track
        return None

    @property
    def latest(self) -> Optional[Track]:
        return self._tracks[0] if self._tracks else None

    def __len__(self) -> int:
        return len(self._tracks)

    def __iter__(self) -> Iterator[Track]:
        return iter(self._tracks)

    def to_list(self) -> List[Dict]:
        return [track.to_dict() for track in self._tracks]
