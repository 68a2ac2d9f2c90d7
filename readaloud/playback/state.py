"""
Playback state and the read-only snapshot published to observers.
"""

from dataclasses import dataclass
from typing import Optional, Tuple

from readaloud.layout.models import ReadingMode


@dataclass
class PlaybackState:
    """Mutable playback position.  Owned and mutated by the driver only."""

    page_index: int = 0
    block_index: int = 0
    playing: bool = False

    # Block currently highlighted in the display
    active_block_id: Optional[str] = None

    # Block most recently handed to the narrator; guards re-entrant steps
    last_dispatched_id: Optional[str] = None

    # Playing, but the current page has not been analyzed yet
    waiting: bool = False


@dataclass(frozen=True)
class ReaderSnapshot:
    """Immutable view of the reader after a state transition."""

    page_index: int
    block_index: int
    active_block_id: Optional[str]
    playing: bool
    waiting: bool
    reading_mode: ReadingMode
    analyzed: Tuple[bool, ...]
    in_flight: Tuple[bool, ...]

    @property
    def page_count(self) -> int:
        return len(self.analyzed)

    def __repr__(self) -> str:
        status = "playing" if self.playing else "paused"
        if self.waiting:
            status = "waiting"
        return (
            f"ReaderSnapshot({status}, page={self.page_index + 1}/{self.page_count}, "
            f"block={self.block_index + 1}, mode={self.reading_mode.name})"
        )
