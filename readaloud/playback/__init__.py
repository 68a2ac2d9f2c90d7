"""Read-aloud playback state machine."""

from .driver import PlaybackDriver
from .state import PlaybackState, ReaderSnapshot

__all__ = [
    "PlaybackDriver",
    "PlaybackState",
    "ReaderSnapshot",
]
