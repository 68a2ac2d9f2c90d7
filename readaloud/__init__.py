"""
ComiCast read-aloud core.

Reading-order sequencing, look-ahead page analysis, the playback state
machine, and narration into an audio file.
"""

from .session import ReaderSession, SessionConfig, SessionResult, export_audio
from .settings import ReaderSettings, clear_settings, load_settings, save_settings

__all__ = [
    "ReaderSession",
    "SessionConfig",
    "SessionResult",
    "export_audio",
    "ReaderSettings",
    "clear_settings",
    "load_settings",
    "save_settings",
]
