"""
Reader settings: voice parameters and the default reading mode.

Settings are stored as a small JSON file.  Missing keys fall back to
the defaults, and an unreadable file yields the defaults with a logged
error rather than failing.
"""

import json
import logging
from dataclasses import asdict, dataclass, fields, replace
from pathlib import Path
from typing import Optional, Union

from readaloud.layout.models import ReadingMode

logger = logging.getLogger(__name__)

DEFAULT_SETTINGS_PATH = Path.home() / ".config" / "comicast" / "settings.json"


@dataclass(frozen=True)
class ReaderSettings:
    """
    Attributes:
        rate:                 Speech rate multiplier (1.0 = normal).
        pitch:                Pitch multiplier (1.0 = unchanged).
        voice:                Voice identifier, ``None`` for the engine default.
        default_reading_mode: Mode a newly opened book starts in.
    """

    rate: float = 1.0
    pitch: float = 1.0
    voice: Optional[str] = None
    default_reading_mode: ReadingMode = ReadingMode.MANGA

    def to_dict(self) -> dict:
        data = asdict(self)
        data["default_reading_mode"] = self.default_reading_mode.value
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "ReaderSettings":
        """Build settings from *data*, ignoring unknown keys."""
        known = {f.name for f in fields(cls)}
        values = {k: v for k, v in data.items() if k in known}
        if "default_reading_mode" in values:
            values["default_reading_mode"] = ReadingMode.parse(
                str(values["default_reading_mode"])
            )
        for key in ("rate", "pitch"):
            if key in values:
                values[key] = float(values[key])
        return replace(cls(), **values)


def load_settings(path: Union[str, Path] = DEFAULT_SETTINGS_PATH) -> ReaderSettings:
    """Load settings from *path*, merged over the defaults."""
    path = Path(path)
    if not path.exists():
        return ReaderSettings()
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
        if not isinstance(data, dict):
            raise ValueError("settings file must contain a JSON object")
        return ReaderSettings.from_dict(data)
    except (OSError, ValueError, TypeError) as e:
        logger.error("Failed to load settings from %s: %s", path, e)
        return ReaderSettings()


def save_settings(
    settings: ReaderSettings, path: Union[str, Path] = DEFAULT_SETTINGS_PATH
) -> bool:
    """
    Write *settings* to *path*.  Failures are logged, not raised.

    Returns:
        True if the file was written.
    """
    path = Path(path)
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(settings.to_dict(), indent=2), encoding="utf-8")
    except OSError as e:
        logger.error("Failed to save settings to %s: %s", path, e)
        return False
    return True


def clear_settings(path: Union[str, Path] = DEFAULT_SETTINGS_PATH) -> bool:
    """
    Remove the settings file so the defaults apply again.  Failures are
    logged, not raised.

    Returns:
        True if no settings file remains at *path*.
    """
    path = Path(path)
    try:
        path.unlink(missing_ok=True)
    except OSError as e:
        logger.error("Failed to clear settings at %s: %s", path, e)
        return False
    return True
