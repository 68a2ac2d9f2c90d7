"""
Audio builder: assembles narrated blocks and silence gaps into a single
track, then exports MP3 or WAV plus a JSON cue sheet.

The cue sheet records where each block starts and ends in the track, so
a viewer can highlight the bubble being heard when the file is played
back.
"""

import io
import json
import logging
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import List

from pydub import AudioSegment
from pydub.effects import compress_dynamic_range

logger = logging.getLogger(__name__)


@dataclass
class Cue:
    """Position of one narrated block in the assembled track."""

    block_id: str
    page_index: int
    block_index: int
    start: float  # seconds
    end: float
    text: str = ""


class AudioBuilder:
    """
    Incrementally builds an audio track from WAV speech chunks and
    silence gaps.

    Usage::

        builder = AudioBuilder(sample_rate=24000)
        builder.add_speech(wav_bytes, cue=Cue("b1", 0, 0, 0, 0, "Hi!"))
        builder.add_silence(0.4)
        builder.normalize()
        builder.export_mp3("output.mp3")
        builder.export_cues("output.cues.json")
    """

    def __init__(self, sample_rate: int = 24000):
        self._sample_rate = sample_rate
        self._audio = AudioSegment.empty()
        self._cues: List[Cue] = []

    def add_silence(self, duration_seconds: float) -> None:
        """Append silence of the given duration."""
        if duration_seconds <= 0:
            return
        ms = int(duration_seconds * 1000)
        self._audio += AudioSegment.silent(duration=ms, frame_rate=self._sample_rate)

    def add_speech(self, wav_bytes: bytes, cue: Cue = None) -> None:
        """
        Append a WAV speech chunk.  If *cue* is given its ``start`` and
        ``end`` are filled in from the track position and it is recorded.
        """
        if not wav_bytes or len(wav_bytes) <= 44:
            return
        start = self.get_duration()
        self._audio += AudioSegment.from_wav(io.BytesIO(wav_bytes))
        if cue is not None:
            cue.start = start
            cue.end = self.get_duration()
            self._cues.append(cue)

    @property
    def cues(self) -> List[Cue]:
        return list(self._cues)

    def normalize(self, target_dBFS: float = -18.0) -> None:
        """Normalize volume to *target_dBFS*."""
        if len(self._audio) == 0:
            return
        current = self._audio.dBFS
        if current == float("-inf"):
            return
        self._audio = self._audio.apply_gain(target_dBFS - current)

    def enhance(self) -> None:
        """
        Gentle compression plus rumble removal.  Each step is optional;
        failures are logged and skipped.
        """
        if len(self._audio) == 0:
            return

        try:
            self._audio = compress_dynamic_range(
                self._audio, threshold=-24.0, ratio=2.5, attack=8.0, release=120.0
            )
        except Exception as e:
            logger.debug("Compression step skipped: %s", e)

        try:
            self._audio = self._audio.high_pass_filter(60)
        except Exception as e:
            logger.debug("High-pass filter skipped: %s", e)

    def apply_crossfade(self, ms: int = 50) -> None:
        """Apply fade-in/out to smooth the track boundaries."""
        if len(self._audio) == 0 or ms <= 0:
            return
        self._audio = self._audio.fade_in(ms).fade_out(ms)

    def export_mp3(self, output_path: str, bitrate: str = "192k") -> None:
        path = Path(output_path)
        path.parent.mkdir(parents=True, exist_ok=True)
        self._audio.export(str(path), format="mp3", bitrate=bitrate)
        self._log_export(path)

    def export_wav(self, output_path: str) -> None:
        path = Path(output_path)
        path.parent.mkdir(parents=True, exist_ok=True)
        self._audio.export(str(path), format="wav")
        self._log_export(path)

    def export_cues(self, output_path: str) -> None:
        """Write the cue sheet as a JSON list."""
        path = Path(output_path)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(
            json.dumps([asdict(c) for c in self._cues], indent=2, ensure_ascii=False),
            encoding="utf-8",
        )
        logger.info("Wrote %d cues to %s", len(self._cues), path)

    def _log_export(self, path: Path) -> None:
        dur = self.get_duration()
        size_mb = path.stat().st_size / (1024 * 1024)
        logger.info(
            "Exported %s: %.1fs (%.1f min), %.1f MB", path, dur, dur / 60, size_mb
        )

    def get_duration(self) -> float:
        """Current total duration in seconds."""
        return len(self._audio) / 1000.0

    @property
    def is_empty(self) -> bool:
        return len(self._audio) == 0

    def __repr__(self) -> str:
        return f"AudioBuilder(duration={self.get_duration():.1f}s, cues={len(self._cues)})"
