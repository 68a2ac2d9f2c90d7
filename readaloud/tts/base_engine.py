"""
Abstract base class for speech engines.

The narrator talks to engines only through this interface, so the
synthesis backend can be swapped without touching playback.
"""

import io
import wave
from abc import ABC, abstractmethod
from typing import Optional


class NarrationError(RuntimeError):
    """Speech synthesis failed for a block."""


class BaseTTSEngine(ABC):
    """
    Common interface for speech engines used by the narrator.

    Subclasses must implement :meth:`synthesize` and expose
    ``sample_rate``, ``sample_width``, and ``channels`` properties.
    """

    @property
    @abstractmethod
    def sample_rate(self) -> int:
        """Audio sample rate in Hz."""

    @property
    @abstractmethod
    def sample_width(self) -> int:
        """Sample width in bytes (e.g. 2 for 16-bit PCM)."""

    @property
    @abstractmethod
    def channels(self) -> int:
        """Number of audio channels (1 = mono)."""

    @abstractmethod
    def synthesize(
        self,
        text: str,
        speed_factor: float = 1.0,
        voice: Optional[str] = None,
    ) -> bytes:
        """
        Synthesise *text* to WAV bytes.

        Args:
            text:         Text to speak.
            speed_factor: Speed multiplier (>1 = faster, <1 = slower).
            voice:        Voice identifier, or ``None`` for the engine default.

        Returns:
            Complete WAV file as bytes (16-bit PCM).

        Raises:
            NarrationError: If the backend fails.
        """

    @property
    @abstractmethod
    def engine_name(self) -> str:
        """Human-readable engine identifier."""

    def generate_silence(self, duration_seconds: float) -> bytes:
        """Generate a WAV file containing *duration_seconds* of silence."""
        num_samples = int(self.sample_rate * max(0, duration_seconds))
        pcm_data = b"\x00\x00" * num_samples * self.channels
        return self._wrap_wav(pcm_data)

    def _wrap_wav(self, pcm_data: bytes) -> bytes:
        buf = io.BytesIO()
        with wave.open(buf, "wb") as wf:
            wf.setnchannels(self.channels)
            wf.setsampwidth(self.sample_width)
            wf.setframerate(self.sample_rate)
            wf.writeframes(pcm_data)
        return buf.getvalue()


def wav_duration(wav_bytes: bytes) -> float:
    """Return the duration in seconds of a WAV byte string (0 if unreadable)."""
    try:
        with wave.open(io.BytesIO(wav_bytes), "rb") as wf:
            rate = wf.getframerate()
            return wf.getnframes() / rate if rate > 0 else 0.0
    except (wave.Error, EOFError):
        return 0.0
