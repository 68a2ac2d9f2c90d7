"""Speech synthesis, narration, and audio assembly."""

from .audio_builder import AudioBuilder, Cue
from .base_engine import BaseTTSEngine, NarrationError, wav_duration
from .kokoro_engine import DEFAULT_KOKORO_VOICE, KOKORO_VOICES, KokoroEngine
from .narrator import BaseNarrator, NarrationRequest, RecordingNarrator
from .pitch_shift import pitch_shift_wav

__all__ = [
    "AudioBuilder",
    "Cue",
    "BaseTTSEngine",
    "NarrationError",
    "wav_duration",
    "DEFAULT_KOKORO_VOICE",
    "KOKORO_VOICES",
    "KokoroEngine",
    "BaseNarrator",
    "NarrationRequest",
    "RecordingNarrator",
    "pitch_shift_wav",
]
