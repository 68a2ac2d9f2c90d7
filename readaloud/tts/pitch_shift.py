"""
Pitch adjustment for synthesised speech.

Kokoro controls speaking rate natively but has no pitch control, so
pitch is shifted here: a phase-vocoder time stretch followed by
resampling back to the original duration.

Only depends on ``numpy`` (already required by kokoro).
"""

import io
import logging
import wave
from typing import Optional, Tuple

import numpy as np

logger = logging.getLogger(__name__)

MIN_PITCH = 0.5
MAX_PITCH = 2.0

_INT_TYPES = {2: (np.int16, 32767), 4: (np.int32, 2147483647)}


# ------------------------------------------------------------------
# WAV helpers
# ------------------------------------------------------------------


def _decode(wav_bytes: bytes) -> Optional[Tuple[np.ndarray, int, int]]:
    """Return ``(samples[frames, channels], sample_width, sample_rate)``."""
    try:
        with wave.open(io.BytesIO(wav_bytes), "rb") as wf:
            n_channels = wf.getnchannels()
            sample_width = wf.getsampwidth()
            sample_rate = wf.getframerate()
            raw = wf.readframes(wf.getnframes())
    except (wave.Error, EOFError) as e:
        logger.warning("Failed to decode WAV: %s", e)
        return None

    if sample_width not in _INT_TYPES:
        logger.warning("Unsupported sample width %d", sample_width)
        return None

    dtype, _ = _INT_TYPES[sample_width]
    samples = np.frombuffer(raw, dtype=dtype).astype(np.float64)
    return samples.reshape(-1, n_channels), sample_width, sample_rate


def _encode(samples: np.ndarray, sample_width: int, sample_rate: int) -> bytes:
    dtype, peak = _INT_TYPES[sample_width]
    pcm = np.clip(samples, -peak - 1, peak).astype(dtype)
    buf = io.BytesIO()
    with wave.open(buf, "wb") as wf:
        wf.setnchannels(samples.shape[1])
        wf.setsampwidth(sample_width)
        wf.setframerate(sample_rate)
        wf.writeframes(pcm.tobytes())
    return buf.getvalue()


def _per_channel(samples: np.ndarray, fn) -> np.ndarray:
    channels = [fn(samples[:, ch]) for ch in range(samples.shape[1])]
    length = min(len(c) for c in channels)
    return np.column_stack([c[:length] for c in channels])


# ------------------------------------------------------------------
# Public API
# ------------------------------------------------------------------


def pitch_shift_wav(wav_bytes: bytes, pitch_factor: float) -> bytes:
    """
    Duration-preserving pitch change.

    Args:
        wav_bytes:    Complete WAV file as bytes.
        pitch_factor: Frequency multiplier (2.0 = one octave up).
                      Clamped to [MIN_PITCH, MAX_PITCH].

    Returns:
        New WAV bytes of the same length, or the input unchanged if
        *pitch_factor* ≈ 1.0 or the audio cannot be decoded.
    """
    pitch_factor = max(MIN_PITCH, min(MAX_PITCH, pitch_factor))
    if abs(pitch_factor - 1.0) < 0.02:
        return wav_bytes

    decoded = _decode(wav_bytes)
    if decoded is None or len(decoded[0]) == 0:
        return wav_bytes
    samples, width, rate = decoded
    n_frames = len(samples)

    def shift(channel: np.ndarray) -> np.ndarray:
        # Stretch to pitch_factor × length, then squeeze back: the squeeze
        # raises every frequency by pitch_factor
        stretched = _phase_vocoder(channel, 1.0 / pitch_factor, rate)
        return _resample(stretched, n_frames)

    out = _per_channel(samples, shift)
    return _encode(out, width, rate)


def _resample(audio: np.ndarray, length: int) -> np.ndarray:
    """Linear-interpolation resample of *audio* to *length* samples."""
    if len(audio) == 0 or length <= 0:
        return np.zeros(max(length, 0))
    src = np.linspace(0.0, len(audio) - 1, num=length)
    return np.interp(src, np.arange(len(audio)), audio)


# ------------------------------------------------------------------
# Phase vocoder
# ------------------------------------------------------------------


def _phase_vocoder(audio: np.ndarray, rate: float, sample_rate: int) -> np.ndarray:
    """
    Time-stretch mono *audio* by *rate* (>1 = shorter) keeping pitch.

    STFT → resample the frame trajectory with accumulated phase →
    overlap-add ISTFT.
    """
    if len(audio) < 256:
        return audio

    if sample_rate >= 32000:
        n_fft = 2048
    elif sample_rate >= 16000:
        n_fft = 1024
    else:
        n_fft = 512
    hop = n_fft // 4
    window = np.hanning(n_fft)

    padded = np.concatenate([audio, np.zeros(n_fft + hop)])
    n_frames = (len(padded) - n_fft) // hop + 1
    frame_idx = np.arange(n_fft)[None, :] + hop * np.arange(n_frames)[:, None]
    stft = np.fft.rfft(padded[frame_idx] * window, axis=1).T  # bins × frames

    steps = np.arange(0, n_frames - 1, rate)
    n_bins = stft.shape[0]
    omega = 2.0 * np.pi * np.arange(n_bins) * hop / n_fft

    out = np.zeros((n_bins, len(steps)), dtype=np.complex128)
    phase = np.angle(stft[:, 0])
    out[:, 0] = np.abs(stft[:, 0]) * np.exp(1j * phase)

    for t in range(1, len(steps)):
        i0 = min(int(steps[t]), n_frames - 1)
        i1 = min(i0 + 1, n_frames - 1)
        frac = steps[t] - int(steps[t])
        mag = (1.0 - frac) * np.abs(stft[:, i0]) + frac * np.abs(stft[:, i1])

        dphi = np.angle(stft[:, i1]) - np.angle(stft[:, i0]) - omega
        dphi -= 2.0 * np.pi * np.round(dphi / (2.0 * np.pi))
        phase += omega + dphi
        out[:, t] = mag * np.exp(1j * phase)

    out_len = n_fft + (len(steps) - 1) * hop
    output = np.zeros(out_len)
    norm = np.zeros(out_len)
    frames = np.fft.irfft(out, n=n_fft, axis=0).T * window
    for t, frame in enumerate(frames):
        start = t * hop
        output[start : start + n_fft] += frame
        norm[start : start + n_fft] += window * window

    output /= np.maximum(norm, 1e-8)
    return output[: int(len(audio) / rate)]
