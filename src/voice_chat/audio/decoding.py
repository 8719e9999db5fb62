"""Decode assistant reply audio into float32 samples ready for the output device."""

from __future__ import annotations

import io
from dataclasses import dataclass
from typing import Optional

import numpy as np
import soundfile as sf

from voice_chat.core.exceptions import PlaybackFailed

RAW_PCM_FORMATS = frozenset({"pcm", "pcm16", "pcm_s16le", "raw"})
DEFAULT_PCM_SAMPLE_RATE = 24000


@dataclass(frozen=True, slots=True)
class ReplyAudio:
    """Synthesized reply audio as delivered by the remote assistant."""

    data: bytes
    format: str = "mp3"
    sample_rate: Optional[int] = None

    @property
    def is_raw_pcm(self) -> bool:
        return self.format.strip().lower() in RAW_PCM_FORMATS

    def __bool__(self) -> bool:
        return bool(self.data)


def decode_reply_audio(audio: ReplyAudio) -> tuple[np.ndarray, int]:
    """Return mono float32 samples in [-1, 1] and their sample rate.

    Raises ``PlaybackFailed`` when the payload is empty or cannot be decoded.
    """

    if not audio.data:
        raise PlaybackFailed("Reply audio payload is empty.")

    if audio.is_raw_pcm:
        samples = _decode_pcm16(audio.data)
        rate = audio.sample_rate or DEFAULT_PCM_SAMPLE_RATE
    else:
        try:
            decoded, rate = sf.read(io.BytesIO(audio.data), dtype="float32", always_2d=True)
        except (RuntimeError, ValueError, TypeError) as exc:
            raise PlaybackFailed(
                f"Unable to decode {audio.format or 'unknown'} reply audio: {exc}"
            ) from exc
        samples = decoded.mean(axis=1).astype(np.float32) if decoded.size else decoded.ravel()

    if samples.size == 0:
        raise PlaybackFailed("Reply audio decoded to zero samples.")
    if rate <= 0:
        raise PlaybackFailed(f"Reply audio declared an invalid sample rate ({rate}).")
    return samples, int(rate)


def resample_linear(samples: np.ndarray, source_rate: int, target_rate: int) -> np.ndarray:
    """Linearly resample mono float32 samples; returns the input when rates match."""

    if source_rate <= 0 or target_rate <= 0:
        raise ValueError("Sample rates must be positive integers.")
    if source_rate == target_rate or samples.size == 0:
        return samples
    target_length = max(1, int(round(samples.size * target_rate / source_rate)))
    source_positions = np.arange(samples.size, dtype=np.float64)
    target_positions = np.linspace(0, samples.size - 1, num=target_length, dtype=np.float64)
    return np.interp(target_positions, source_positions, samples).astype(np.float32)


def _decode_pcm16(audio_bytes: bytes) -> np.ndarray:
    remainder = len(audio_bytes) % 2
    aligned = audio_bytes[: len(audio_bytes) - remainder] if remainder else audio_bytes
    if not aligned:
        return np.array([], dtype=np.float32)
    return np.frombuffer(aligned, dtype=np.int16).astype(np.float32) / 32768.0


__all__ = [
    "DEFAULT_PCM_SAMPLE_RATE",
    "RAW_PCM_FORMATS",
    "ReplyAudio",
    "decode_reply_audio",
    "resample_linear",
]
