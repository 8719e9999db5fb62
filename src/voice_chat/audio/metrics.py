"""Signal-processing helpers shared across modules."""

from __future__ import annotations

import numpy as np

__all__ = ["calculate_rms", "peak_amplitude"]


def calculate_rms(audio_bytes: bytes) -> float:
    """Compute the root-mean-square amplitude for a PCM16 chunk."""

    if not audio_bytes:
        return 0.0

    samples = np.frombuffer(audio_bytes[: len(audio_bytes) - len(audio_bytes) % 2], dtype=np.int16)
    if samples.size == 0:
        return 0.0

    float_samples = samples.astype(np.float32)
    return float(np.sqrt(np.mean(float_samples**2)))


def peak_amplitude(audio_bytes: bytes) -> int:
    """Return the absolute peak of a PCM16 buffer."""

    usable = audio_bytes[: len(audio_bytes) - len(audio_bytes) % 2]
    if not usable:
        return 0
    samples = np.frombuffer(usable, dtype=np.int16).astype(np.int32)
    return int(np.max(np.abs(samples)))
