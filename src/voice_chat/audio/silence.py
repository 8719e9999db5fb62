"""End-of-utterance detection for capture sessions."""

from __future__ import annotations

from collections.abc import Callable

from voice_chat.audio.metrics import calculate_rms


class SilenceTracker:
    """Track speech activity and report when trailing silence ends an utterance."""

    def __init__(
        self,
        *,
        silence_threshold: float,
        max_silence_seconds: float,
        sample_rate: int,
        channels: int = 1,
        rms_func: Callable[[bytes], float] = calculate_rms,
    ):
        self._threshold = silence_threshold
        self._max_silence = max_silence_seconds
        self._sample_rate = sample_rate
        self._channels = channels
        self._calculate_rms = rms_func
        self._heard_speech = False
        self._silence_duration = 0.0

    def reset(self) -> None:
        self._heard_speech = False
        self._silence_duration = 0.0

    @property
    def heard_speech(self) -> bool:
        """Return True once any speech has been detected in the current window."""

        return self._heard_speech

    @property
    def silence_duration(self) -> float:
        """Accumulated silence since the most recent speech chunk (0.0 before any speech)."""

        return self._silence_duration if self._heard_speech else 0.0

    def observe(self, chunk: bytes) -> bool:
        """Return True when accumulated silence after speech exceeds the limit."""

        if not chunk or self._channels <= 0:
            return False

        frames = len(chunk) / (2.0 * self._channels)
        chunk_duration = frames / self._sample_rate if frames and self._sample_rate > 0 else 0.0
        rms = self._calculate_rms(chunk)

        if rms >= self._threshold:
            self._heard_speech = True
            self._silence_duration = 0.0
            return False

        if not self._heard_speech:
            return False

        self._silence_duration += chunk_duration
        if self._max_silence <= 0:
            return False
        return self._silence_duration >= self._max_silence
