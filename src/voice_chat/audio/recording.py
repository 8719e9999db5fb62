"""Immutable capture results handed from the microphone to the assistant."""

from __future__ import annotations

import io
import wave
from dataclasses import dataclass
from typing import Optional

PCM16_ENCODING = "pcm_s16le"


@dataclass(frozen=True, slots=True)
class Recording:
    """PCM16 audio gathered by one capture session."""

    data: bytes
    sample_rate: int
    channels: int = 1
    encoding: str = PCM16_ENCODING
    max_duration_seconds: Optional[float] = None
    speech_detected: bool = True
    truncated: bool = False

    @property
    def frame_count(self) -> int:
        bytes_per_frame = 2 * max(self.channels, 1)
        return len(self.data) // bytes_per_frame

    @property
    def duration_seconds(self) -> float:
        if self.sample_rate <= 0:
            return 0.0
        return self.frame_count / self.sample_rate

    @property
    def is_empty(self) -> bool:
        return self.frame_count == 0

    def to_wav(self) -> bytes:
        """Encode the recording as a WAV container for upload."""

        buffer = io.BytesIO()
        with wave.open(buffer, "wb") as wav_file:
            wav_file.setnchannels(self.channels)
            wav_file.setsampwidth(2)
            wav_file.setframerate(self.sample_rate)
            wav_file.writeframes(self.data[: self.frame_count * 2 * max(self.channels, 1)])
        return buffer.getvalue()


__all__ = ["PCM16_ENCODING", "Recording"]
