"""Audio capture and playback utilities with lazy imports to avoid cycles."""

from __future__ import annotations

from typing import TYPE_CHECKING

__all__ = ["AudioCaptureSession", "PlaybackSession", "Recording", "ReplyAudio"]


def __getattr__(name: str):
    if name == "AudioCaptureSession":
        from .capture import AudioCaptureSession as _AudioCaptureSession

        return _AudioCaptureSession
    if name == "PlaybackSession":
        from .playback import PlaybackSession as _PlaybackSession

        return _PlaybackSession
    if name == "Recording":
        from .recording import Recording as _Recording

        return _Recording
    if name == "ReplyAudio":
        from .decoding import ReplyAudio as _ReplyAudio

        return _ReplyAudio
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")


if TYPE_CHECKING:  # pragma: no cover - import-time only
    from .capture import AudioCaptureSession as AudioCaptureSession
    from .decoding import ReplyAudio as ReplyAudio
    from .playback import PlaybackSession as PlaybackSession
    from .recording import Recording as Recording
