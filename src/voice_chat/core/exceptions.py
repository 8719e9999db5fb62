"""Error kinds shared across the voice chat package."""

from __future__ import annotations


class VoiceChatError(Exception):
    """Base class for every recoverable voice chat failure."""

    kind = "error"


class CaptureDeviceError(VoiceChatError):
    """The microphone could not be acquired."""


class PermissionDenied(CaptureDeviceError):
    """The platform refused access to the microphone."""

    kind = "permission_denied"


class DeviceUnavailable(CaptureDeviceError):
    """No usable capture device (missing, busy, or PortAudio not loadable)."""

    kind = "device_unavailable"


class CaptureFailed(VoiceChatError):
    """The capture device failed after it was opened."""

    kind = "capture_failed"


class RoundTripFailed(VoiceChatError):
    """Network failure, timeout, or malformed reply from the remote assistant."""

    kind = "round_trip_failed"


class PlaybackFailed(VoiceChatError):
    """Reply audio could not be decoded or played."""

    kind = "playback_failed"


class Cancelled(VoiceChatError):
    """Tags a result that was abandoned; never shown to the user."""

    kind = "cancelled"


class ConversationBusy(VoiceChatError):
    """A command arrived while another exchange owns the conversation."""

    kind = "busy"


__all__ = [
    "VoiceChatError",
    "CaptureDeviceError",
    "PermissionDenied",
    "DeviceUnavailable",
    "CaptureFailed",
    "RoundTripFailed",
    "PlaybackFailed",
    "Cancelled",
    "ConversationBusy",
]
