"""Turn-taking settings: continuous mode, capture bounds and silence detection."""

from __future__ import annotations

from dataclasses import dataclass

from .base import _DEFAULTS, _env_bool, _env_float, _env_int

_CONVERSATION = _DEFAULTS.get("conversation", {})

CONTINUOUS_MODE = _env_bool("CONTINUOUS_MODE", _CONVERSATION.get("continuous_mode", True))
RETRY_ON_FAILURE = _env_bool("RETRY_ON_FAILURE", _CONVERSATION.get("retry_on_failure", True))
MAX_CAPTURE_SECONDS = _env_float(
    "MAX_CAPTURE_SECONDS", _CONVERSATION.get("max_capture_seconds", 15.0)
)
END_OF_SPEECH_SILENCE_SECONDS = _env_float(
    "END_OF_SPEECH_SILENCE_SECONDS",
    _CONVERSATION.get("end_of_speech_silence_seconds", 1.2),
)
SILENCE_THRESHOLD = _env_int("SILENCE_THRESHOLD", _CONVERSATION.get("silence_threshold", 500))
SKIP_SILENT_RECORDINGS = _env_bool(
    "SKIP_SILENT_RECORDINGS", _CONVERSATION.get("skip_silent_recordings", True)
)
SPEAK_TEXT_REPLIES = _env_bool(
    "SPEAK_TEXT_REPLIES", _CONVERSATION.get("speak_text_replies", False)
)

if MAX_CAPTURE_SECONDS <= 0:
    raise ValueError("MAX_CAPTURE_SECONDS must be positive so captures always terminate.")


@dataclass(frozen=True, slots=True)
class ConversationPolicy:
    """Policy knobs consulted by the turn controller at each transition."""

    continuous_mode: bool = CONTINUOUS_MODE
    retry_on_failure: bool = RETRY_ON_FAILURE
    skip_silent_recordings: bool = SKIP_SILENT_RECORDINGS
    speak_text_replies: bool = SPEAK_TEXT_REPLIES


__all__ = [
    "CONTINUOUS_MODE",
    "RETRY_ON_FAILURE",
    "MAX_CAPTURE_SECONDS",
    "END_OF_SPEECH_SILENCE_SECONDS",
    "SILENCE_THRESHOLD",
    "SKIP_SILENT_RECORDINGS",
    "SPEAK_TEXT_REPLIES",
    "ConversationPolicy",
]
