"""Remote assistant transports and the round-trip contract they satisfy."""

from __future__ import annotations

from typing import Optional

from voice_chat.config import ASSISTANT_API_URL, ASSISTANT_BACKEND, ASSISTANT_BACKEND_CHOICES

from .round_trip import AssistantReply, Exchange, PendingRoundTrip, SpeechRoundTrip, Utterance


def build_round_trip(backend: Optional[str] = None, *, api_url: Optional[str] = None) -> SpeechRoundTrip:
    """Instantiate the configured transport (``http`` or ``openai``)."""

    selected = (backend or ASSISTANT_BACKEND).strip().lower()
    if selected == "http":
        from .http_backend import HttpRoundTrip

        return HttpRoundTrip(api_url or ASSISTANT_API_URL)
    if selected == "openai":
        from .openai_backend import OpenAIRoundTrip

        return OpenAIRoundTrip()
    choices = ", ".join(ASSISTANT_BACKEND_CHOICES)
    raise ValueError(f"Unknown assistant backend '{backend}'. Choose one of: {choices}.")


__all__ = [
    "AssistantReply",
    "Exchange",
    "PendingRoundTrip",
    "SpeechRoundTrip",
    "Utterance",
    "build_round_trip",
]
