"""HTTP transport for the assistant service (``POST /chat`` and ``POST /voice``)."""

from __future__ import annotations

import base64
import binascii
from typing import Any, Optional

import httpx

from voice_chat.audio.decoding import ReplyAudio
from voice_chat.audio.recording import Recording
from voice_chat.cli.logging_utils import LOGGER, ROUNDTRIP_LOG_LABEL
from voice_chat.config import (
    ASSISTANT_API_URL,
    ASSISTANT_REPLY_AUDIO_FORMAT,
    ASSISTANT_REQUEST_TIMEOUT_SECONDS,
)
from voice_chat.core.exceptions import RoundTripFailed

from .round_trip import AssistantReply, SpeechRoundTrip

CHAT_PATH = "/chat"
VOICE_PATH = "/voice"
UPLOAD_FILENAME = "voice.wav"


class HttpRoundTrip(SpeechRoundTrip):
    """Async client for the assistant's JSON/multipart API."""

    def __init__(
        self,
        base_url: str = ASSISTANT_API_URL,
        *,
        timeout_seconds: float = ASSISTANT_REQUEST_TIMEOUT_SECONDS,
        reply_audio_format: str = ASSISTANT_REPLY_AUDIO_FORMAT,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        super().__init__()
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            timeout=httpx.Timeout(timeout_seconds),
        )
        self._reply_audio_format = reply_audio_format

    async def _reply_to_text(self, text: str) -> AssistantReply:
        payload = await self._post_json(CHAT_PATH, json={"message": text})
        return self._parse_reply(payload, expect_transcript=False)

    async def _reply_to_recording(self, recording: Recording) -> AssistantReply:
        files = {"file": (UPLOAD_FILENAME, recording.to_wav(), "audio/wav")}
        payload = await self._post_json(VOICE_PATH, files=files)
        return self._parse_reply(payload, expect_transcript=True)

    async def aclose(self) -> None:
        await super().aclose()
        if self._owns_client:
            await self._client.aclose()

    async def _post_json(self, path: str, **kwargs: Any) -> dict[str, Any]:
        try:
            response = await self._client.post(path, **kwargs)
            response.raise_for_status()
            payload = response.json()
        except httpx.TimeoutException as exc:
            raise RoundTripFailed(f"Assistant request to {path} timed out.") from exc
        except httpx.HTTPStatusError as exc:
            raise RoundTripFailed(
                f"Assistant returned HTTP {exc.response.status_code} for {path}."
            ) from exc
        except httpx.HTTPError as exc:
            raise RoundTripFailed(f"Assistant not reachable ({path}): {exc}") from exc
        except ValueError as exc:
            raise RoundTripFailed(f"Assistant sent malformed JSON for {path}.") from exc
        if not isinstance(payload, dict):
            raise RoundTripFailed(f"Assistant reply for {path} is not a JSON object.")
        return payload

    def _parse_reply(self, payload: dict[str, Any], *, expect_transcript: bool) -> AssistantReply:
        text = payload.get("assistant")
        if not isinstance(text, str):
            raise RoundTripFailed("Assistant reply is missing the 'assistant' text field.")

        transcript: Optional[str] = None
        if expect_transcript:
            raw_transcript = payload.get("transcription")
            if raw_transcript is not None and not isinstance(raw_transcript, str):
                raise RoundTripFailed("Assistant reply has a non-text 'transcription' field.")
            transcript = raw_transcript

        return AssistantReply(
            text=text.strip(),
            audio=self._decode_audio(payload),
            transcript=transcript.strip() if transcript else transcript,
        )

    def _decode_audio(self, payload: dict[str, Any]) -> Optional[ReplyAudio]:
        encoded = payload.get("audio_base64")
        if not encoded:
            return None
        if not isinstance(encoded, str):
            raise RoundTripFailed("Assistant reply has a non-text 'audio_base64' field.")
        try:
            data = base64.b64decode(encoded, validate=True)
        except (binascii.Error, ValueError) as exc:
            raise RoundTripFailed("Assistant reply audio is not valid base64.") from exc
        if not data:
            return None
        audio_format = payload.get("audio_format") or self._reply_audio_format
        sample_rate = payload.get("sample_rate")
        LOGGER.verbose(
            ROUNDTRIP_LOG_LABEL,
            f"Reply audio: {len(data)} bytes ({audio_format})",
        )
        return ReplyAudio(
            data=data,
            format=str(audio_format),
            sample_rate=int(sample_rate) if isinstance(sample_rate, (int, float)) else None,
        )


__all__ = ["HttpRoundTrip"]
