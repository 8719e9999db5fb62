"""OpenAI transport: transcription -> Responses API -> speech synthesis."""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Iterator, Literal, Optional, cast

import openai
from openai import AsyncOpenAI

from voice_chat.audio.decoding import DEFAULT_PCM_SAMPLE_RATE, ReplyAudio
from voice_chat.audio.recording import Recording
from voice_chat.cli.logging_utils import ASSISTANT_LOG_LABEL, LOGGER
from voice_chat.config import (
    ASSISTANT_LANGUAGE,
    ASSISTANT_SYSTEM_PROMPT,
    OPENAI_MODEL,
    OPENAI_TRANSCRIPTION_MODEL,
    OPENAI_TTS_FORMAT,
    OPENAI_TTS_MODEL,
    OPENAI_TTS_VOICE,
    resolve_openai_api_key,
)
from voice_chat.core.exceptions import RoundTripFailed

from .round_trip import AssistantReply, SpeechRoundTrip

AudioResponseFormat = Literal["mp3", "opus", "aac", "flac", "wav", "pcm"]
_ALLOWED_TTS_FORMATS: tuple[AudioResponseFormat, ...] = ("mp3", "opus", "aac", "flac", "wav", "pcm")


@dataclass(slots=True)
class OpenAIRoundTripConfig:
    transcription_model: str = OPENAI_TRANSCRIPTION_MODEL
    model: str = OPENAI_MODEL
    system_prompt: str = ASSISTANT_SYSTEM_PROMPT
    language: str = ASSISTANT_LANGUAGE
    synthesize_speech: bool = True
    tts_model: str = OPENAI_TTS_MODEL
    tts_voice: str = OPENAI_TTS_VOICE
    tts_format: str = OPENAI_TTS_FORMAT


class OpenAIRoundTrip(SpeechRoundTrip):
    """Runs each utterance through OpenAI's transcription, Responses and speech APIs."""

    def __init__(
        self,
        *,
        config: Optional[OpenAIRoundTripConfig] = None,
        client: Optional[AsyncOpenAI] = None,
        **overrides,
    ) -> None:
        super().__init__()
        config_obj = config or OpenAIRoundTripConfig()
        if overrides:
            config_obj = replace(config_obj, **overrides)
        self._config = config_obj
        self._owns_client = client is None
        self._client = client or AsyncOpenAI(api_key=resolve_openai_api_key())
        self._system_prompt = config_obj.system_prompt.strip()
        self._language = config_obj.language.strip() if config_obj.language else ""
        self._tts_format = self._normalize_response_format(config_obj.tts_format)

    @property
    def model_name(self) -> str:
        return self._config.model

    async def _reply_to_text(self, text: str) -> AssistantReply:
        reply_text = await self._generate_reply(text)
        return AssistantReply(text=reply_text, audio=await self._synthesize(reply_text))

    async def _reply_to_recording(self, recording: Recording) -> AssistantReply:
        transcript = await self._transcribe(recording)
        if not transcript:
            raise RoundTripFailed("Transcription returned no text for the recording.")
        reply_text = await self._generate_reply(transcript)
        return AssistantReply(
            text=reply_text,
            audio=await self._synthesize(reply_text),
            transcript=transcript,
        )

    async def aclose(self) -> None:
        await super().aclose()
        if self._owns_client:
            await self._client.close()

    # ------------------------------------------------------------------
    # API calls
    async def _transcribe(self, recording: Recording) -> str:
        kwargs: dict[str, object] = {
            "model": self._config.transcription_model,
            "file": ("voice.wav", recording.to_wav(), "audio/wav"),
        }
        if self._language:
            kwargs["language"] = self._language
        try:
            result = await self._client.audio.transcriptions.create(**kwargs)
        except openai.OpenAIError as exc:
            raise RoundTripFailed(f"Transcription request failed: {exc}") from exc
        text = getattr(result, "text", None)
        if text is None and isinstance(result, str):
            text = result
        transcript = (text or "").strip()
        LOGGER.verbose(ASSISTANT_LOG_LABEL, f"Transcript: {transcript!r}")
        return transcript

    async def _generate_reply(self, prompt: str) -> str:
        messages = self._build_messages(prompt.strip())
        LOGGER.verbose(ASSISTANT_LOG_LABEL, "Awaiting OpenAI response...")
        try:
            response = await self._client.responses.create(
                model=self._config.model,
                input=messages,
            )
        except openai.OpenAIError as exc:
            raise RoundTripFailed(f"Responses request failed: {exc}") from exc
        text = extract_output_text(response)
        if not text:
            raise RoundTripFailed("Assistant response contained no text output.")
        return text

    async def _synthesize(self, text: str) -> Optional[ReplyAudio]:
        if not (self._config.synthesize_speech and text):
            return None
        try:
            response = await self._client.audio.speech.create(
                model=self._config.tts_model,
                voice=self._config.tts_voice,
                input=text,
                response_format=self._tts_format,
            )
            audio_bytes = await response.aread()
        except openai.OpenAIError as exc:
            LOGGER.log(
                ASSISTANT_LOG_LABEL,
                f"Speech synthesis failed; using text-only reply ({exc}).",
            )
            return None
        if not audio_bytes:
            return None
        return ReplyAudio(
            data=audio_bytes,
            format=self._tts_format,
            sample_rate=DEFAULT_PCM_SAMPLE_RATE if self._tts_format == "pcm" else None,
        )

    def _build_messages(self, prompt: str) -> list[dict]:
        messages: list[dict] = []
        if self._system_prompt:
            messages.append(
                {
                    "role": "system",
                    "content": [{"type": "input_text", "text": self._system_prompt}],
                }
            )
        if self._language:
            messages.append(
                {
                    "role": "system",
                    "content": [
                        {
                            "type": "input_text",
                            "text": f"Respond in {self._language}.",
                        }
                    ],
                }
            )
        messages.append({"role": "user", "content": [{"type": "input_text", "text": prompt}]})
        return messages

    @staticmethod
    def _normalize_response_format(requested: str) -> AudioResponseFormat:
        normalized = (requested or "").strip().lower()
        if normalized in _ALLOWED_TTS_FORMATS:
            return cast(AudioResponseFormat, normalized)
        LOGGER.log(
            ASSISTANT_LOG_LABEL,
            f"Unknown TTS format '{requested or 'N/A'}'; defaulting to 'mp3'.",
        )
        return "mp3"


def extract_output_text(response) -> str:
    """Join every ``output_text`` fragment of a Responses API payload."""

    payload = response.model_dump() if hasattr(response, "model_dump") else response
    blocks = payload.get("output") if isinstance(payload, dict) else None
    fragments = [
        content.get("text", "").strip()
        for content in _iter_output_contents(blocks if isinstance(blocks, list) else [])
        if content.get("type") == "output_text"
    ]
    return "\n".join(fragment for fragment in fragments if fragment).strip()


def _iter_output_contents(blocks: list) -> Iterator[dict]:
    for block in blocks:
        if not isinstance(block, dict):
            continue
        contents = block.get("content")
        if not isinstance(contents, list):
            continue
        for content in contents:
            if isinstance(content, dict):
                yield content


__all__ = ["OpenAIRoundTrip", "OpenAIRoundTripConfig", "extract_output_text"]
