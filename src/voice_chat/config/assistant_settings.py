"""Remote assistant backend configuration helpers."""

from __future__ import annotations

import os
import sys
from getpass import getpass

from .base import _DEFAULTS, _env_float, _env_str, _persist_env_value

_ASSISTANT = _DEFAULTS.get("assistant", {})
_OPENAI = _ASSISTANT.get("openai", {})

ASSISTANT_BACKEND_CHOICES = ("http", "openai")


def _normalize_backend(value: str | None) -> str:
    normalized = (value or "").strip().lower()
    if normalized in ASSISTANT_BACKEND_CHOICES:
        return normalized
    if normalized:
        sys.stderr.write(
            f"Unknown ASSISTANT_BACKEND={value!r}; falling back to 'http'.\n"
        )
    return "http"


ASSISTANT_BACKEND = _normalize_backend(os.getenv("ASSISTANT_BACKEND", _ASSISTANT.get("backend")))
ASSISTANT_API_URL = _env_str("ASSISTANT_API_URL", _ASSISTANT.get("api_url", "http://localhost:8000"))
ASSISTANT_REQUEST_TIMEOUT_SECONDS = _env_float(
    "ASSISTANT_REQUEST_TIMEOUT_SECONDS", _ASSISTANT.get("request_timeout_seconds", 30.0)
)
ASSISTANT_REPLY_AUDIO_FORMAT = _env_str(
    "ASSISTANT_REPLY_AUDIO_FORMAT", _ASSISTANT.get("reply_audio_format", "mp3")
)

OPENAI_TRANSCRIPTION_MODEL = _env_str(
    "OPENAI_TRANSCRIPTION_MODEL", _OPENAI.get("transcription_model", "gpt-4o-mini-transcribe")
)
OPENAI_MODEL = _env_str("OPENAI_MODEL", _OPENAI.get("model", "gpt-4.1-mini"))
OPENAI_TTS_MODEL = _env_str("OPENAI_TTS_MODEL", _OPENAI.get("tts_model", "gpt-4o-mini-tts"))
OPENAI_TTS_VOICE = _env_str("OPENAI_TTS_VOICE", _OPENAI.get("tts_voice", "alloy"))
OPENAI_TTS_FORMAT = _env_str("OPENAI_TTS_FORMAT", _OPENAI.get("tts_format", "wav"))
ASSISTANT_LANGUAGE = _env_str("ASSISTANT_LANGUAGE", _OPENAI.get("language", "en"))
ASSISTANT_SYSTEM_PROMPT = _env_str("ASSISTANT_SYSTEM_PROMPT", _OPENAI.get("system_prompt", ""))


def _persist_api_key(api_key: str) -> None:
    """Write or update OPENAI_API_KEY in the repo's .env file."""

    _persist_env_value("OPENAI_API_KEY", api_key)


def _prompt_for_api_key() -> str | None:
    """Interactively request and persist the OpenAI API key when missing."""

    if not sys.stdin.isatty():  # Non-interactive session (CI, tests, etc.)
        return None

    sys.stderr.write(
        "\nOPENAI_API_KEY is missing. Paste your OpenAI API key to store it in .env:\n"
    )
    try:
        api_key = getpass("OpenAI API key: ").strip()
    except (EOFError, KeyboardInterrupt):  # pragma: no cover - interactive prompt
        sys.stderr.write("\nNo API key provided; aborting.\n")
        return None

    if not api_key:
        sys.stderr.write("Empty API key provided; aborting.\n")
        return None

    _persist_api_key(api_key)
    os.environ["OPENAI_API_KEY"] = api_key
    sys.stderr.write("Saved API key to .env\n\n")
    return api_key


def resolve_openai_api_key() -> str:
    """Return the OpenAI API key, prompting once on an interactive terminal."""

    api_key = os.getenv("OPENAI_API_KEY") or _prompt_for_api_key()
    if not api_key:
        raise ValueError(
            "OPENAI_API_KEY not configured. "
            "Set the variable manually or rerun in an interactive shell to supply it."
        )
    return api_key


__all__ = [
    "ASSISTANT_BACKEND_CHOICES",
    "ASSISTANT_BACKEND",
    "ASSISTANT_API_URL",
    "ASSISTANT_REQUEST_TIMEOUT_SECONDS",
    "ASSISTANT_REPLY_AUDIO_FORMAT",
    "OPENAI_TRANSCRIPTION_MODEL",
    "OPENAI_MODEL",
    "OPENAI_TTS_MODEL",
    "OPENAI_TTS_VOICE",
    "OPENAI_TTS_FORMAT",
    "ASSISTANT_LANGUAGE",
    "ASSISTANT_SYSTEM_PROMPT",
    "resolve_openai_api_key",
]
