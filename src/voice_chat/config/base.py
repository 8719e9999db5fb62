"""
Configuration loading for voice-chat.

Values come from ``config/defaults.toml``. An environment variable with the
upper-case key name overrides each one, and the project ``.env`` file is
loaded into the environment first.
"""

from __future__ import annotations

import os
import sys
from pathlib import Path
from typing import Callable, TypeVar

import tomllib
from dotenv import load_dotenv

PROJECT_ROOT = Path(__file__).resolve().parents[3]
DEFAULTS_PATH = PROJECT_ROOT / "config" / "defaults.toml"
ENV_PATH = PROJECT_ROOT / ".env"

load_dotenv(ENV_PATH)

try:
    with DEFAULTS_PATH.open("rb") as defaults_file:
        _DEFAULTS = tomllib.load(defaults_file)
except FileNotFoundError as exc:  # pragma: no cover - broken checkout
    raise FileNotFoundError(f"Missing configuration defaults at {DEFAULTS_PATH}.") from exc

_T = TypeVar("_T")
_TRUTHY = frozenset({"1", "true", "yes", "on"})


def _coerce_path(value: str | Path) -> Path:
    """Expand ``~`` and anchor relative paths at the project root."""

    path = Path(value).expanduser()
    return path if path.is_absolute() else (PROJECT_ROOT / path).resolve()


def _warn_invalid_env_value(name: str, value: str | None, default: object) -> None:
    sys.stderr.write(f"Invalid value for {name}={value!r}; falling back to {default!r}.\n")


def _env_parsed(name: str, default: _T, parse: Callable[[str], _T]) -> _T:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return parse(raw)
    except (TypeError, ValueError):
        _warn_invalid_env_value(name, raw, default)
        return default


def _env_bool(name: str, default: bool = False) -> bool:
    return _env_parsed(name, default, lambda raw: raw.strip().lower() in _TRUTHY)


def _env_int(name: str, default: int) -> int:
    return _env_parsed(name, default, int)


def _env_float(name: str, default: float) -> float:
    return _env_parsed(name, default, float)


def _env_str(name: str, default: str) -> str:
    value = (os.getenv(name) or "").strip()
    return value or default


def _env_path(name: str, default: str) -> Path:
    return _coerce_path(os.getenv(name, default))


def _parse_device_override(value: str | None) -> int | str | None:
    """Turn an ``AUDIO_*_DEVICE`` override into a sounddevice index or name."""

    candidate = (value or "").strip()
    if not candidate:
        return None
    return int(candidate) if candidate.lstrip("-").isdigit() else candidate


def _persist_env_value(key: str, value: str) -> bool:
    """Set ``key=value`` in the project ``.env`` file; False when it cannot be written."""

    entry = f"{key}={value}"
    try:
        lines = ENV_PATH.read_text(encoding="utf-8").splitlines() if ENV_PATH.exists() else []
    except OSError as exc:
        sys.stderr.write(f"Unable to read {ENV_PATH}: {exc}\n")
        return False

    updated = [entry if line.startswith(f"{key}=") else line for line in lines]
    if entry not in updated:
        updated.append(entry)

    try:
        ENV_PATH.write_text("\n".join(updated).rstrip() + "\n", encoding="utf-8")
    except OSError as exc:
        sys.stderr.write(f"Unable to write {ENV_PATH}: {exc}\n")
        return False
    return True


_AUDIO = _DEFAULTS["audio"]
SAMPLE_RATE = _env_int("SAMPLE_RATE", _AUDIO["sample_rate"])
CHANNELS = _env_int("CHANNELS", _AUDIO["channels"])
BUFFER_SIZE = _env_int("BUFFER_SIZE", _AUDIO["buffer_size"])
DTYPE = _env_str("DTYPE", _AUDIO["dtype"])
if DTYPE != "int16":
    raise ValueError(f"DTYPE={DTYPE!r} is not supported; audio is handled as 16-bit PCM (int16).")
AUDIO_INPUT_DEVICE = _parse_device_override(os.getenv("AUDIO_INPUT_DEVICE"))
AUDIO_OUTPUT_DEVICE = _parse_device_override(os.getenv("AUDIO_OUTPUT_DEVICE"))
AUDIO_QUEUE_MAX_SIZE = _env_int("AUDIO_QUEUE_MAX_SIZE", _AUDIO["queue_max_size"])
PLAYBACK_SAMPLE_RATE = _env_int("PLAYBACK_SAMPLE_RATE", _AUDIO["playback_sample_rate"])
AUDIO_DEBUG_DUMP_ENABLED = _env_bool(
    "AUDIO_DEBUG_DUMP_ENABLED", _AUDIO.get("debug_dump_enabled", False)
)
AUDIO_DEBUG_DUMP_DIRECTORY = _env_path(
    "AUDIO_DEBUG_DUMP_DIRECTORY", _AUDIO.get("debug_dump_directory", "logs/audio_dumps")
)

# Session logs are only written when capture is switched on.
_LOGGING = _DEFAULTS.get("logging", {})
VERBOSE_LOG_CAPTURE_ENABLED = _env_bool(
    "VERBOSE_LOG_CAPTURE_ENABLED", _LOGGING.get("verbose_capture_enabled", False)
)
VERBOSE_LOG_DIRECTORY: Path | None = (
    _env_path("VERBOSE_LOG_DIRECTORY", str(_LOGGING.get("verbose_log_directory") or "logs").strip())
    if VERBOSE_LOG_CAPTURE_ENABLED
    else None
)

__all__ = [
    "PROJECT_ROOT",
    "DEFAULTS_PATH",
    "ENV_PATH",
    "SAMPLE_RATE",
    "CHANNELS",
    "BUFFER_SIZE",
    "DTYPE",
    "AUDIO_INPUT_DEVICE",
    "AUDIO_OUTPUT_DEVICE",
    "AUDIO_QUEUE_MAX_SIZE",
    "PLAYBACK_SAMPLE_RATE",
    "AUDIO_DEBUG_DUMP_ENABLED",
    "AUDIO_DEBUG_DUMP_DIRECTORY",
    "VERBOSE_LOG_CAPTURE_ENABLED",
    "VERBOSE_LOG_DIRECTORY",
]
