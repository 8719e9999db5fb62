"""Console logging for voice-chat.

Every line has the shape ``[MM:SS.mmm] [LABEL] message``. Verbose lines go to
the console only when verbose logging is on, but are always appended (without
colors) to the session log file when one is open.
"""

from __future__ import annotations

import atexit
import re
import sys
import traceback
from datetime import datetime
from pathlib import Path
from types import TracebackType
from typing import TYPE_CHECKING, Any, Optional, TextIO, TypedDict

from typing_extensions import Unpack

from voice_chat.config import VERBOSE_LOG_CAPTURE_ENABLED, VERBOSE_LOG_DIRECTORY

if TYPE_CHECKING:  # pragma: no cover - import-time only
    from voice_chat.conversation.state import ConversationState

RESET = "\033[0m"
COLOR_ORANGE = "\033[38;5;208m"
COLOR_GREEN = "\033[32m"
COLOR_YELLOW = "\033[33m"
COLOR_BLUE = "\033[34m"
COLOR_CYAN = "\033[36m"
COLOR_MAGENTA = "\033[35m"
COLOR_RED = "\033[31m"

TURN_LOG_LABEL = "TURN"
STATE_LOG_LABEL = "STATE"
CAPTURE_LOG_LABEL = "CAPTURE"
ROUNDTRIP_LOG_LABEL = "ROUNDTRIP"
PLAYBACK_LOG_LABEL = "PLAYBACK"
ASSISTANT_LOG_LABEL = "ASSISTANT"
CONTROL_LOG_LABEL = "CONTROL"
ERROR_LOG_LABEL = "ERROR"
AUDIO_LOG_LABEL = "AUDIO"

_LABEL_COLORS = {
    TURN_LOG_LABEL: COLOR_ORANGE,
    STATE_LOG_LABEL: COLOR_CYAN,
    CAPTURE_LOG_LABEL: COLOR_GREEN,
    ROUNDTRIP_LOG_LABEL: COLOR_YELLOW,
    PLAYBACK_LOG_LABEL: COLOR_BLUE,
    AUDIO_LOG_LABEL: COLOR_BLUE,
    ASSISTANT_LOG_LABEL: COLOR_MAGENTA,
    CONTROL_LOG_LABEL: COLOR_MAGENTA,
    ERROR_LOG_LABEL: COLOR_RED,
}

_ANSI_ESCAPE = re.compile(r"\x1B\[[0-?]*[ -/]*[@-~]")

MAX_SESSION_LOG_COLLISIONS = 1000

ExcInfo = bool | BaseException | tuple[type[BaseException], BaseException, TracebackType | None]


class LogOptions(TypedDict, total=False):
    sep: str
    end: str
    verbose: bool
    error: bool
    flush: bool
    exc_info: ExcInfo


_LOG_OPTION_NAMES = frozenset(("sep", "end", "verbose", "error", "flush", "exc_info"))


def strip_ansi_sequences(text: str) -> str:
    return _ANSI_ESCAPE.sub("", text)


def _format_exc_details(exc_info: object) -> Optional[str]:
    """Render ``exc_info`` the way ``logging`` would, or None when there is nothing to show."""

    if not exc_info:
        return None
    if exc_info is True:
        exc_info = sys.exc_info()
        if exc_info[0] is None:
            return None
    elif isinstance(exc_info, BaseException):
        exc_info = (type(exc_info), exc_info, exc_info.__traceback__)
    elif not (
        isinstance(exc_info, tuple)
        and len(exc_info) == 3
        and isinstance(exc_info[0], type)
        and issubclass(exc_info[0], BaseException)
    ):
        raise TypeError("exc_info must be True, an exception, or a (type, value, traceback) tuple")
    return "".join(traceback.format_exception(*exc_info)).rstrip()


def _timestamp() -> str:
    now = datetime.now()
    return f"{now:%M:%S}.{now.microsecond // 1000:03d}"


class Logger:
    """Labelled console logger with an optional per-session capture file."""

    def __init__(self) -> None:
        self._verbose_logging = False
        self._log_file: Optional[TextIO] = None
        self._log_path: Optional[Path] = None
        self._log_error_reported = False
        self._auto_configure_pending = bool(
            VERBOSE_LOG_CAPTURE_ENABLED and VERBOSE_LOG_DIRECTORY is not None
        )
        self._auto_configured = False

    def set_verbose_logging(self, enabled: bool) -> None:
        self._verbose_logging = bool(enabled)

    def is_verbose_logging_enabled(self) -> bool:
        return self._verbose_logging

    def current_verbose_log_path(self) -> Optional[Path]:
        self._ensure_auto_configured()
        return self._log_path

    def configure_verbose_log_capture(
        self, destination: str | Path | None, *, per_session: bool = False
    ) -> None:
        """Point the capture file at ``destination``; None turns capture off.

        With ``per_session`` the destination is a directory and a fresh
        timestamped file is created inside it.
        """

        self._auto_configure_pending = False
        self._auto_configured = destination is not None
        self.close()
        if destination is None:
            return

        target = Path(destination)
        try:
            if per_session:
                target.mkdir(parents=True, exist_ok=True)
                target = self._build_session_log_path(target)
            else:
                target.parent.mkdir(parents=True, exist_ok=True)
            self._log_file = target.open("a", encoding="utf-8")
        except OSError as exc:
            self._report_file_error(f"Unable to open verbose log file at {target}: {exc}")
            return
        self._log_path = target
        self._log_error_reported = False

    def close(self) -> None:
        log_file, self._log_file, self._log_path = self._log_file, None, None
        if log_file is None:
            return
        try:
            log_file.close()
        except OSError as exc:
            sys.stderr.write(f"Unable to close verbose log file: {exc}\n")

    def log(self, source: str, *message_parts: object, **options: Unpack[LogOptions]) -> None:
        label = source.strip() if source else ""
        if not label:
            raise ValueError("source is required")
        unknown = set(options) - _LOG_OPTION_NAMES
        if unknown:
            raise TypeError(f"Unsupported log option(s): {', '.join(sorted(unknown))}")

        verbose = bool(options.get("verbose", False))
        if verbose:
            self._ensure_auto_configured()
            if not self._verbose_logging and self._log_file is None:
                return

        line = self._render(
            label, message_parts, options.get("sep", " "), options.get("exc_info")
        )
        end = options.get("end", "\n")
        if verbose:
            self._write_verbose_log_entry(line, end)
            if not self._verbose_logging:
                return

        stream = sys.stderr if options.get("error") else sys.stdout
        stream.write(self._colorize(label, line) + end)
        if options.get("flush"):
            stream.flush()

    def verbose(self, source: str, *message_parts: object, **kwargs: Any) -> None:
        self.log(source, *message_parts, **{**kwargs, "verbose": True})

    @staticmethod
    def _render(label: str, parts: tuple[object, ...], sep: str, exc_info: object) -> str:
        line = f"[{_timestamp()}] [{label}]"
        message = sep.join(str(part) for part in parts)
        if message:
            line += f" {message}"
        details = _format_exc_details(exc_info)
        if details:
            line += f"\n{details}"
        return line

    @staticmethod
    def _colorize(label: str, line: str) -> str:
        color = _LABEL_COLORS.get(label)
        if color is None:
            return line
        token = f"[{label}]"
        return line.replace(token, f"{color}{token}{RESET}", 1)

    def _ensure_auto_configured(self) -> None:
        if not self._auto_configure_pending or self._auto_configured:
            return
        if VERBOSE_LOG_DIRECTORY is None:
            self._auto_configure_pending = False
            return
        self.configure_verbose_log_capture(VERBOSE_LOG_DIRECTORY, per_session=True)
        self._auto_configured = True

    def _build_session_log_path(self, directory: Path) -> Path:
        """Create and return ``<iso timestamp>[_N].log`` inside ``directory``."""

        stamp = datetime.now().isoformat(timespec="milliseconds").replace(":", "-")
        for attempt in range(MAX_SESSION_LOG_COLLISIONS + 1):
            candidate = directory / (f"{stamp}_{attempt}.log" if attempt else f"{stamp}.log")
            try:
                with candidate.open("x", encoding="utf-8"):
                    return candidate
            except FileExistsError:
                continue
        raise OSError(f"No free session log name for {stamp} in {directory}")

    def _write_verbose_log_entry(self, line: str, end: str) -> None:
        if self._log_file is None:
            return
        try:
            self._log_file.write(strip_ansi_sequences(line) + end)
            self._log_file.flush()
        except OSError as exc:
            self._report_file_error(f"Unable to write to verbose log file: {exc}")

    def _report_file_error(self, message: str) -> None:
        # One report per capture target; reopening resets it.
        if self._log_error_reported:
            return
        self._log_error_reported = True
        sys.stderr.write(message + "\n")


LOGGER = Logger()
atexit.register(LOGGER.close)


def configure_verbose_log_capture(
    destination: str | Path | None, *, per_session: bool = False
) -> None:
    LOGGER.configure_verbose_log_capture(destination, per_session=per_session)


def set_verbose_logging(enabled: bool) -> None:
    LOGGER.set_verbose_logging(enabled)


def is_verbose_logging_enabled() -> bool:
    return LOGGER.is_verbose_logging_enabled()


def current_verbose_log_path() -> Optional[Path]:
    return LOGGER.current_verbose_log_path()


def log_state_transition(
    previous: Optional["ConversationState"], new: "ConversationState", reason: str
) -> None:
    """Record a conversation state change; self-transitions are not logged."""

    if previous == new:
        return
    if previous is None:
        message = f"Entered {new.value.upper()} ({reason})"
    else:
        message = f"{previous.value.upper()} -> {new.value.upper()} ({reason})"
    LOGGER.verbose(STATE_LOG_LABEL, message)
