"""Console presentation layer: prints the conversation and reads commands from stdin."""

from __future__ import annotations

import asyncio
import sys
from dataclasses import dataclass
from typing import Callable, Optional, Protocol

from voice_chat.assistant.round_trip import Exchange
from voice_chat.cli.logging_utils import (
    ASSISTANT_LOG_LABEL,
    CONTROL_LOG_LABEL,
    ERROR_LOG_LABEL,
    LOGGER,
    TURN_LOG_LABEL,
)
from voice_chat.conversation.observers import ConversationHistory, ErrorNotice
from voice_chat.conversation.state import ConversationState
from voice_chat.core.exceptions import CaptureDeviceError, ConversationBusy

COMMAND_VOICE = "voice"
COMMAND_TALK = "talk"
COMMAND_STOP = "stop"
COMMAND_QUIT = "quit"
COMMAND_HELP = "help"
COMMAND_TEXT = "text"

_SLASH_COMMANDS = {
    "/voice": COMMAND_VOICE,
    "/talk": COMMAND_TALK,
    "/stop": COMMAND_STOP,
    "/quit": COMMAND_QUIT,
    "/exit": COMMAND_QUIT,
    "/help": COMMAND_HELP,
}

HELP_TEXT = (
    "Commands: /voice (toggle voice mode), /talk (record one utterance), "
    "/stop (finish recording now), /quit. Anything else is sent as text."
)

_STATE_MESSAGES = {
    ConversationState.IDLE: "Idle.",
    ConversationState.CAPTURING: "Listening...",
    ConversationState.TRANSCRIBING: "Transcribing...",
    ConversationState.AWAITING_REPLY: "Waiting for the assistant...",
    ConversationState.SPEAKING: "Speaking...",
    ConversationState.STOPPING: "Stopping...",
}


class _Conversation(Protocol):
    async def toggle_voice_mode(self) -> bool: ...

    async def start_capture(self) -> bool: ...

    async def finish_capture(self) -> bool: ...

    async def send_text(self, text: str) -> Optional[int]: ...


@dataclass(frozen=True, slots=True)
class ConsoleCommand:
    kind: str
    text: str = ""


def parse_command(line: str) -> Optional[ConsoleCommand]:
    """Map a console line to a command; blank lines yield None."""

    stripped = line.strip()
    if not stripped:
        return None
    kind = _SLASH_COMMANDS.get(stripped.lower())
    if kind is not None:
        return ConsoleCommand(kind)
    return ConsoleCommand(COMMAND_TEXT, stripped)


class ConsolePresenter(ConversationHistory):
    """Observer that renders state changes, exchanges and errors as log lines."""

    def on_state_change(self, previous: ConversationState, current: ConversationState) -> None:
        LOGGER.log(TURN_LOG_LABEL, _STATE_MESSAGES[current])

    def on_exchange(self, exchange: Exchange) -> None:
        super().on_exchange(exchange)
        user_text = exchange.user_text
        if user_text:
            LOGGER.log(TURN_LOG_LABEL, f"you: {user_text}")
        LOGGER.log(ASSISTANT_LOG_LABEL, f"assistant: {exchange.assistant_text or '(no text)'}")

    def on_error(self, notice: ErrorNotice) -> None:
        LOGGER.log(ERROR_LOG_LABEL, f"{notice.message}", error=True)


async def dispatch_command(controller: _Conversation, command: ConsoleCommand) -> bool:
    """Apply ``command`` to ``controller``; returns False when the user asked to quit."""

    if command.kind == COMMAND_QUIT:
        return False
    if command.kind == COMMAND_HELP:
        LOGGER.log(CONTROL_LOG_LABEL, HELP_TEXT)
        return True
    try:
        if command.kind == COMMAND_VOICE:
            await controller.toggle_voice_mode()
        elif command.kind == COMMAND_TALK:
            if not await controller.start_capture():
                LOGGER.log(CONTROL_LOG_LABEL, "Already listening.")
        elif command.kind == COMMAND_STOP:
            if not await controller.finish_capture():
                LOGGER.log(CONTROL_LOG_LABEL, "Not recording.")
        else:
            await controller.send_text(command.text)
    except ConversationBusy as exc:
        LOGGER.log(CONTROL_LOG_LABEL, str(exc))
    except CaptureDeviceError as exc:
        # Observers already received the notice; keep the loop alive.
        LOGGER.verbose(CONTROL_LOG_LABEL, f"Voice mode unavailable: {exc.kind}")
    return True


async def run_console(
    controller: _Conversation,
    *,
    read_line: Callable[[], str] = sys.stdin.readline,
) -> None:
    """Read commands until ``/quit`` or end of input."""

    LOGGER.log(CONTROL_LOG_LABEL, HELP_TEXT)
    while True:
        line = await asyncio.to_thread(read_line)
        if line == "":
            LOGGER.verbose(CONTROL_LOG_LABEL, "End of input.")
            return
        command = parse_command(line)
        if command is None:
            continue
        if not await dispatch_command(controller, command):
            return


__all__ = [
    "ConsoleCommand",
    "ConsolePresenter",
    "HELP_TEXT",
    "dispatch_command",
    "parse_command",
    "run_console",
]
