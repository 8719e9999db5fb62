"""Conversation states and the transitions allowed between them."""

from __future__ import annotations

from enum import Enum
from typing import Optional

from voice_chat.cli.logging_utils import log_state_transition


class ConversationState(Enum):
    """Where a conversation is in its capture / reply / playback cycle."""

    IDLE = "idle"
    CAPTURING = "capturing"
    TRANSCRIBING = "transcribing"
    AWAITING_REPLY = "awaiting_reply"
    SPEAKING = "speaking"
    STOPPING = "stopping"


ALLOWED_TRANSITIONS: dict[ConversationState, frozenset[ConversationState]] = {
    ConversationState.IDLE: frozenset(
        {
            ConversationState.CAPTURING,
            ConversationState.AWAITING_REPLY,
            ConversationState.STOPPING,
        }
    ),
    ConversationState.CAPTURING: frozenset(
        {
            ConversationState.TRANSCRIBING,
            ConversationState.IDLE,
            ConversationState.STOPPING,
        }
    ),
    ConversationState.TRANSCRIBING: frozenset(
        {
            ConversationState.SPEAKING,
            ConversationState.CAPTURING,
            ConversationState.IDLE,
            ConversationState.STOPPING,
        }
    ),
    ConversationState.AWAITING_REPLY: frozenset(
        {
            ConversationState.SPEAKING,
            ConversationState.CAPTURING,
            ConversationState.IDLE,
            ConversationState.STOPPING,
        }
    ),
    ConversationState.SPEAKING: frozenset(
        {
            ConversationState.CAPTURING,
            ConversationState.IDLE,
            ConversationState.STOPPING,
        }
    ),
    ConversationState.STOPPING: frozenset({ConversationState.IDLE}),
}

# States in which the microphone may be open / the speaker may be playing.
CAPTURE_STATES = frozenset({ConversationState.CAPTURING})
PLAYBACK_STATES = frozenset({ConversationState.SPEAKING})
REPLY_STATES = frozenset({ConversationState.TRANSCRIBING, ConversationState.AWAITING_REPLY})


class InvalidTransition(RuntimeError):
    """Raised when the controller asks for a transition the table forbids."""


class ConversationStateMachine:
    """Holds the single ``ConversationState`` of one conversation."""

    def __init__(self, initial: ConversationState = ConversationState.IDLE):
        self._state = initial

    @property
    def state(self) -> ConversationState:
        return self._state

    def transition(self, new: ConversationState, reason: str) -> Optional[ConversationState]:
        """Move to ``new``; returns the previous state, or None for a self-transition."""

        previous = self._state
        if new == previous:
            return None
        if new not in ALLOWED_TRANSITIONS[previous]:
            raise InvalidTransition(
                f"Cannot move from {previous.value} to {new.value} ({reason})."
            )
        self._state = new
        log_state_transition(previous, new, reason)
        return previous


__all__ = [
    "ALLOWED_TRANSITIONS",
    "CAPTURE_STATES",
    "ConversationState",
    "ConversationStateMachine",
    "InvalidTransition",
    "PLAYBACK_STATES",
    "REPLY_STATES",
]
