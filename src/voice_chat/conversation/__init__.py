"""Turn-taking state machine for voice conversations."""

from .controller import MAX_CONSECUTIVE_CAPTURE_FAILURES, TurnController
from .observers import ConversationHistory, ConversationObserver, ErrorNotice
from .state import ConversationState, ConversationStateMachine, InvalidTransition

__all__ = [
    "ConversationHistory",
    "ConversationObserver",
    "ConversationState",
    "ConversationStateMachine",
    "ErrorNotice",
    "InvalidTransition",
    "MAX_CONSECUTIVE_CAPTURE_FAILURES",
    "TurnController",
]
