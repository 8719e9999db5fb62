"""Presentation-layer hooks: what the controller tells the UI."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterator, Protocol

from voice_chat.assistant.round_trip import Exchange
from voice_chat.core.exceptions import VoiceChatError

from .state import ConversationState


@dataclass(frozen=True, slots=True)
class ErrorNotice:
    """A user-visible, non-fatal failure report."""

    kind: str
    message: str
    recoverable: bool = True

    @classmethod
    def from_exception(cls, exc: VoiceChatError) -> "ErrorNotice":
        return cls(kind=exc.kind, message=str(exc) or type(exc).__name__)


class ConversationObserver(Protocol):
    def on_state_change(
        self, previous: ConversationState, current: ConversationState
    ) -> None: ...

    def on_exchange(self, exchange: Exchange) -> None: ...

    def on_error(self, notice: ErrorNotice) -> None: ...


class ConversationHistory:
    """Append-only record of completed exchanges, owned by the presentation layer."""

    def __init__(self) -> None:
        self._exchanges: list[Exchange] = []

    def __len__(self) -> int:
        return len(self._exchanges)

    def __iter__(self) -> Iterator[Exchange]:
        return iter(tuple(self._exchanges))

    @property
    def exchanges(self) -> tuple[Exchange, ...]:
        return tuple(self._exchanges)

    def on_state_change(self, previous: ConversationState, current: ConversationState) -> None:
        return None

    def on_exchange(self, exchange: Exchange) -> None:
        self._exchanges.append(exchange)

    def on_error(self, notice: ErrorNotice) -> None:
        return None


__all__ = ["ConversationHistory", "ConversationObserver", "ErrorNotice"]
