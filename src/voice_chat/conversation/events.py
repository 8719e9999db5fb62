"""Terminal-event notifications and the bus that delivers them one at a time."""

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict, deque
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, DefaultDict, List, Optional, Type, TypeVar, cast

from voice_chat.assistant.round_trip import Exchange
from voice_chat.audio.recording import Recording
from voice_chat.core.exceptions import VoiceChatError


@dataclass(slots=True)
class ConversationEvent:
    """Base class for notifications delivered to the turn controller."""


@dataclass(slots=True)
class CaptureCompleted(ConversationEvent):
    session_id: int
    recording: Recording


@dataclass(slots=True)
class CaptureErrored(ConversationEvent):
    session_id: int
    error: VoiceChatError


@dataclass(slots=True)
class RoundTripResolved(ConversationEvent):
    request_id: int
    exchange: Optional[Exchange] = None
    error: Optional[VoiceChatError] = None


@dataclass(slots=True)
class PlaybackFinished(ConversationEvent):
    playback_id: int
    error: Optional[VoiceChatError] = None


E = TypeVar("E", bound=ConversationEvent)
EventHandler = Callable[[E], Awaitable[None]]


class ConversationEventBus:
    """Async event bus that runs handlers sequentially in publish order."""

    def __init__(self) -> None:
        self._queue: deque[ConversationEvent | None] = deque()
        self._subscribers: DefaultDict[Type[ConversationEvent], List[EventHandler[Any]]] = (
            defaultdict(list)
        )
        self._closed = False
        self._condition = asyncio.Condition()
        self._logger = logging.getLogger(__name__)

    @property
    def closed(self) -> bool:
        return self._closed

    def subscribe(self, event_type: Type[E], handler: EventHandler[E]) -> None:
        """Register ``handler`` to run whenever ``event_type`` is published."""

        handlers = self._subscribers[event_type]
        typed_handlers = cast(List[EventHandler[E]], handlers)
        typed_handlers.append(handler)

    async def publish(self, event: ConversationEvent) -> None:
        """Queue ``event`` for delivery; dropped once the bus has shut down."""

        async with self._condition:
            if self._closed:
                return
            self._queue.append(event)
            self._condition.notify_all()

    async def run(self) -> None:
        """Dispatch queued events until :meth:`shutdown` is invoked."""

        try:
            while True:
                async with self._condition:
                    while not self._queue:
                        await self._condition.wait()
                    event = self._queue.popleft()
                if event is None:
                    async with self._condition:
                        if self._queue:
                            # Requeue the sentinel so events that raced with
                            # shutdown are still delivered.
                            self._queue.append(None)
                            continue
                    break
                for handler in list(self._subscribers.get(type(event), ())):
                    try:
                        await handler(event)
                    except Exception:
                        self._logger.exception(
                            "ConversationEventBus handler %s raised while processing %s",
                            getattr(handler, "__qualname__", repr(handler)),
                            type(event).__name__,
                        )
        finally:
            self._closed = True

    async def shutdown(self) -> None:
        """Stop the dispatch loop once outstanding events have drained."""

        if self._closed:
            return
        async with self._condition:
            self._closed = True
            self._queue.append(None)
            self._condition.notify_all()


__all__ = [
    "CaptureCompleted",
    "CaptureErrored",
    "ConversationEvent",
    "ConversationEventBus",
    "PlaybackFinished",
    "RoundTripResolved",
]
