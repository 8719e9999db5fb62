"""Request/response exchanges with the remote assistant."""

from __future__ import annotations

import asyncio
import itertools
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional, Union

from voice_chat.audio.decoding import ReplyAudio
from voice_chat.audio.recording import Recording
from voice_chat.cli.logging_utils import LOGGER, ROUNDTRIP_LOG_LABEL
from voice_chat.core.exceptions import Cancelled, RoundTripFailed, VoiceChatError

Utterance = Union[Recording, str]


@dataclass(frozen=True, slots=True)
class AssistantReply:
    """What a backend returns for one utterance."""

    text: str
    audio: Optional[ReplyAudio] = None
    transcript: Optional[str] = None


@dataclass(frozen=True, slots=True)
class Exchange:
    """One completed user utterance / assistant reply pair."""

    request_id: int
    user_utterance: Utterance
    assistant_text: str
    assistant_audio: Optional[ReplyAudio]
    started_at: datetime
    completed_at: datetime
    user_transcript: Optional[str] = None

    @property
    def has_audio(self) -> bool:
        return bool(self.assistant_audio)

    @property
    def user_text(self) -> str:
        """Text shown for the user's side of the exchange."""

        if isinstance(self.user_utterance, str):
            return self.user_utterance
        return self.user_transcript or ""


@dataclass(eq=False)
class PendingRoundTrip:
    """Handle for an in-flight request, tagged with its monotonic id."""

    request_id: int
    utterance: Utterance
    task: "asyncio.Task[Exchange]"

    @property
    def done(self) -> bool:
        return self.task.done()


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class SpeechRoundTrip(ABC):
    """Base class for assistant transports.

    ``begin()`` tags every call with a strictly increasing request id and runs
    it as a task; every failure surfaces as ``RoundTripFailed`` and a cancelled
    request surfaces as ``Cancelled``.
    """

    def __init__(self) -> None:
        self._request_ids = itertools.count(1)
        self._pending: dict[int, PendingRoundTrip] = {}

    def begin(self, utterance: Utterance) -> PendingRoundTrip:
        request_id = next(self._request_ids)
        task = asyncio.create_task(
            self.send(utterance, request_id=request_id),
            name=f"round-trip-{request_id}",
        )
        pending = PendingRoundTrip(request_id=request_id, utterance=utterance, task=task)
        self._pending[request_id] = pending

        def _discard(_: asyncio.Task) -> None:
            self._pending.pop(request_id, None)

        task.add_done_callback(_discard)
        return pending

    async def send(self, utterance: Utterance, *, request_id: int) -> Exchange:
        started_at = _utc_now()
        kind = "text" if isinstance(utterance, str) else "audio"
        LOGGER.verbose(ROUNDTRIP_LOG_LABEL, f"Request {request_id} started ({kind})")
        try:
            if isinstance(utterance, str):
                reply = await self._reply_to_text(utterance)
            else:
                reply = await self._reply_to_recording(utterance)
        except asyncio.CancelledError:
            LOGGER.verbose(ROUNDTRIP_LOG_LABEL, f"Request {request_id} cancelled")
            raise
        except VoiceChatError:
            raise
        except Exception as exc:
            raise RoundTripFailed(f"Assistant request failed: {exc}") from exc

        exchange = Exchange(
            request_id=request_id,
            user_utterance=utterance,
            assistant_text=reply.text,
            assistant_audio=reply.audio if reply.audio else None,
            started_at=started_at,
            completed_at=_utc_now(),
            user_transcript=reply.transcript,
        )
        LOGGER.verbose(
            ROUNDTRIP_LOG_LABEL,
            f"Request {request_id} completed "
            f"(text={'yes' if exchange.assistant_text else 'no'}, "
            f"audio={'yes' if exchange.has_audio else 'no'})",
        )
        return exchange

    def cancel(self, request_id: int) -> bool:
        """Cancel an outstanding request; returns False if it already resolved."""

        pending = self._pending.get(request_id)
        if pending is None or pending.task.done():
            return False
        pending.task.cancel()
        return True

    async def aclose(self) -> None:
        """Cancel outstanding requests and release transport resources."""

        pending = [entry.task for entry in self._pending.values() if not entry.task.done()]
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        self._pending.clear()

    @staticmethod
    async def resolve(pending: PendingRoundTrip) -> Exchange:
        """Await ``pending``, translating a cancelled request into ``Cancelled``."""

        try:
            return await asyncio.shield(pending.task)
        except asyncio.CancelledError:
            if pending.task.cancelled():
                current = asyncio.current_task()
                if current is None or not current.cancelling():
                    raise Cancelled(f"Request {pending.request_id} was cancelled.") from None
            raise

    @abstractmethod
    async def _reply_to_text(self, text: str) -> AssistantReply:
        """Return the assistant's reply to typed text."""

    @abstractmethod
    async def _reply_to_recording(self, recording: Recording) -> AssistantReply:
        """Transcribe ``recording`` and return the assistant's reply."""


__all__ = [
    "AssistantReply",
    "Exchange",
    "PendingRoundTrip",
    "SpeechRoundTrip",
    "Utterance",
]
