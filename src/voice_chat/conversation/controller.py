"""
Turn-taking controller for a single voice conversation.

The controller is an actor: commands from the presentation layer and terminal
events from capture, round-trip and playback tasks are all serialized through
one lock, and events arrive through a ``ConversationEventBus`` that delivers
them in order. Every event carries the session, request or playback id it
belongs to; events whose id is no longer the active one are dropped.
"""

from __future__ import annotations

import asyncio
import itertools
import logging
from typing import Iterable, Optional

from voice_chat.assistant.round_trip import Exchange, PendingRoundTrip, SpeechRoundTrip
from voice_chat.audio.capture import AudioCaptureSession, CaptureHandle
from voice_chat.audio.decoding import ReplyAudio
from voice_chat.audio.playback import PlaybackSession
from voice_chat.cli.logging_utils import CONTROL_LOG_LABEL, LOGGER, TURN_LOG_LABEL
from voice_chat.config import ConversationPolicy
from voice_chat.core.exceptions import (
    Cancelled,
    CaptureDeviceError,
    CaptureFailed,
    ConversationBusy,
    PlaybackFailed,
    RoundTripFailed,
    VoiceChatError,
)

from .events import (
    CaptureCompleted,
    CaptureErrored,
    ConversationEventBus,
    PlaybackFinished,
    RoundTripResolved,
)
from .observers import ConversationObserver, ErrorNotice
from .state import REPLY_STATES, ConversationState, ConversationStateMachine
from .tasks import NotificationTaskManager

MAX_CONSECUTIVE_CAPTURE_FAILURES = 3

_logger = logging.getLogger(__name__)


class TurnController:
    """Sequences capture -> round-trip -> playback -> (optional) next capture."""

    def __init__(
        self,
        round_trip: SpeechRoundTrip,
        *,
        capture: Optional[AudioCaptureSession] = None,
        playback: Optional[PlaybackSession] = None,
        policy: Optional[ConversationPolicy] = None,
        observers: Iterable[ConversationObserver] = (),
        cancel_abandoned_requests: bool = False,
    ):
        self._round_trip = round_trip
        self._capture = capture or AudioCaptureSession()
        self._playback = playback or PlaybackSession()
        self._policy = policy or ConversationPolicy()
        self._observers: list[ConversationObserver] = list(observers)
        self._cancel_abandoned_requests = cancel_abandoned_requests

        self._machine = ConversationStateMachine()
        self._lock = asyncio.Lock()
        self._bus = ConversationEventBus()
        self._bus.subscribe(CaptureCompleted, self._on_capture_completed)
        self._bus.subscribe(CaptureErrored, self._on_capture_errored)
        self._bus.subscribe(RoundTripResolved, self._on_round_trip_resolved)
        self._bus.subscribe(PlaybackFinished, self._on_playback_finished)
        self._bus_task: Optional[asyncio.Task] = None
        self._tasks = NotificationTaskManager()

        self._voice_mode_enabled = False
        self._capture_deferred = False
        self._capture_handle: Optional[CaptureHandle] = None
        self._active_request_id: Optional[int] = None
        self._latest_request_id = 0
        self._playback_ids = itertools.count(1)
        self._active_playback_id: Optional[int] = None
        self._consecutive_capture_failures = 0
        self._state_waiters: list[tuple[frozenset[ConversationState], asyncio.Future]] = []
        self._closed = False

    # ------------------------------------------------------------------
    # Introspection
    @property
    def state(self) -> ConversationState:
        return self._machine.state

    @property
    def voice_mode_enabled(self) -> bool:
        return self._voice_mode_enabled

    @property
    def policy(self) -> ConversationPolicy:
        return self._policy

    @property
    def capture_open(self) -> bool:
        return self._capture_handle is not None

    @property
    def playback_active(self) -> bool:
        return self._active_playback_id is not None

    @property
    def active_request_id(self) -> Optional[int]:
        return self._active_request_id

    def add_observer(self, observer: ConversationObserver) -> None:
        self._observers.append(observer)

    def remove_observer(self, observer: ConversationObserver) -> None:
        if observer in self._observers:
            self._observers.remove(observer)

    async def wait_for_state(
        self, *states: ConversationState, timeout: Optional[float] = None
    ) -> ConversationState:
        """Return once the conversation enters one of ``states``."""

        wanted = frozenset(states)
        if self.state in wanted:
            return self.state
        future: asyncio.Future = asyncio.get_running_loop().create_future()
        entry = (wanted, future)
        self._state_waiters.append(entry)
        try:
            return await asyncio.wait_for(future, timeout)
        finally:
            if entry in self._state_waiters:
                self._state_waiters.remove(entry)

    # ------------------------------------------------------------------
    # Lifecycle
    async def start(self) -> None:
        if self._closed:
            raise RuntimeError("TurnController has been closed.")
        if self._bus_task is None:
            self._bus_task = asyncio.create_task(self._bus.run(), name="conversation-events")

    async def close(self) -> None:
        """Release every resource; the controller cannot be restarted."""

        if self._closed:
            return
        async with self._lock:
            self._closed = True
            if self.state is not ConversationState.IDLE or self._voice_mode_enabled:
                await self._stop_locked("controller closing")
        await self._tasks.drain()
        await self._bus.shutdown()
        if self._bus_task is not None:
            await self._bus_task
            self._bus_task = None
        for _, future in self._state_waiters:
            if not future.done():
                future.cancel()

    async def __aenter__(self) -> "TurnController":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    # ------------------------------------------------------------------
    # Commands from the presentation layer
    async def enable_voice_mode(self) -> None:
        """Turn voice mode on and open the microphone when the conversation is idle.

        Raises ``PermissionDenied`` or ``DeviceUnavailable`` (after notifying
        observers) when the microphone cannot be acquired; voice mode is left
        off and the state stays ``IDLE``.
        """

        async with self._lock:
            self._ensure_running()
            if self._voice_mode_enabled:
                if self.state is not ConversationState.IDLE:
                    return
            else:
                self._voice_mode_enabled = True
                LOGGER.log(CONTROL_LOG_LABEL, "Voice mode enabled.")
            if self.state is ConversationState.IDLE:
                self._begin_capture("voice mode enabled", raise_errors=True)
            else:
                self._capture_deferred = True
                LOGGER.verbose(
                    CONTROL_LOG_LABEL,
                    f"Capture deferred until the current {self.state.value} step finishes.",
                )

    async def disable_voice_mode(self) -> None:
        """Close the microphone and halt playback before returning.

        An in-flight round-trip is abandoned; its eventual result is discarded.
        """

        async with self._lock:
            if not self._voice_mode_enabled and self.state is ConversationState.IDLE:
                return
            await self._stop_locked("voice mode disabled")

    async def toggle_voice_mode(self) -> bool:
        """Flip voice mode; returns the new setting."""

        if self._voice_mode_enabled:
            await self.disable_voice_mode()
            return False
        await self.enable_voice_mode()
        return True

    async def send_text(self, text: str) -> Optional[int]:
        """Send typed text; returns the request id, or None for blank input.

        Only accepted while ``IDLE``; otherwise raises ``ConversationBusy``.
        """

        message = text.strip()
        if not message:
            return None
        async with self._lock:
            self._ensure_running()
            if self.state is not ConversationState.IDLE:
                raise ConversationBusy(
                    f"Cannot send text while the conversation is {self.state.value}."
                )
            pending = self._round_trip.begin(message)
            self._track_request(pending)
            self._transition(ConversationState.AWAITING_REPLY, f"text request {pending.request_id}")
            return pending.request_id

    async def start_capture(self) -> bool:
        """Open the microphone for one utterance (the "Talk" button).

        Enables voice mode if needed. Returns False when already capturing.
        """

        async with self._lock:
            self._ensure_running()
            if self.state is ConversationState.CAPTURING:
                return False
            if self.state is not ConversationState.IDLE:
                raise ConversationBusy(
                    f"Cannot start capture while the conversation is {self.state.value}."
                )
            enabling = not self._voice_mode_enabled
            self._voice_mode_enabled = True
            if enabling:
                LOGGER.log(CONTROL_LOG_LABEL, "Voice mode enabled.")
            self._begin_capture("talk requested", raise_errors=True)
            return True

    async def finish_capture(self) -> bool:
        """Complete the current capture early (the "Stop" button)."""

        async with self._lock:
            handle = self._capture_handle
            if self.state is not ConversationState.CAPTURING or handle is None:
                return False
            handle.request_finish()
            LOGGER.verbose(CONTROL_LOG_LABEL, f"Finish requested for session {handle.session_id}.")
            return True

    # ------------------------------------------------------------------
    # Event handlers (run one at a time by the bus)
    async def _on_capture_completed(self, event: CaptureCompleted) -> None:
        async with self._lock:
            if not self._is_current_capture(event.session_id):
                LOGGER.verbose(
                    TURN_LOG_LABEL, f"Dropping stale recording from session {event.session_id}."
                )
                return
            self._release_capture()
            self._consecutive_capture_failures = 0
            recording = event.recording
            if recording.is_empty or (
                self._policy.skip_silent_recordings and not recording.speech_detected
            ):
                LOGGER.log(TURN_LOG_LABEL, "No speech captured; skipping round-trip.")
                self._continue_or_idle("empty recording")
                return

            pending = self._round_trip.begin(recording)
            self._track_request(pending)
            LOGGER.log(
                TURN_LOG_LABEL,
                f"Sending {recording.duration_seconds:.2f}s recording "
                f"(request {pending.request_id}).",
            )
            self._transition(
                ConversationState.TRANSCRIBING, f"recording sent as request {pending.request_id}"
            )

    async def _on_capture_errored(self, event: CaptureErrored) -> None:
        async with self._lock:
            if not self._is_current_capture(event.session_id):
                LOGGER.verbose(
                    TURN_LOG_LABEL, f"Dropping stale capture error from session {event.session_id}."
                )
                return
            self._release_capture()
            self._consecutive_capture_failures += 1
            self._report(event.error)
            if (
                self._rearm_allowed(retrying=True)
                and self._consecutive_capture_failures < MAX_CONSECUTIVE_CAPTURE_FAILURES
            ):
                self._begin_capture("retrying after capture failure")
                return
            self._fall_back_to_idle("capture failed")

    async def _on_round_trip_resolved(self, event: RoundTripResolved) -> None:
        async with self._lock:
            if event.request_id != self._active_request_id or self.state not in REPLY_STATES:
                LOGGER.verbose(
                    TURN_LOG_LABEL,
                    f"Discarding stale reply for request {event.request_id} "
                    f"(latest dispatched: {self._latest_request_id}).",
                )
                return

            replying_to_text = self.state is ConversationState.AWAITING_REPLY
            self._active_request_id = None
            if isinstance(event.error, Cancelled):
                LOGGER.verbose(TURN_LOG_LABEL, f"Request {event.request_id} was cancelled.")
                self._fall_back_to_idle("request cancelled")
                return
            if event.error is not None:
                self._report(event.error)
                if self._rearm_allowed(retrying=True):
                    self._begin_capture("retrying after failed round-trip")
                else:
                    self._fall_back_to_idle("round-trip failed")
                return

            exchange = event.exchange
            if exchange is None:
                self._report(RoundTripFailed(f"Request {event.request_id} produced no reply."))
                self._fall_back_to_idle("round-trip produced no reply")
                return

            self._notify_exchange(exchange)
            audio = exchange.assistant_audio
            if audio and self._should_speak(replying_to_text):
                self._start_playback(audio, exchange.request_id)
            else:
                self._continue_or_idle("reply has no audio to play")

    async def _on_playback_finished(self, event: PlaybackFinished) -> None:
        async with self._lock:
            if (
                self.state is not ConversationState.SPEAKING
                or event.playback_id != self._active_playback_id
            ):
                LOGGER.verbose(
                    TURN_LOG_LABEL, f"Dropping stale playback result {event.playback_id}."
                )
                return
            self._active_playback_id = None
            if event.error is not None:
                self._report(event.error)
            self._continue_or_idle("playback finished")

    # ------------------------------------------------------------------
    # Background waiters (publish exactly one terminal event each)
    async def _run_capture(self, handle: CaptureHandle) -> None:
        try:
            recording = await self._capture.record(handle)
        except VoiceChatError as exc:
            await self._bus.publish(CaptureErrored(handle.session_id, exc))
            return
        except Exception as exc:
            _logger.exception("Capture session %s crashed", handle.session_id)
            failure = CaptureFailed(f"Capture session {handle.session_id} crashed: {exc}")
            await self._bus.publish(CaptureErrored(handle.session_id, failure))
            return
        await self._bus.publish(CaptureCompleted(handle.session_id, recording))

    async def _await_round_trip(self, pending: PendingRoundTrip) -> None:
        try:
            exchange = await SpeechRoundTrip.resolve(pending)
        except VoiceChatError as exc:
            await self._bus.publish(RoundTripResolved(pending.request_id, error=exc))
            return
        await self._bus.publish(RoundTripResolved(pending.request_id, exchange=exchange))

    async def _run_playback(self, playback_id: int, audio: ReplyAudio) -> None:
        try:
            await self._playback.play(audio)
        except VoiceChatError as exc:
            await self._bus.publish(PlaybackFinished(playback_id, error=exc))
            return
        except Exception as exc:
            _logger.exception("Playback %s crashed", playback_id)
            failure = PlaybackFailed(f"Playback crashed: {exc}")
            await self._bus.publish(PlaybackFinished(playback_id, error=failure))
            return
        await self._bus.publish(PlaybackFinished(playback_id))

    # ------------------------------------------------------------------
    # Transitions (caller holds the lock)
    def _begin_capture(self, reason: str, *, raise_errors: bool = False) -> bool:
        if self._active_playback_id is not None:
            raise RuntimeError("Refusing to open the microphone while playback is active.")
        try:
            handle = self._capture.open()
        except CaptureDeviceError as exc:
            self._fall_back_to_idle(f"microphone unavailable ({exc.kind})")
            self._report(exc)
            if raise_errors:
                raise
            return False

        self._capture_handle = handle
        self._capture_deferred = False
        self._transition(ConversationState.CAPTURING, reason)
        LOGGER.log(TURN_LOG_LABEL, f"Listening (session {handle.session_id}).")
        self._tasks.schedule(self._run_capture(handle), name=f"capture-{handle.session_id}")
        return True

    def _start_playback(self, audio: ReplyAudio, request_id: int) -> None:
        if self._capture_handle is not None:
            raise RuntimeError("Refusing to start playback while the microphone is open.")
        playback_id = next(self._playback_ids)
        self._active_playback_id = playback_id
        self._transition(ConversationState.SPEAKING, f"playing reply to request {request_id}")
        self._tasks.schedule(
            self._run_playback(playback_id, audio), name=f"playback-{playback_id}"
        )

    def _continue_or_idle(self, reason: str) -> None:
        if self._rearm_allowed():
            self._begin_capture(f"{reason}; listening again")
        else:
            self._transition(ConversationState.IDLE, reason)

    def _fall_back_to_idle(self, reason: str) -> None:
        """Go idle after a failure with voice mode off, so enabling it again re-arms."""

        was_enabled = self._voice_mode_enabled
        self._voice_mode_enabled = False
        self._capture_deferred = False
        self._transition(ConversationState.IDLE, reason)
        if was_enabled:
            LOGGER.log(CONTROL_LOG_LABEL, "Voice mode disabled.")

    def _rearm_allowed(self, *, retrying: bool = False) -> bool:
        if not self._voice_mode_enabled or self._closed:
            return False
        if retrying:
            return self._policy.continuous_mode and self._policy.retry_on_failure
        return self._policy.continuous_mode or self._capture_deferred

    def _should_speak(self, replying_to_text: bool) -> bool:
        if not replying_to_text:
            return True
        return self._voice_mode_enabled or self._policy.speak_text_replies

    async def _stop_locked(self, reason: str) -> None:
        self._voice_mode_enabled = False
        self._capture_deferred = False
        self._transition(ConversationState.STOPPING, reason)
        if self._capture_handle is not None:
            self._release_capture()
        self._active_playback_id = None
        await self._playback.stop()
        # Abandoned requests keep their waiters so late replies hit the stale-id check.
        self._tasks.cancel(reason, kinds=("capture", "playback"))
        if self._active_request_id is not None:
            abandoned = self._active_request_id
            self._active_request_id = None
            if self._cancel_abandoned_requests:
                self._round_trip.cancel(abandoned)
            LOGGER.verbose(TURN_LOG_LABEL, f"Abandoned request {abandoned}.")
        self._transition(ConversationState.IDLE, "resources released")
        LOGGER.log(CONTROL_LOG_LABEL, "Voice mode disabled.")

    def _release_capture(self) -> None:
        handle = self._capture_handle
        self._capture_handle = None
        if handle is not None:
            self._capture.close(handle)

    def _track_request(self, pending: PendingRoundTrip) -> None:
        self._active_request_id = pending.request_id
        self._latest_request_id = max(self._latest_request_id, pending.request_id)
        self._tasks.schedule(
            self._await_round_trip(pending), name=f"round-trip-{pending.request_id}"
        )

    def _is_current_capture(self, session_id: int) -> bool:
        handle = self._capture_handle
        return (
            self.state is ConversationState.CAPTURING
            and handle is not None
            and handle.session_id == session_id
        )

    def _transition(self, new: ConversationState, reason: str) -> None:
        previous = self._machine.transition(new, reason)
        if previous is None:
            return
        for observer in list(self._observers):
            try:
                observer.on_state_change(previous, new)
            except Exception:
                _logger.exception("Observer %r failed on state change", observer)
        for wanted, future in list(self._state_waiters):
            if new in wanted and not future.done():
                future.set_result(new)

    def _notify_exchange(self, exchange: Exchange) -> None:
        for observer in list(self._observers):
            try:
                observer.on_exchange(exchange)
            except Exception:
                _logger.exception("Observer %r failed on exchange", observer)

    def _report(self, error: VoiceChatError) -> None:
        if isinstance(error, Cancelled):
            return
        notice = ErrorNotice.from_exception(error)
        LOGGER.log(TURN_LOG_LABEL, f"{notice.kind}: {notice.message}", error=True)
        for observer in list(self._observers):
            try:
                observer.on_error(notice)
            except Exception:
                _logger.exception("Observer %r failed on error notice", observer)

    def _ensure_running(self) -> None:
        if self._closed:
            raise RuntimeError("TurnController has been closed.")
        if self._bus_task is None:
            raise RuntimeError("TurnController.start() must be awaited before issuing commands.")


__all__ = ["MAX_CONSECUTIVE_CAPTURE_FAILURES", "TurnController"]
