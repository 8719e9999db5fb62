"""
Microphone capture sessions for the turn controller.
Each session owns the input device from ``open()`` until ``close()`` and yields
exactly one bounded ``Recording``.
"""

from __future__ import annotations

import asyncio
import itertools
from dataclasses import dataclass, field
from typing import Any, Optional

from voice_chat.audio.silence import SilenceTracker
from voice_chat.cli.logging_utils import CAPTURE_LOG_LABEL, ERROR_LOG_LABEL, LOGGER
from voice_chat.config import (
    AUDIO_INPUT_DEVICE,
    AUDIO_QUEUE_MAX_SIZE,
    BUFFER_SIZE,
    CHANNELS,
    DTYPE,
    END_OF_SPEECH_SILENCE_SECONDS,
    MAX_CAPTURE_SECONDS,
    SAMPLE_RATE,
    SILENCE_THRESHOLD,
)
from voice_chat.core.exceptions import (
    CaptureDeviceError,
    CaptureFailed,
    DeviceUnavailable,
    PermissionDenied,
)

from ._sounddevice import load_sounddevice
from .recording import Recording
from .utils import describe_device, device_info_dict

POLL_INTERVAL_SECONDS = 0.1
_PERMISSION_MARKERS = ("permission", "denied", "not authorized", "not permitted")


@dataclass(eq=False)
class CaptureHandle:
    """State for a single open microphone session."""

    session_id: int
    device: Any
    sample_rate: int
    channels: int
    queue: asyncio.Queue[bytes]
    loop: asyncio.AbstractEventLoop
    stream: Any = None
    callback_count: int = 0
    dropped_chunks: int = 0
    _finish_requested: bool = field(default=False, repr=False)
    _closed: bool = field(default=False, repr=False)

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def finish_requested(self) -> bool:
        return self._finish_requested

    def request_finish(self) -> None:
        """Ask the running ``record()`` to complete with the audio gathered so far."""

        self._finish_requested = True

    def _enqueue_audio_bytes(self, audio_bytes: bytes) -> None:
        """Attempt a non-blocking enqueue of audio; drop if the queue is full."""

        if self._closed:
            return
        try:
            self.queue.put_nowait(audio_bytes)
        except asyncio.QueueFull:
            self.dropped_chunks += 1
            LOGGER.verbose(CAPTURE_LOG_LABEL, "Audio queue full, dropping frame")


class AudioCaptureSession:
    """Opens the microphone, gathers one utterance, and releases the device."""

    def __init__(
        self,
        *,
        sample_rate: int = SAMPLE_RATE,
        channels: int = CHANNELS,
        buffer_size: int = BUFFER_SIZE,
        dtype: str = DTYPE,
        input_device: int | str | None = AUDIO_INPUT_DEVICE,
        max_duration_seconds: float = MAX_CAPTURE_SECONDS,
        end_of_speech_silence_seconds: float = END_OF_SPEECH_SILENCE_SECONDS,
        silence_threshold: float = SILENCE_THRESHOLD,
        queue_max_size: int = AUDIO_QUEUE_MAX_SIZE,
        backend: Any = None,
    ):
        if max_duration_seconds <= 0:
            raise ValueError("max_duration_seconds must be positive.")
        self.sample_rate = sample_rate
        self.channels = channels
        self.buffer_size = buffer_size
        self.dtype = dtype
        self.input_device = input_device
        self.max_duration_seconds = max_duration_seconds
        self.end_of_speech_silence_seconds = end_of_speech_silence_seconds
        self.silence_threshold = silence_threshold
        self.queue_max_size = queue_max_size
        self._backend = backend
        self._session_ids = itertools.count(1)

    @property
    def backend(self):
        if self._backend is None:
            self._backend = load_sounddevice()
        return self._backend

    # ------------------------------------------------------------------
    # Session lifecycle
    def open(self) -> CaptureHandle:
        """Acquire the input device and start streaming into a fresh handle.

        Raises ``PermissionDenied`` or ``DeviceUnavailable``; no handle is
        returned (and nothing needs closing) on failure.
        """

        loop = asyncio.get_running_loop()
        sd = self.backend
        device = self._select_input_device(sd)
        self._ensure_settings_supported(sd, device)

        handle = CaptureHandle(
            session_id=next(self._session_ids),
            device=device,
            sample_rate=self.sample_rate,
            channels=self.channels,
            queue=asyncio.Queue(maxsize=self.queue_max_size),
            loop=loop,
        )

        def _callback(indata, frames, time_info, status):
            handle.callback_count += 1
            if status:
                LOGGER.verbose(CAPTURE_LOG_LABEL, f"Audio callback status: {status}")
            audio_bytes = indata.copy().tobytes()
            if handle.closed:
                return
            try:
                loop.call_soon_threadsafe(handle._enqueue_audio_bytes, audio_bytes)
            except RuntimeError:
                # Event loop already closed; the session is being torn down.
                return

        try:
            handle.stream = sd.InputStream(
                samplerate=self.sample_rate,
                channels=self.channels,
                dtype=self.dtype,
                blocksize=self.buffer_size,
                callback=_callback,
                device=device,
            )
            handle.stream.start()
        except Exception as exc:
            self._abort_stream(handle)
            raise self._classify_device_error(exc, sd, device) from exc

        LOGGER.verbose(
            CAPTURE_LOG_LABEL,
            f"Session {handle.session_id} opened on {describe_device(sd, device)} "
            f"({self.sample_rate} Hz, {self.channels} ch, max {self.max_duration_seconds:.1f}s)",
        )
        return handle

    def close(self, handle: CaptureHandle) -> None:
        """Release the device. Safe to call more than once."""

        if handle.closed:
            return
        handle._closed = True
        self._abort_stream(handle)
        LOGGER.verbose(CAPTURE_LOG_LABEL, f"Session {handle.session_id} closed")

    async def record(self, handle: CaptureHandle) -> Recording:
        """Gather audio until end of speech, a finish request, close, or the time bound.

        Always returns within ``max_duration_seconds`` (plus one poll interval);
        raises ``CaptureFailed`` if the stream dies while the session is open.
        """

        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.max_duration_seconds
        tracker = SilenceTracker(
            silence_threshold=self.silence_threshold,
            max_silence_seconds=self.end_of_speech_silence_seconds,
            sample_rate=handle.sample_rate,
            channels=handle.channels,
        )
        chunks: list[bytes] = []
        truncated = False
        reason = "closed"

        while not handle.closed:
            if handle.finish_requested:
                reason = "finish requested"
                break
            remaining = deadline - loop.time()
            if remaining <= 0:
                truncated = True
                reason = "max duration reached"
                break
            try:
                chunk = await asyncio.wait_for(
                    handle.queue.get(), timeout=min(remaining, POLL_INTERVAL_SECONDS)
                )
            except asyncio.TimeoutError:
                self._ensure_stream_alive(handle)
                continue
            chunks.append(chunk)
            if tracker.observe(chunk):
                reason = "end of speech"
                break

        for chunk in self._drain_queue(handle):
            chunks.append(chunk)
            tracker.observe(chunk)
        data = self._bound_audio(b"".join(chunks), handle)
        recording = Recording(
            data=data,
            sample_rate=handle.sample_rate,
            channels=handle.channels,
            max_duration_seconds=self.max_duration_seconds,
            speech_detected=tracker.heard_speech,
            truncated=truncated,
        )
        LOGGER.verbose(
            CAPTURE_LOG_LABEL,
            f"Session {handle.session_id} finished ({reason}): "
            f"{recording.duration_seconds:.2f}s, speech={'yes' if recording.speech_detected else 'no'}",
        )
        return recording

    # ------------------------------------------------------------------
    # Internal helpers
    def _drain_queue(self, handle: CaptureHandle) -> list[bytes]:
        drained: list[bytes] = []
        while True:
            try:
                drained.append(handle.queue.get_nowait())
            except asyncio.QueueEmpty:
                return drained

    def _bound_audio(self, data: bytes, handle: CaptureHandle) -> bytes:
        bytes_per_frame = 2 * max(handle.channels, 1)
        max_frames = int(self.max_duration_seconds * handle.sample_rate)
        usable = len(data) - len(data) % bytes_per_frame
        return data[: min(usable, max_frames * bytes_per_frame)]

    def _ensure_stream_alive(self, handle: CaptureHandle) -> None:
        stream = handle.stream
        if stream is None or handle.closed:
            return
        if getattr(stream, "active", True):
            return
        if getattr(stream, "stopped", False) or getattr(stream, "closed", False):
            raise CaptureFailed(
                f"Input stream for session {handle.session_id} stopped unexpectedly."
            )

    def _abort_stream(self, handle: CaptureHandle) -> None:
        stream = handle.stream
        if stream is None:
            return
        handle.stream = None
        try:
            stream.stop()
        except Exception as exc:
            LOGGER.log(ERROR_LOG_LABEL, f"Failed to stop input stream: {exc}", error=True)
        try:
            stream.close()
        except Exception as exc:
            LOGGER.log(ERROR_LOG_LABEL, f"Failed to close input stream: {exc}", error=True)

    def _ensure_settings_supported(self, sd, device) -> None:
        try:
            sd.check_input_settings(
                device=device,
                channels=self.channels,
                dtype=self.dtype,
                samplerate=self.sample_rate,
            )
        except Exception as exc:
            raise self._classify_device_error(exc, sd, device) from exc

    def _classify_device_error(self, exc: Exception, sd, device) -> CaptureDeviceError:
        if isinstance(exc, CaptureDeviceError):
            return exc
        message = str(exc)
        lowered = message.lower()
        label = describe_device(sd, device)
        if isinstance(exc, PermissionError) or any(
            marker in lowered for marker in _PERMISSION_MARKERS
        ):
            return PermissionDenied(f"Microphone access denied for {label}: {message}")
        if "sample rate" in lowered or "painvalidsamplerate" in lowered:
            return DeviceUnavailable(
                f"Microphone {label} does not support SAMPLE_RATE={self.sample_rate} Hz."
            )
        return DeviceUnavailable(
            f"Unable to open microphone {label}: {message or type(exc).__name__}. "
            "Set AUDIO_INPUT_DEVICE to override the default device."
        )

    def _select_input_device(self, sd):
        """
        Determine which audio input device to use.

        Prefers the explicit AUDIO_INPUT_DEVICE override, then the system default,
        then falls back to the first enumerated input device with sufficient channels.
        """

        override = self.input_device
        if override is not None and override != "":
            try:
                sd.query_devices(override)
            except Exception as exc:
                raise DeviceUnavailable(
                    f"AUDIO_INPUT_DEVICE '{override}' is not recognized by sounddevice."
                ) from exc
            return override

        default_device = self._coerce_input_index(getattr(sd.default, "device", None))
        if default_device is not None and default_device >= 0:
            if self._device_is_valid(sd, default_device):
                return default_device

        return self._first_available_input_device(sd)

    @staticmethod
    def _coerce_input_index(device) -> Optional[int]:
        if isinstance(device, (list, tuple)):
            candidate = device[0] if device else None
        else:
            candidate = device

        return candidate if isinstance(candidate, int) else None

    @staticmethod
    def _device_is_valid(sd, device) -> bool:
        try:
            sd.query_devices(device)
            return True
        except Exception:
            return False

    def _first_available_input_device(self, sd) -> int:
        try:
            devices = sd.query_devices()
        except Exception as exc:
            raise DeviceUnavailable(
                "Unable to query audio devices via PortAudio. "
                "Verify that a microphone is connected."
            ) from exc

        if isinstance(devices, (list, tuple)):
            records = [device_info_dict(item) for item in devices]
        else:
            records = [device_info_dict(devices)]

        for idx, entry in enumerate(records):
            max_channels = entry.get("max_input_channels")
            if isinstance(max_channels, (int, float)) and int(max_channels) >= self.channels:
                return idx

        raise DeviceUnavailable(
            "No audio input devices with the required channel count were found. "
            "Connect a microphone and retry."
        )


__all__ = ["AudioCaptureSession", "CaptureHandle", "POLL_INTERVAL_SECONDS"]
