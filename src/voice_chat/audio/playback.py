"""Playback of synthesized assistant replies with a hard stop guarantee."""

from __future__ import annotations

import asyncio
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

import numpy as np

from voice_chat.cli.logging_utils import AUDIO_LOG_LABEL, LOGGER, PLAYBACK_LOG_LABEL
from voice_chat.config import (
    AUDIO_DEBUG_DUMP_DIRECTORY,
    AUDIO_DEBUG_DUMP_ENABLED,
    AUDIO_OUTPUT_DEVICE,
    PLAYBACK_SAMPLE_RATE,
)
from voice_chat.core.exceptions import PlaybackFailed

from ._sounddevice import load_sounddevice
from .decoding import ReplyAudio, decode_reply_audio, resample_linear
from .utils import device_info_dict

FALLBACK_SAMPLE_RATES = (48000, 44100, 32000)


class PlaybackSession:
    """Plays one reply at a time; ``stop()`` silences output before it returns."""

    def __init__(
        self,
        default_sample_rate: int = PLAYBACK_SAMPLE_RATE,
        *,
        output_device: int | str | None = AUDIO_OUTPUT_DEVICE,
        debug_dump_enabled: bool = AUDIO_DEBUG_DUMP_ENABLED,
        debug_dump_directory: Optional[Path | str] = AUDIO_DEBUG_DUMP_DIRECTORY,
        backend: Any = None,
    ):
        self._default_sample_rate = default_sample_rate
        self._configured_output_device = output_device
        self._output_device: int | str | None = output_device
        self._backend = backend
        self._lock = threading.Lock()
        self._generation = 0
        self._active_generation: Optional[int] = None
        self._supported_rates: dict[int, bool] = {}
        self._resample_warnings: set[tuple[int, int]] = set()
        self._device_resolved = False
        self._debug_dump_enabled = bool(debug_dump_enabled)
        self._debug_dump_dir = self._prepare_dump_directory(debug_dump_directory)

    @property
    def backend(self):
        if self._backend is None:
            self._backend = load_sounddevice()
        return self._backend

    @property
    def is_playing(self) -> bool:
        with self._lock:
            return self._active_generation is not None

    async def play(self, audio: ReplyAudio) -> None:
        """Play ``audio`` to completion or until ``stop()``.

        Any previous playback is stopped first. Raises ``PlaybackFailed`` when
        the payload cannot be decoded or the output device rejects it.
        """

        await self.stop()
        with self._lock:
            self._generation += 1
            generation = self._generation

        samples, source_rate = decode_reply_audio(audio)
        if self._debug_dump_enabled:
            self._debug_dump_audio(audio)

        try:
            await asyncio.to_thread(self._play_blocking, samples, source_rate, generation)
        except asyncio.CancelledError:
            self._stop_blocking()
            raise

    async def stop(self) -> bool:
        """Stop any in-progress playback, returning True if something was interrupted."""

        with self._lock:
            self._generation += 1
            if self._active_generation is None:
                return False
        return await asyncio.to_thread(self._stop_blocking)

    # ------------------------------------------------------------------
    # Blocking helpers (run in worker threads)
    def _play_blocking(self, samples: np.ndarray, source_rate: int, generation: int) -> None:
        sd = self.backend
        self._resolve_output_device(sd)
        playback_rate = self._select_playback_sample_rate(sd, source_rate)
        if playback_rate != source_rate:
            self._warn_if_resampling(source_rate, playback_rate)
            samples = resample_linear(samples, source_rate, playback_rate)

        with self._lock:
            if generation != self._generation:
                LOGGER.verbose(PLAYBACK_LOG_LABEL, "Playback stopped before it started.")
                return
            try:
                sd.play(samples, samplerate=playback_rate, device=self._output_device)
            except Exception as exc:
                raise PlaybackFailed(f"Output device rejected reply audio: {exc}") from exc
            self._active_generation = generation

        LOGGER.verbose(
            PLAYBACK_LOG_LABEL,
            f"Playing {samples.size / playback_rate:.2f}s of reply audio @ {playback_rate} Hz",
        )
        try:
            sd.wait()
        except Exception as exc:
            raise PlaybackFailed(f"Playback interrupted by device error: {exc}") from exc
        finally:
            with self._lock:
                if self._active_generation == generation:
                    self._active_generation = None

    def _stop_blocking(self) -> bool:
        with self._lock:
            self._generation += 1
            if self._active_generation is None:
                return False
            self._active_generation = None
            self.backend.stop()
        LOGGER.verbose(PLAYBACK_LOG_LABEL, "Playback halted.")
        return True

    # ------------------------------------------------------------------
    # Device negotiation
    def _resolve_output_device(self, sd) -> None:
        if self._device_resolved:
            return
        self._device_resolved = True
        if self._configured_output_device is not None:
            return
        device = getattr(sd.default, "device", None)
        candidate = device[1] if isinstance(device, (list, tuple)) and len(device) > 1 else device
        self._output_device = candidate if isinstance(candidate, int) and candidate >= 0 else None

    def _select_playback_sample_rate(self, sd, preferred_rate: int) -> int:
        candidates: list[int] = []
        for rate in (
            preferred_rate,
            self._default_sample_rate,
            self._device_default_sample_rate(sd),
            *FALLBACK_SAMPLE_RATES,
        ):
            if not rate:
                continue
            rate_int = int(rate)
            if rate_int <= 0 or rate_int in candidates:
                continue
            candidates.append(rate_int)

        for rate in candidates:
            if self._is_rate_supported(sd, rate):
                return rate
        return preferred_rate

    def _device_default_sample_rate(self, sd) -> Optional[int]:
        try:
            if self._output_device is None:
                raw = sd.query_devices(kind="output")
            else:
                raw = sd.query_devices(self._output_device)
        except Exception:
            return None
        rate = device_info_dict(raw).get("default_samplerate")
        if isinstance(rate, (int, float)):
            return int(rate)
        if isinstance(rate, str):
            try:
                return int(float(rate))
            except ValueError:
                return None
        return None

    def _is_rate_supported(self, sd, rate: int) -> bool:
        cached = self._supported_rates.get(rate)
        if cached is not None:
            return cached
        try:
            sd.check_output_settings(device=self._output_device, samplerate=rate, channels=1)
            supported = True
        except Exception:
            supported = False
        self._supported_rates[rate] = supported
        return supported

    def _warn_if_resampling(self, source: int, target: int) -> None:
        if (source, target) in self._resample_warnings:
            return
        self._resample_warnings.add((source, target))
        LOGGER.log(
            AUDIO_LOG_LABEL,
            f"Resampling assistant audio {source} Hz -> {target} Hz for playback compatibility.",
        )

    # ------------------------------------------------------------------
    # Debug dumps
    def _prepare_dump_directory(self, directory: Optional[Path | str]) -> Optional[Path]:
        if not self._debug_dump_enabled:
            return None
        target = Path(directory) if directory else Path("logs") / "audio_dumps"
        try:
            target.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            LOGGER.log(
                AUDIO_LOG_LABEL, f"Unable to create audio dump directory '{target}': {exc}"
            )
            return None
        return target

    def _debug_dump_audio(self, audio: ReplyAudio) -> None:
        dump_dir = self._debug_dump_dir
        if not dump_dir:
            return
        timestamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%S.%fZ")
        extension = (audio.format or "bin").strip().lower() or "bin"
        filepath = dump_dir / f"assistant_{timestamp}.{extension}"
        try:
            filepath.write_bytes(audio.data)
        except OSError as exc:
            LOGGER.log(AUDIO_LOG_LABEL, f"Failed to dump assistant audio to {filepath}: {exc}")
        else:
            LOGGER.verbose(AUDIO_LOG_LABEL, f"Saved assistant audio dump to {filepath}")


__all__ = ["PlaybackSession"]
