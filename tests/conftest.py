import os
import threading
from types import SimpleNamespace
from typing import Any, Optional

import numpy as np
import pytest

_TEST_ENV_DEFAULTS = {
    "OPENAI_API_KEY": "test-key",
    "ASSISTANT_BACKEND": "http",
    "VERBOSE_LOG_CAPTURE_ENABLED": "0",
    "AUDIO_DEBUG_DUMP_ENABLED": "0",
}

for key, value in _TEST_ENV_DEFAULTS.items():
    os.environ.setdefault(key, value)


@pytest.fixture(autouse=True)
def set_test_env_vars(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep critical environment variables stable across tests."""

    for key, value in _TEST_ENV_DEFAULTS.items():
        monkeypatch.setenv(key, value)


class FakeInputStream:
    """Minimal stand-in for ``sounddevice.InputStream``."""

    def __init__(self, **kwargs: Any) -> None:
        self.kwargs = kwargs
        self.callback = kwargs["callback"]
        self.active = False
        self.stopped = True
        self.closed = False
        self.stop_calls = 0
        self.close_calls = 0

    def start(self) -> None:
        self.active = True
        self.stopped = False

    def stop(self) -> None:
        self.stop_calls += 1
        self.active = False
        self.stopped = True

    def close(self) -> None:
        self.close_calls += 1
        self.closed = True

    def push(self, samples: np.ndarray) -> None:
        block = np.asarray(samples, dtype=np.int16).reshape(-1, 1)
        self.callback(block, block.shape[0], None, None)

    def die(self) -> None:
        """Simulate PortAudio stopping the stream on its own."""

        self.active = False
        self.stopped = True


class FakeSoundDevice:
    """In-memory replacement for the ``sounddevice`` module."""

    def __init__(self) -> None:
        self.default = SimpleNamespace(device=(0, 1))
        self.devices = [
            {
                "name": "Fake Mic",
                "index": 0,
                "max_input_channels": 1,
                "max_output_channels": 0,
                "default_samplerate": 16000.0,
            },
            {
                "name": "Fake Speaker",
                "index": 1,
                "max_input_channels": 0,
                "max_output_channels": 2,
                "default_samplerate": 24000.0,
            },
        ]
        self.streams: list[FakeInputStream] = []
        self.input_settings_error: Optional[Exception] = None
        self.stream_error: Optional[Exception] = None
        self.unsupported_output_rates: set[int] = set()
        self.play_error: Optional[Exception] = None
        self.auto_complete_playback = True
        self.played: list[tuple[np.ndarray, int, Any]] = []
        self.stop_calls = 0
        self.playing = threading.Event()
        self.output_settings_checked = threading.Event()
        self.output_settings_gate: Optional[threading.Event] = None
        self._playback_done = threading.Event()

    # Device queries ------------------------------------------------------
    def query_devices(self, device=None, kind=None):
        if device is None and kind is None:
            return list(self.devices)
        if kind == "output":
            return self.devices[1]
        if isinstance(device, int) and 0 <= device < len(self.devices):
            return self.devices[device]
        raise ValueError(f"unknown device {device!r}")

    def check_input_settings(self, **kwargs: Any) -> None:
        if self.input_settings_error is not None:
            raise self.input_settings_error

    def check_output_settings(self, device=None, samplerate=None, channels=None) -> None:
        self.output_settings_checked.set()
        if self.output_settings_gate is not None:
            self.output_settings_gate.wait(timeout=5)
        if samplerate in self.unsupported_output_rates:
            raise ValueError("Invalid sample rate")

    # Capture ---------------------------------------------------------------
    def InputStream(self, **kwargs: Any) -> FakeInputStream:  # noqa: N802 - mirrors sounddevice
        if self.stream_error is not None:
            raise self.stream_error
        stream = FakeInputStream(**kwargs)
        self.streams.append(stream)
        return stream

    # Playback --------------------------------------------------------------
    def play(self, samples, samplerate=None, device=None) -> None:
        if self.play_error is not None:
            raise self.play_error
        self.played.append((samples, samplerate, device))
        self._playback_done.clear()
        if self.auto_complete_playback:
            self._playback_done.set()
        self.playing.set()

    def wait(self) -> None:
        self._playback_done.wait(timeout=5)

    def stop(self) -> None:
        self.stop_calls += 1
        self._playback_done.set()

    def finish_playback(self) -> None:
        self._playback_done.set()


@pytest.fixture
def fake_sd() -> FakeSoundDevice:
    return FakeSoundDevice()
