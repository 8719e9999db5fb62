import asyncio
from types import SimpleNamespace

import numpy as np
import pytest

from voice_chat.audio.capture import AudioCaptureSession
from voice_chat.core.exceptions import CaptureFailed, DeviceUnavailable, PermissionDenied

SAMPLE_RATE = 16000
LOUD = 5000
CHUNK_FRAMES = 1600  # 100 ms at 16 kHz
BYTES_PER_FRAME = 2


def make_session(fake_sd, **overrides) -> AudioCaptureSession:
    options = dict(
        sample_rate=SAMPLE_RATE,
        channels=1,
        buffer_size=CHUNK_FRAMES,
        dtype="int16",
        input_device=None,
        max_duration_seconds=5.0,
        end_of_speech_silence_seconds=0.3,
        silence_threshold=500,
        queue_max_size=64,
        backend=fake_sd,
    )
    options.update(overrides)
    return AudioCaptureSession(**options)


def loud(frames: int = CHUNK_FRAMES) -> np.ndarray:
    return np.full(frames, LOUD, dtype=np.int16)


def silent(frames: int = CHUNK_FRAMES) -> np.ndarray:
    return np.zeros(frames, dtype=np.int16)


async def flush_callbacks() -> None:
    await asyncio.sleep(0)


def test_rejects_non_positive_duration_bound(fake_sd):
    with pytest.raises(ValueError):
        make_session(fake_sd, max_duration_seconds=0)


@pytest.mark.asyncio
async def test_open_starts_stream_with_configured_settings(fake_sd):
    session = make_session(fake_sd)

    handle = session.open()

    stream = fake_sd.streams[-1]
    assert stream.active
    assert stream.kwargs["samplerate"] == SAMPLE_RATE
    assert stream.kwargs["channels"] == 1
    assert stream.kwargs["dtype"] == "int16"
    assert stream.kwargs["device"] == 0
    assert handle.device == 0
    assert not handle.closed
    session.close(handle)


@pytest.mark.asyncio
async def test_each_open_gets_a_new_session_id(fake_sd):
    session = make_session(fake_sd)

    first = session.open()
    session.close(first)
    second = session.open()
    session.close(second)

    assert second.session_id > first.session_id


@pytest.mark.asyncio
async def test_close_is_idempotent(fake_sd):
    session = make_session(fake_sd)
    handle = session.open()
    stream = fake_sd.streams[-1]

    session.close(handle)
    session.close(handle)

    assert handle.closed
    assert stream.stop_calls == 1
    assert stream.close_calls == 1


@pytest.mark.asyncio
async def test_record_stops_after_trailing_silence(fake_sd):
    session = make_session(fake_sd)
    handle = session.open()
    stream = fake_sd.streams[-1]

    stream.push(loud())
    for _ in range(4):
        stream.push(silent())
    await flush_callbacks()

    recording = await asyncio.wait_for(session.record(handle), timeout=2)
    session.close(handle)

    assert recording.speech_detected
    assert not recording.truncated
    assert recording.frame_count == 5 * CHUNK_FRAMES
    assert recording.sample_rate == SAMPLE_RATE


@pytest.mark.asyncio
async def test_record_hits_duration_bound_without_audio(fake_sd):
    session = make_session(fake_sd, max_duration_seconds=0.2)
    handle = session.open()

    recording = await asyncio.wait_for(session.record(handle), timeout=2)
    session.close(handle)

    assert recording.truncated
    assert recording.is_empty
    assert not recording.speech_detected


@pytest.mark.asyncio
async def test_record_trims_audio_to_duration_bound(fake_sd):
    session = make_session(fake_sd, max_duration_seconds=0.1)
    handle = session.open()
    fake_sd.streams[-1].push(silent(4000))
    await flush_callbacks()

    recording = await asyncio.wait_for(session.record(handle), timeout=2)
    session.close(handle)

    assert recording.truncated
    assert len(recording.data) == CHUNK_FRAMES * BYTES_PER_FRAME
    assert recording.duration_seconds == pytest.approx(0.1)


@pytest.mark.asyncio
async def test_finish_request_returns_audio_gathered_so_far(fake_sd):
    session = make_session(fake_sd)
    handle = session.open()
    fake_sd.streams[-1].push(loud(800))
    await flush_callbacks()

    handle.request_finish()
    recording = await asyncio.wait_for(session.record(handle), timeout=2)
    session.close(handle)

    assert recording.frame_count == 800
    assert recording.speech_detected
    assert not recording.truncated


@pytest.mark.asyncio
async def test_close_during_record_completes_the_recording(fake_sd):
    session = make_session(fake_sd)
    handle = session.open()
    task = asyncio.create_task(session.record(handle))
    await asyncio.sleep(0.05)

    session.close(handle)
    recording = await asyncio.wait_for(task, timeout=2)

    assert recording.is_empty
    assert not recording.truncated


@pytest.mark.asyncio
async def test_stream_dying_mid_capture_raises_capture_failed(fake_sd):
    session = make_session(fake_sd)
    handle = session.open()
    task = asyncio.create_task(session.record(handle))
    await asyncio.sleep(0.01)

    fake_sd.streams[-1].die()

    with pytest.raises(CaptureFailed):
        await asyncio.wait_for(task, timeout=2)
    session.close(handle)


@pytest.mark.asyncio
async def test_audio_after_close_is_ignored(fake_sd):
    session = make_session(fake_sd)
    handle = session.open()
    stream = fake_sd.streams[-1]
    session.close(handle)

    stream.push(loud())
    await flush_callbacks()

    assert handle.queue.empty()


@pytest.mark.asyncio
async def test_permission_error_maps_to_permission_denied(fake_sd):
    fake_sd.stream_error = RuntimeError("Error opening InputStream: Permission denied")
    session = make_session(fake_sd)

    with pytest.raises(PermissionDenied):
        session.open()


@pytest.mark.asyncio
async def test_unsupported_sample_rate_maps_to_device_unavailable(fake_sd):
    fake_sd.input_settings_error = ValueError("Invalid sample rate")
    session = make_session(fake_sd)

    with pytest.raises(DeviceUnavailable, match="SAMPLE_RATE"):
        session.open()
    assert fake_sd.streams == []


@pytest.mark.asyncio
async def test_unknown_override_device_is_unavailable(fake_sd):
    session = make_session(fake_sd, input_device=7)

    with pytest.raises(DeviceUnavailable, match="not recognized"):
        session.open()


@pytest.mark.asyncio
async def test_no_input_devices_is_unavailable(fake_sd):
    fake_sd.default = SimpleNamespace(device=(-1, -1))
    fake_sd.devices = [{"name": "Speaker", "max_input_channels": 0}]
    session = make_session(fake_sd)

    with pytest.raises(DeviceUnavailable, match="No audio input devices"):
        session.open()


@pytest.mark.asyncio
async def test_scans_for_input_device_when_default_is_invalid(fake_sd):
    fake_sd.default = SimpleNamespace(device=(-1, -1))
    fake_sd.devices = [
        {"name": "Speaker", "max_input_channels": 0},
        {"name": "USB Mic", "max_input_channels": 1},
    ]
    session = make_session(fake_sd)

    handle = session.open()
    session.close(handle)

    assert handle.device == 1
