"""
Helper routines for validating the microphone and the assistant backend outside
the main conversation loop.
"""

from __future__ import annotations

from typing import Optional

from voice_chat.assistant import build_round_trip
from voice_chat.audio.capture import AudioCaptureSession
from voice_chat.audio.metrics import calculate_rms, peak_amplitude
from voice_chat.config import CHANNELS, SAMPLE_RATE

DIAGNOSTIC_CAPTURE_SECONDS = 5.0


async def test_audio_capture(
    max_duration_seconds: float = DIAGNOSTIC_CAPTURE_SECONDS,
    *,
    capture: Optional[AudioCaptureSession] = None,
) -> None:
    """Record one bounded utterance to verify microphone access and levels."""
    print("\n=== Audio Capture Test ===\n")

    session = capture or AudioCaptureSession(max_duration_seconds=max_duration_seconds)
    handle = session.open()
    print(f"Capturing up to {session.max_duration_seconds:.1f} seconds...")
    print("(Speak into your microphone, then pause to finish early)\n")

    try:
        recording = await session.record(handle)
    finally:
        session.close(handle)

    print("\n=== Test Complete ===")
    print(f"Duration: {recording.duration_seconds:.2f}s ({len(recording.data):,} bytes)")
    print(f"Peak amplitude: {peak_amplitude(recording.data)} / 32767")
    print(f"RMS level: {calculate_rms(recording.data):.1f}")
    print(f"Speech detected: {'yes' if recording.speech_detected else 'no'}")
    print(f"Audio format verified: {SAMPLE_RATE}Hz, {CHANNELS} channel(s), 16-bit PCM")


async def test_assistant(
    text: str,
    *,
    backend: Optional[str] = None,
    api_url: Optional[str] = None,
) -> None:
    """Send one text message to the assistant backend and print the reply."""
    print("\n=== Assistant Round-Trip Test ===\n")

    round_trip = build_round_trip(backend, api_url=api_url)
    try:
        pending = round_trip.begin(text)
        exchange = await round_trip.resolve(pending)
    finally:
        await round_trip.aclose()

    elapsed = (exchange.completed_at - exchange.started_at).total_seconds()
    print(f"Request {exchange.request_id} completed in {elapsed:.2f}s")
    print(f"Assistant: {exchange.assistant_text or '(no text)'}")
    if exchange.assistant_audio:
        audio = exchange.assistant_audio
        print(f"Reply audio: {len(audio.data):,} bytes ({audio.format})")
    else:
        print("Reply audio: none")
