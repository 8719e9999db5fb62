"""
Hands-free voice chat client.
Talks to a remote assistant over HTTP or the OpenAI API and keeps microphone
capture and reply playback strictly turn-based.
"""

import argparse
import asyncio
import sys
from dataclasses import replace
from functools import partial
from typing import Optional

from voice_chat.assistant import build_round_trip
from voice_chat.cli.console import ConsolePresenter, run_console
from voice_chat.cli.logging_utils import (
    CONTROL_LOG_LABEL,
    ERROR_LOG_LABEL,
    LOGGER,
    set_verbose_logging,
)
from voice_chat.config import (
    ASSISTANT_API_URL,
    ASSISTANT_BACKEND,
    ASSISTANT_BACKEND_CHOICES,
    ConversationPolicy,
)
from voice_chat.conversation import TurnController
from voice_chat.core.exceptions import CaptureDeviceError
from voice_chat.diagnostics import test_assistant, test_audio_capture

DEFAULT_TEST_MESSAGE = "Hello! Please reply with one short sentence."


async def run_conversation(
    *,
    backend: Optional[str] = None,
    api_url: Optional[str] = None,
    one_shot: bool = False,
    start_in_voice_mode: bool = False,
) -> None:
    """Run the interactive console conversation until the user quits."""

    LOGGER.log(CONTROL_LOG_LABEL, f"Using '{backend or ASSISTANT_BACKEND}' assistant backend")
    round_trip = build_round_trip(backend, api_url=api_url)
    policy = ConversationPolicy()
    if one_shot:
        policy = replace(policy, continuous_mode=False)

    presenter = ConsolePresenter()
    try:
        async with TurnController(round_trip, policy=policy, observers=[presenter]) as controller:
            if start_in_voice_mode:
                try:
                    await controller.enable_voice_mode()
                except CaptureDeviceError as exc:
                    LOGGER.verbose(CONTROL_LOG_LABEL, f"Starting in text mode ({exc.kind}).")
            await run_console(controller)
    finally:
        await round_trip.aclose()
        LOGGER.log(CONTROL_LOG_LABEL, f"Conversation ended after {len(presenter)} exchange(s).")


def parse_args(argv: Optional[list[str]] = None):
    """Parse CLI arguments."""

    parser = argparse.ArgumentParser(description="Turn-based voice chat with a remote assistant.")
    parser.add_argument(
        "mode",
        nargs="?",
        choices=["run", "test-audio", "test-assistant"],
        default="run",
        help="Select an execution mode (default: run)",
    )
    parser.add_argument(
        "message",
        nargs="?",
        default=DEFAULT_TEST_MESSAGE,
        help="Text sent by the test-assistant mode.",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Show detailed diagnostic logs (state transitions, stale events, etc.).",
    )
    parser.add_argument(
        "--backend",
        choices=ASSISTANT_BACKEND_CHOICES,
        help=f"Assistant transport to use. Default: {ASSISTANT_BACKEND}",
    )
    parser.add_argument(
        "--api-url",
        help=f"Base URL of the HTTP assistant service. Default: {ASSISTANT_API_URL}",
    )
    parser.add_argument(
        "--one-shot",
        action="store_true",
        help="Do not reopen the microphone after each reply; use /talk for every turn.",
    )
    parser.add_argument(
        "--voice",
        action="store_true",
        help="Start with voice mode enabled.",
    )
    return parser.parse_args(argv)


def main(argv: Optional[list[str]] = None):
    """Main entry point"""

    args = parse_args(argv)
    set_verbose_logging(args.verbose)
    if args.mode == "test-audio":
        run_func = test_audio_capture
    elif args.mode == "test-assistant":
        run_func = partial(
            test_assistant, args.message, backend=args.backend, api_url=args.api_url
        )
    else:
        run_func = partial(
            run_conversation,
            backend=args.backend,
            api_url=args.api_url,
            one_shot=args.one_shot,
            start_in_voice_mode=args.voice,
        )

    try:
        asyncio.run(run_func())
    except KeyboardInterrupt:
        LOGGER.log(CONTROL_LOG_LABEL, "Shutdown requested")
    except Exception as e:
        LOGGER.log(ERROR_LOG_LABEL, f"CLI error: {e}", error=True)
        sys.exit(1)


if __name__ == "__main__":
    main()
