"""Core package for the turn-based voice chat client."""

from . import assistant, audio, cli, config, conversation, diagnostics

__version__ = "0.1.0"

__all__ = ["assistant", "audio", "cli", "config", "conversation", "diagnostics"]
