"""
Configuration settings for the voice chat client.

Defaults live in ``config/defaults.toml`` and can be overridden via environment
variables or the project ``.env`` file.
"""

from __future__ import annotations

from .assistant_settings import *  # noqa: F401,F403
from .base import *  # noqa: F401,F403
from .conversation import *  # noqa: F401,F403
