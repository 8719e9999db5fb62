"""
Lazy loader for ``sounddevice`` so PortAudio is only required once a device is
actually opened. A host without PortAudio surfaces as ``DeviceUnavailable``.
"""

from __future__ import annotations

import importlib
from types import ModuleType
from typing import Optional

from voice_chat.core.exceptions import DeviceUnavailable

_SOUNDDEVICE: Optional[ModuleType] = None


def load_sounddevice() -> ModuleType:
    """Import and cache the ``sounddevice`` module."""

    global _SOUNDDEVICE
    if _SOUNDDEVICE is not None:
        return _SOUNDDEVICE
    try:
        module = importlib.import_module("sounddevice")
    except (ImportError, OSError) as exc:
        raise DeviceUnavailable(
            "sounddevice/PortAudio is not available on this host; "
            "install the PortAudio runtime to use the microphone and speakers."
        ) from exc
    _SOUNDDEVICE = module
    return module


__all__ = ["load_sounddevice"]
