"""Shared helpers for audio capture/playback modules."""

from __future__ import annotations

from collections.abc import Mapping

__all__ = ["device_info_dict", "describe_device"]


def device_info_dict(info: object) -> dict[str, object]:
    """Return a plain dict from sounddevice info objects for logging/debugging."""
    if isinstance(info, dict):
        return dict(info)
    if isinstance(info, Mapping):
        return dict(info.items())
    if hasattr(info, "__dict__"):
        return dict(vars(info))
    return {}


def describe_device(backend, device) -> str:
    """Return ``"<name> (id <index>)"`` for log lines, tolerating query failures."""

    if device is None:
        return "system default"

    try:
        info = device_info_dict(backend.query_devices(device))
    except Exception:
        return str(device)
    name_obj = info.get("name")
    name = str(name_obj) if name_obj not in (None, "") else "Unknown device"
    idx_obj = info.get("index")
    index = idx_obj if isinstance(idx_obj, int) else device if isinstance(device, int) else "?"
    return f"{name} (id {index})"
