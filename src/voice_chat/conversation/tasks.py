"""Track the background tasks that feed notifications to the controller."""

from __future__ import annotations

import asyncio
from collections.abc import Coroutine
from typing import Any, Iterable, Optional, Set

from voice_chat.cli.logging_utils import LOGGER, TURN_LOG_LABEL


class NotificationTaskManager:
    """Owns capture, round-trip and playback waiters so they can be cancelled as a group."""

    def __init__(self) -> None:
        self._tasks: Set[asyncio.Task] = set()

    def __len__(self) -> int:
        return len(self._tasks)

    def schedule(self, coro: Coroutine[Any, Any, None], *, name: str) -> asyncio.Task:
        task = asyncio.create_task(coro, name=name)
        self._tasks.add(task)

        def _discard_on_completion(fut: asyncio.Task) -> None:
            self._tasks.discard(fut)

        task.add_done_callback(_discard_on_completion)
        LOGGER.verbose(TURN_LOG_LABEL, f"Scheduled {name}.")
        return task

    def cancel(self, reason: str, *, kinds: Optional[Iterable[str]] = None) -> int:
        """Cancel outstanding tasks, or only those named ``<kind>-<id>`` for ``kinds``."""

        prefixes = tuple(f"{kind}-" for kind in kinds) if kinds is not None else ("",)
        doomed = [task for task in self._tasks if task.get_name().startswith(prefixes)]
        if not doomed:
            return 0
        LOGGER.verbose(TURN_LOG_LABEL, f"Canceling {len(doomed)} pending task(s) ({reason}).")
        for task in doomed:
            task.cancel()
        return len(doomed)

    async def drain(self) -> None:
        if not self._tasks:
            return
        pending = tuple(self._tasks)
        for task in pending:
            task.cancel()
        await asyncio.gather(*pending, return_exceptions=True)
        self._tasks.clear()


__all__ = ["NotificationTaskManager"]
