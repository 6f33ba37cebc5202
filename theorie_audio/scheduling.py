from __future__ import annotations

import asyncio
import logging
from typing import Callable

_LOGGER = logging.getLogger("theorie_audio.scheduling")


class ScheduledTask:
    """Cancellable handle for a callback scheduled on the event loop."""

    def __init__(self, name: str = "") -> None:
        self.name = name
        self._handle: asyncio.TimerHandle | None = None
        self._done = False
        self._cancelled = False

    @property
    def done(self) -> bool:
        return self._done

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    @property
    def pending(self) -> bool:
        return not (self._done or self._cancelled)

    def cancel(self) -> None:
        if not self.pending:
            return
        self._cancelled = True
        if self._handle is not None:
            self._handle.cancel()
        _LOGGER.debug("Cancelled scheduled task %s", self.name or "<anonymous>")

    def _run(self, callback: Callable[[], None]) -> None:
        if self._cancelled:
            return
        self._done = True
        try:
            callback()
        except Exception as exc:
            _LOGGER.warning("Scheduled task %s failed: %s", self.name, exc, exc_info=True)

    def __repr__(self) -> str:
        state = "done" if self._done else "cancelled" if self._cancelled else "pending"
        return f"ScheduledTask({self.name!r}, {state})"


def schedule_after(
    delay: float,
    callback: Callable[[], None],
    *,
    name: str = "",
    loop: asyncio.AbstractEventLoop | None = None,
) -> ScheduledTask:
    """Run ``callback`` after ``delay`` seconds without blocking the loop."""
    target_loop = loop or asyncio.get_running_loop()
    task = ScheduledTask(name)
    task._handle = target_loop.call_later(max(delay, 0.0), task._run, callback)
    return task


async def sleep_until(deadline: float) -> None:
    """Suspend until ``loop.time()`` reaches ``deadline``."""
    loop = asyncio.get_running_loop()
    remaining = deadline - loop.time()
    # The loop may wake a timer up to its clock resolution early.
    while remaining > 0:
        await asyncio.sleep(remaining)
        remaining = deadline - loop.time()
