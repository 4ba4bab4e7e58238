"""
Polling primitives that stand in for a server push channel.

RepeatingTask runs one async action on a fixed interval until stopped.
TickCounter hands out tickets so a result that arrives after a newer
request was issued can be recognised and dropped.
"""

import asyncio
from typing import Awaitable, Callable, Optional

from utils.logging import get_logger

logger = get_logger("chat.polling")


class TickCounter:
    """Monotonic ticket source; only the newest ticket is current."""

    def __init__(self):
        self._issued = 0

    @property
    def current(self) -> int:
        """The newest ticket, without issuing a new one."""
        return self._issued

    def issue(self) -> int:
        self._issued += 1
        return self._issued

    def is_current(self, ticket: int) -> bool:
        return ticket == self._issued

    def invalidate(self) -> None:
        """Make every outstanding ticket stale."""
        self._issued += 1


class RepeatingTask:
    """
    A cancellable background task that awaits ``action`` every ``interval`` seconds.

    Ticks never overlap: the next sleep starts after the previous action
    finishes. Failures inside a tick are logged and the loop keeps going.
    """

    def __init__(self, name: str, interval: float, action: Callable[[], Awaitable[None]]):
        """
        Initialize the repeating task.

        Args:
            name: Name used in logs and the asyncio task name
            interval: Seconds to wait before each tick
            action: Coroutine function run on each tick
        """
        self.name = name
        self.interval = interval
        self.action = action
        self._task: Optional[asyncio.Task] = None

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """Start ticking; does nothing if already running."""
        if self.is_running:
            return
        self._task = asyncio.create_task(self._run(), name=f"poll_{self.name}")
        logger.debug(f"Started {self.name} polling every {self.interval}s")

    def stop(self) -> None:
        """Cancel the loop. Safe to call repeatedly and when never started."""
        if self._task is None:
            return
        self._task.cancel()
        self._task = None
        logger.debug(f"Stopped {self.name} polling")

    async def _run(self) -> None:
        try:
            while True:
                await asyncio.sleep(self.interval)
                try:
                    await self.action()
                except Exception as e:
                    logger.error(f"Error in {self.name} poll tick: {e}", exc_info=True)
        except asyncio.CancelledError:
            logger.debug(f"{self.name} polling cancelled")
            raise
