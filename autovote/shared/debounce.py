"""Trailing-edge debounce for bursts of change notifications."""

import asyncio
import logging
from collections.abc import Awaitable, Callable

logger = logging.getLogger(__name__)


class Debouncer:
    """Coalesce rapid triggers into one call of ``action``.

    Every ``trigger()`` restarts the quiet period; ``action`` runs once the
    period elapses with no further trigger. A trigger that arrives while
    ``action`` is already running schedules another run instead of
    interrupting the current one.
    """

    def __init__(self, action: Callable[[], Awaitable[None]], delay: float, name: str = "debounce"):
        self.action = action
        self.delay = delay
        self.name = name
        self._task: asyncio.Task | None = None
        self._firing: asyncio.Task | None = None

    @property
    def pending(self) -> bool:
        return self._task is not None and not self._task.done() and self._task is not self._firing

    def trigger(self):
        """Restart the quiet period. Must be called from the event loop."""
        if self.pending:
            self._task.cancel()
        self._task = asyncio.create_task(self._delayed())

    async def _delayed(self):
        await asyncio.sleep(self.delay)
        self._firing = asyncio.current_task()

        logger.debug("%s: quiet period elapsed, firing", self.name)
        try:
            await self.action()
        except Exception as e:
            logger.error(f"{self.name}: debounced action failed: {e}")

    def cancel(self):
        """Drop a pending trigger without firing it."""
        if self.pending:
            self._task.cancel()
        self._task = None

    async def flush(self):
        """Fire immediately if a trigger is pending."""
        if self.pending:
            self._task.cancel()
            self._task = None
            await self.action()
