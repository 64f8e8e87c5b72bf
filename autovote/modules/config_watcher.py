"""Watch the settings store for writes made by another process."""

import asyncio
import logging
from collections.abc import Callable

import aiosqlite

from autovote.hub.config import ConfigResolver
from autovote.hub.config_store import ConfigStore
from autovote.hub.constants import CONFIG_POLL_INTERVAL_SECONDS

logger = logging.getLogger(__name__)


class ConfigWatcher:
    """Polls the persisted revision and reports changes the resolver has not seen.

    Writes made through the resolver update its revision, so they never
    trigger the callback.
    """

    def __init__(
        self,
        store: ConfigStore,
        resolver: ConfigResolver,
        on_change: Callable[[], None],
        interval: float = CONFIG_POLL_INTERVAL_SECONDS,
    ):
        self.store = store
        self.resolver = resolver
        self.on_change = on_change
        self.interval = interval
        self._task: asyncio.Task | None = None
        self._running = False
        self._notified_revision: int | None = None

    async def check(self) -> bool:
        """Compare revisions once; returns True if a change was reported."""
        revision = await self.store.revision()
        if revision == self.resolver.revision or revision == self._notified_revision:
            return False
        logger.info(f"Settings changed externally (revision {self.resolver.revision} -> {revision})")
        self._notified_revision = revision
        self.on_change()
        return True

    async def _poll(self):
        while self._running:
            await asyncio.sleep(self.interval)
            try:
                await self.check()
            except (aiosqlite.Error, RuntimeError) as e:
                logger.warning(f"Settings watch failed: {e}")

    def start(self):
        if self._task and not self._task.done():
            return
        self._running = True
        self._task = asyncio.create_task(self._poll())
        logger.info(f"Watching settings every {self.interval}s")

    async def stop(self):
        self._running = False
        if self._task:
            self._task.cancel()
            await asyncio.gather(self._task, return_exceptions=True)
            self._task = None
