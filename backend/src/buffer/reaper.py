# buffer/reaper.py
from __future__ import annotations
import asyncio
from typing import Optional

from backend.src.buffer.store import TaskStore
from backend.src.core.constants import SWEEP_INTERVAL_SECS
from backend.src.core.logging import get_logger

logger = get_logger("deepqeeb.buffer.reaper")


class IdleReaper:
    """Background sweep that evicts idle tasks from a TaskStore.

    Started and stopped explicitly (the app lifespan does both), so tests can
    run it deterministically or call ``TaskStore.sweep`` directly.
    """

    def __init__(self, store: TaskStore, interval_secs: float = SWEEP_INTERVAL_SECS):
        self.store = store
        self.interval_secs = interval_secs
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.get_running_loop().create_task(self._run(), name="idle-reaper")
        logger.info("REAPER_START interval_secs=%s ttl_secs=%s", self.interval_secs, self.store.ttl_secs)

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.info("REAPER_STOP")

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval_secs)
            try:
                evicted = self.store.sweep()
            except Exception:
                logger.exception("REAPER_SWEEP_FAILED")
                continue
            if evicted:
                logger.info("REAPER_SWEEP evicted=%s", len(evicted))
