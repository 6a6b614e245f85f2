from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod

logger = logging.getLogger(__name__)


class PeriodicTask(ABC):
    """Abstract base for work that runs on a fixed timer.

    Subclasses implement ``tick()``. The base class owns the asyncio task,
    the interval sleep and graceful shutdown. Ticks run one after another on
    a single task, so a slow tick delays the next one instead of overlapping it.
    """

    name: str = "periodic"
    interval: float = 60.0  # seconds between ticks

    def __init__(self, interval: float | None = None) -> None:
        if interval is not None:
            self.interval = interval
        self._running = False
        self._task: asyncio.Task | None = None

    # ── lifecycle ────────────────────────────────────────

    async def start(self) -> None:
        if self._running:
            return
        self._running = True
        self._task = asyncio.create_task(self._loop())
        logger.info("Task [%s] started (interval=%.1fs)", self.name, self.interval)

    async def stop(self) -> None:
        if not self._running:
            return
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("Task [%s] stopped", self.name)

    # ── abstract method ─────────────────────────────────

    @abstractmethod
    async def tick(self) -> None:
        """Do one round of work."""
        ...

    # ── internals ───────────────────────────────────────

    async def _loop(self) -> None:
        while self._running:
            await asyncio.sleep(self.interval)
            try:
                await self.tick()
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("Task [%s] error during tick()", self.name)

    @property
    def running(self) -> bool:
        return self._running
