from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable

from vpsmon.models import MetricSample

logger = logging.getLogger(__name__)

Sink = Callable[[MetricSample], Awaitable[None]]


class Broadcaster:
    """Decouples ingest from viewer delivery.

    ``offer`` never waits on viewers: it parks the sample in a bounded
    backlog that a pump task hands to ``sink`` one at a time. When the
    backlog is full the new sample is dropped; viewers recover through
    ``/api/latest``.
    """

    def __init__(self, sink: Sink, backlog: int = 1000) -> None:
        self._sink = sink
        self._backlog: asyncio.Queue[MetricSample] = asyncio.Queue(maxsize=backlog)
        self._pump: asyncio.Task | None = None
        self.delivered = 0
        self.failed = 0
        self.dropped = 0

    async def start(self) -> None:
        if self._pump is None:
            self._pump = asyncio.create_task(self._run(), name="broadcaster")

    async def stop(self) -> None:
        """Stop the pump, then push whatever is still queued."""
        if self._pump is not None:
            self._pump.cancel()
            try:
                await self._pump
            except asyncio.CancelledError:
                pass
            self._pump = None
        while not self._backlog.empty():
            await self._deliver(self._backlog.get_nowait())

    def offer(self, sample: MetricSample) -> bool:
        try:
            self._backlog.put_nowait(sample)
        except asyncio.QueueFull:
            self.dropped += 1
            logger.warning(
                "Broadcast backlog full (%d), dropping %s@%d",
                self._backlog.maxsize, sample.server_id, sample.ts,
            )
            return False
        return True

    @property
    def running(self) -> bool:
        return self._pump is not None

    @property
    def pending(self) -> int:
        return self._backlog.qsize()

    async def _run(self) -> None:
        while True:
            sample = await self._backlog.get()
            await self._deliver(sample)

    async def _deliver(self, sample: MetricSample) -> None:
        try:
            await self._sink(sample)
        except Exception:
            self.failed += 1
            logger.exception("Broadcast of %s@%d failed", sample.server_id, sample.ts)
        else:
            self.delivered += 1
