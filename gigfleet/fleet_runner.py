from __future__ import annotations
from dataclasses import dataclass
from typing import Optional
import asyncio
import logging

from .ws_manager import FleetFeed
from .fleet_engine import FleetEngine

logger = logging.getLogger(__name__)


@dataclass
class RunnerConfig:
    tick_ms: int = 16
    broadcast_every: int = 6


class FleetRunner:
    """
    Drives FleetEngine.tick() at display cadence while the dispatch view is
    open. Stops by itself once no agent is busy; stop() cancels the task.
    """

    def __init__(self, engine: FleetEngine, feed: FleetFeed, lock: asyncio.Lock):
        self.engine = engine
        self.feed = feed
        self.lock = lock

        self.cfg = RunnerConfig(
            tick_ms=engine.cfg.tick_interval_ms,
            broadcast_every=engine.cfg.broadcast_every_ticks,
        )
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self, tick_ms: Optional[int] = None):
        if tick_ms is not None:
            self.cfg.tick_ms = max(1, int(tick_ms))

        if self.running:
            return

        self._task = asyncio.create_task(self._loop())

    async def stop(self):
        task, self._task = self._task, None
        if task and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

    async def _loop(self):
        n = 0
        try:
            while True:
                await asyncio.sleep(self.cfg.tick_ms / 1000.0)

                async with self.lock:
                    if not self.engine.loaded or not self.engine.has_busy_agents():
                        snap = self.engine.snapshot() if self.engine.loaded else None
                        break
                    self.engine.tick()
                    n += 1
                    snap = self.engine.snapshot() if n % self.cfg.broadcast_every == 0 else None

                if snap is not None:
                    await self.feed.broadcast(snap)
        except Exception:
            logger.exception("Fleet loop failed after %d ticks", n)
            return

        logger.info("Fleet loop idle after %d ticks", n)
        if snap is not None:
            await self.feed.broadcast(snap)

    async def push_state(self):
        if not self.engine.loaded:
            return
        async with self.lock:
            snap = self.engine.snapshot()
        await self.feed.broadcast(snap)
