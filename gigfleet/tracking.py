from __future__ import annotations

import asyncio
import logging
from typing import AsyncIterator, Callable, Optional, Tuple

from .errors import LocationUnavailable

logger = logging.getLogger(__name__)

Fix = Tuple[float, float]
# (lat, lon) -> miles credited, or None when the fix was not taken
Record = Callable[[float, float], Optional[float]]


class MileageTracker:
    """
    Feeds fixes from a location source into `record` (normally
    `ShiftSession.record_fix`) on a background task. The tracker never owns
    the mileage total; a denied or missing source leaves it where it is.
    """

    def __init__(self, record: Record, on_update: Optional[Callable[[float], None]] = None):
        self.record = record
        self.on_update = on_update
        self.degraded: bool = False
        self.credited: float = 0.0
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def consume(self, source: AsyncIterator[Fix]) -> float:
        try:
            async for lat, lon in source:
                added = self.record(lat, lon)
                if added:
                    self.credited += added
                    if self.on_update is not None:
                        self.on_update(added)
        except LocationUnavailable as e:
            self.degraded = True
            logger.warning("Location tracking unavailable: %s", e)
        return self.credited

    def start(self, source: AsyncIterator[Fix]):
        if self.running:
            return
        self.degraded = False
        self._task = asyncio.create_task(self.consume(source))

    async def wait(self) -> float:
        if self._task is None:
            return self.credited
        return await self._task

    async def stop(self):
        task, self._task = self._task, None
        if task and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
