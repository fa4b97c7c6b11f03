from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict
from fastapi import WebSocket

logger = logging.getLogger(__name__)


class FleetFeed:
    """Websocket subscribers of the dispatch view; a client whose send fails is dropped."""

    def __init__(self) -> None:
        self._lock = asyncio.Lock()
        # client -> snapshots delivered
        self._subscribers: Dict[WebSocket, int] = {}

    async def connect(self, ws: WebSocket) -> None:
        await ws.accept()
        async with self._lock:
            self._subscribers[ws] = 0

    async def disconnect(self, ws: WebSocket) -> None:
        async with self._lock:
            self._subscribers.pop(ws, None)

    @property
    def size(self) -> int:
        return len(self._subscribers)

    async def send(self, ws: WebSocket, payload: Any) -> bool:
        try:
            await ws.send_json(payload)
        except Exception as e:
            logger.warning("Dropping fleet feed client: %s", e)
            await self.disconnect(ws)
            return False
        if ws in self._subscribers:
            self._subscribers[ws] += 1
        return True

    async def broadcast(self, payload: Any) -> int:
        """Send to every subscriber concurrently. Returns how many received it."""
        async with self._lock:
            targets = list(self._subscribers)
        if not targets:
            return 0
        results = await asyncio.gather(*(self.send(ws, payload) for ws in targets))
        return sum(results)
