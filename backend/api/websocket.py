"""WebSocket push of coordinator events to displays and admin pages."""

import asyncio
import json
import logging

from fastapi import WebSocket

from coordinator.events import EventBus

logger = logging.getLogger(__name__)


class ConnectionManager:
    """Tracks connected clients and relays every EventBus event to them."""

    def __init__(self) -> None:
        self._connections: list[WebSocket] = []
        self._lock = asyncio.Lock()

    @property
    def count(self) -> int:
        return len(self._connections)

    def attach(self, events: EventBus) -> None:
        events.subscribe(self.handle_event)

    async def connect(self, websocket: WebSocket, snapshot: dict | None = None) -> None:
        await websocket.accept()
        if snapshot is not None:
            # Late joiners start from current state instead of waiting for a change
            await websocket.send_text(json.dumps({"event": "snapshot", "data": snapshot}))
        async with self._lock:
            self._connections.append(websocket)
        logger.info(f"WebSocket client connected. Total: {len(self._connections)}")

    async def disconnect(self, websocket: WebSocket) -> None:
        async with self._lock:
            if websocket in self._connections:
                self._connections.remove(websocket)
        logger.info(f"WebSocket client disconnected. Total: {len(self._connections)}")

    async def broadcast(self, event: str, data: dict) -> None:
        message = json.dumps({"event": event, "data": data}, default=str)
        async with self._lock:
            dead: list[WebSocket] = []
            for ws in self._connections:
                try:
                    await ws.send_text(message)
                except Exception as e:
                    logger.debug(f"Dropping WebSocket client: {e}")
                    dead.append(ws)
            for ws in dead:
                self._connections.remove(ws)

    async def handle_event(self, event: str, data: dict) -> None:
        """EventBus callback."""
        await self.broadcast(event, data)
