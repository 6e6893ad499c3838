"""
Change notifications for the display loop and the HTTP layer.

Publishers never wait on subscribers: callbacks are scheduled as tasks and
queues are fed without blocking.
"""

import asyncio
import logging

logger = logging.getLogger(__name__)

CONFIG_UPDATED = "config-update"
MEDIA_UPDATED = "media-update"
ADDONS_UPDATED = "addons-update"
PEERS_UPDATED = "peers-update"
UPDATE_STAGED = "update-staged"
ADDON_EVENT = "addon-event"

QUEUE_SIZE = 256


class EventBus:
    """Fan-out of (event, data) pairs to callbacks and queues."""

    def __init__(self) -> None:
        self._callbacks: list = []  # async fn(event, data)
        self._queues: list[asyncio.Queue] = []
        self._pending: set[asyncio.Task] = set()

    def subscribe(self, callback) -> None:
        """Register callback: async fn(event: str, data: dict)."""
        self._callbacks.append(callback)

    def queue(self) -> asyncio.Queue:
        """Return a queue that receives every future event."""
        q: asyncio.Queue = asyncio.Queue(maxsize=QUEUE_SIZE)
        self._queues.append(q)
        return q

    def unsubscribe_queue(self, q: asyncio.Queue) -> None:
        if q in self._queues:
            self._queues.remove(q)

    def publish(self, event: str, data: dict | None = None) -> None:
        data = data or {}
        for q in self._queues:
            try:
                q.put_nowait((event, data))
            except asyncio.QueueFull:
                logger.warning(f"Event queue full, dropping '{event}'")

        if not self._callbacks:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug(f"No running loop, '{event}' not delivered to callbacks")
            return
        for cb in self._callbacks:
            task = loop.create_task(self._deliver(cb, event, data))
            self._pending.add(task)
            task.add_done_callback(self._pending.discard)

    async def _deliver(self, cb, event: str, data: dict) -> None:
        try:
            await cb(event, data)
        except Exception as e:
            logger.error(f"Event callback error for '{event}': {e}")
