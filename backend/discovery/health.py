"""Periodic liveness poll over every known peer."""

import asyncio
import logging

from config import PEER_CHECK_INTERVAL, PEER_CHECK_TIMEOUT
from coordinator.events import PEERS_UPDATED, EventBus
from discovery.registry import PeerRegistry

logger = logging.getLogger(__name__)


class PeerHealthMonitor:
    """Probes all peers concurrently on a fixed cadence; the cadence is the retry policy."""

    def __init__(
        self,
        registry: PeerRegistry,
        events: EventBus | None = None,
        interval: float = PEER_CHECK_INTERVAL,
        timeout: float = PEER_CHECK_TIMEOUT,
    ) -> None:
        self._registry = registry
        self._events = events
        self._interval = interval
        self._timeout = timeout
        self._task: asyncio.Task | None = None

    async def start(self) -> None:
        if self._task is None:
            self._task = asyncio.create_task(self._poll_loop())

    async def stop(self) -> None:
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

    async def check_all(self) -> dict[str, bool]:
        """Probe every peer once; returns peer id -> online."""
        peers = self._registry.list()
        if not peers:
            return {}
        results = await asyncio.gather(
            *(self._registry.check_liveness(p, self._timeout) for p in peers)
        )
        changed = [p.id for p, online in zip(peers, results) if p.online != online]
        if changed and self._events:
            self._events.publish(PEERS_UPDATED, {"event": "peer_status", "peers": changed})
        return {p.id: online for p, online in zip(peers, results)}

    async def _poll_loop(self) -> None:
        while True:
            await asyncio.sleep(self._interval)
            try:
                await self.check_all()
            except Exception as e:
                logger.error(f"Peer health check failed: {e}")
