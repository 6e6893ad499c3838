"""
UDP-based LAN discovery service.

Broadcasts a periodic announcement and listens for announcements from
other signage players on the same LAN, feeding the PeerRegistry.
"""

import asyncio
import json
import logging
import socket

from pydantic import ValidationError

from config import (
    ANNOUNCE_INTERVAL,
    DISCOVERY_PORT,
    PEER_TIMEOUT,
    STALENESS_MARGIN,
    SWEEP_INTERVAL,
)
from coordinator.events import PEERS_UPDATED, EventBus
from discovery.models import Announcement, peer_id_for
from discovery.registry import PeerRegistry

logger = logging.getLogger(__name__)


def subnet_broadcast(ip: str) -> str | None:
    """Broadcast address of the /24 an IPv4 address sits in."""
    parts = ip.split(".")
    if len(parts) != 4:
        return None
    return ".".join(parts[:3] + ["255"])


class DiscoveryProtocol(asyncio.DatagramProtocol):
    """asyncio UDP protocol for receiving announcements."""

    def __init__(self, service: "DiscoveryService"):
        self.service = service

    def datagram_received(self, data: bytes, addr: tuple[str, int]) -> None:
        try:
            payload = json.loads(data.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            logger.debug(f"Ignoring invalid discovery packet from {addr}: {e}")
            return

        # Other message types are reserved
        if not isinstance(payload, dict) or payload.get("type") != "announce":
            return

        try:
            announcement = Announcement(**payload)
        except ValidationError as e:
            logger.debug(f"Ignoring malformed announcement from {addr}: {e}")
            return

        self.service.handle_announcement(announcement, addr[0])

    def error_received(self, exc: Exception) -> None:
        logger.warning(f"Discovery UDP error: {exc}")


class DiscoveryService:
    """Manages LAN device discovery via UDP broadcast."""

    def __init__(
        self,
        registry: PeerRegistry,
        events: EventBus | None = None,
        port: int = DISCOVERY_PORT,
        announce_interval: float = ANNOUNCE_INTERVAL,
        sweep_interval: float = SWEEP_INTERVAL,
        staleness_window: float = PEER_TIMEOUT,
    ) -> None:
        if staleness_window < announce_interval * STALENESS_MARGIN:
            raise ValueError(
                f"staleness window ({staleness_window}s) must be at least "
                f"{STALENESS_MARGIN}x the announce interval ({announce_interval}s)"
            )
        self._registry = registry
        self._events = events
        self._port = port
        self._announce_interval = announce_interval
        self._sweep_interval = sweep_interval
        self._staleness_window = staleness_window

        self._announce_task: asyncio.Task | None = None
        self._sweep_task: asyncio.Task | None = None
        self._transport: asyncio.DatagramTransport | None = None
        self._listening = False
        self.bind_error: OSError | None = None

    @property
    def running(self) -> bool:
        return self._announce_task is not None

    @property
    def listening(self) -> bool:
        return self._listening

    @property
    def port(self) -> int:
        return self._port

    async def start(self) -> None:
        """Start the announcer, the listener and the sweep timer."""
        if self.running:
            return
        logger.info(f"Starting discovery on UDP port {self._port}")

        loop = asyncio.get_running_loop()
        try:
            # SO_REUSEADDR before bind so several instances can share the port
            sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM, socket.IPPROTO_UDP)
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_BROADCAST, 1)
            sock.setblocking(False)
            try:
                sock.bind(("0.0.0.0", self._port))
            except OSError:
                sock.close()
                raise
            transport, _ = await loop.create_datagram_endpoint(
                lambda: DiscoveryProtocol(self),
                sock=sock,
            )
            self._transport = transport
            self._listening = True
            self.bind_error = None
        except OSError as e:
            self.bind_error = e
            logger.error(f"Discovery port {self._port} unavailable ({e}); manual peers only")
            await self._open_announce_only(loop)

        self._announce_task = asyncio.create_task(self._announce_loop())
        self._sweep_task = asyncio.create_task(self._sweep_loop())
        logger.info("Discovery service started")

    async def _open_announce_only(self, loop: asyncio.AbstractEventLoop) -> None:
        try:
            transport, _ = await loop.create_datagram_endpoint(
                lambda: DiscoveryProtocol(self),
                family=socket.AF_INET,
                allow_broadcast=True,
            )
            self._transport = transport
            logger.warning("Discovery running in announce-only mode")
        except OSError as e:
            logger.error(f"Could not open a broadcast socket, discovery disabled: {e}")
            self._transport = None

    async def stop(self) -> None:
        """Stop the discovery service."""
        for task in (self._announce_task, self._sweep_task):
            if task:
                task.cancel()
        for task in (self._announce_task, self._sweep_task):
            if task:
                try:
                    await task
                except asyncio.CancelledError:
                    pass
        self._announce_task = None
        self._sweep_task = None
        if self._transport:
            self._transport.close()
            self._transport = None
        self._listening = False
        logger.info("Discovery service stopped")

    def handle_announcement(self, announcement: Announcement, source_ip: str) -> None:
        """Forward an inbound announcement to the registry."""
        ip = self._registry.resolve_announcement_ip(announcement, source_ip)
        is_new = self._registry.get(peer_id_for(ip, announcement.port)) is None
        peer = self._registry.upsert_from_announcement(announcement, source_ip)
        if peer and is_new and self._events:
            self._events.publish(PEERS_UPDATED, {"event": "peer_discovered", "peer": peer.model_dump()})

    def build_announcement(self) -> Announcement:
        local = self._registry.local
        return Announcement(id=local.display_name, name=local.display_name, port=local.api_port)

    def broadcast_targets(self) -> list[str]:
        """Network broadcast, loopback (same-host instances) and the static IP's subnet."""
        targets = ["255.255.255.255", "127.0.0.1"]
        static_ip = self._registry.local.static_ip
        if static_ip:
            subnet = subnet_broadcast(static_ip)
            if subnet and subnet not in targets:
                targets.append(subnet)
        return targets

    def announce(self) -> None:
        """Send one announcement to every broadcast target."""
        if not self._transport:
            return
        data = json.dumps(self.build_announcement().model_dump()).encode("utf-8")
        for target in self.broadcast_targets():
            try:
                self._transport.sendto(data, (target, self._port))
            except OSError as e:
                # Some interfaces refuse broadcast
                logger.debug(f"Announcement to {target} failed: {e}")

    async def _announce_loop(self) -> None:
        """Periodically send an announcement."""
        while True:
            try:
                self.announce()
            except Exception as e:
                logger.warning(f"Announcement failed: {e}")
            await asyncio.sleep(self._announce_interval)

    async def _sweep_loop(self) -> None:
        """Remove discovered peers that haven't announced recently."""
        while True:
            await asyncio.sleep(self._sweep_interval)
            try:
                stale = self._registry.sweep_stale(self._staleness_window)
            except Exception as e:
                logger.error(f"Peer sweep failed: {e}")
                continue
            if stale and self._events:
                self._events.publish(
                    PEERS_UPDATED,
                    {"event": "peer_lost", "peers": [p.id for p in stale]},
                )
