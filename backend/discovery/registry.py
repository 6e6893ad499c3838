"""
In-memory table of known peers.

Peers arrive from three places: UDP announcements, manual entries from the
admin API and the periodic liveness poll. Every write goes through a single
lock and never awaits while holding it, so the datagram callback can update
the table without yielding to the event loop.
"""

from __future__ import annotations

import asyncio
import ipaddress
import logging
import threading
import time

import httpx

from config import PEER_CHECK_TIMEOUT
from discovery.models import Announcement, LocalDevice, Peer, peer_id_for

logger = logging.getLogger(__name__)


def is_loopback(ip: str) -> bool:
    if ip == "localhost":
        return True
    try:
        return ipaddress.ip_address(ip).is_loopback
    except ValueError:
        return False


class PeerRegistry:
    """Owns every Peer record; other components only get copies."""

    def __init__(self, local: LocalDevice, client: httpx.AsyncClient | None = None) -> None:
        self._peers: dict[str, Peer] = {}
        self._lock = threading.Lock()
        self._local = local
        self._client = client

    @property
    def local(self) -> LocalDevice:
        return self._local

    @local.setter
    def local(self, local: LocalDevice) -> None:
        with self._lock:
            self._local = local

    def resolve_announcement_ip(self, announcement: Announcement, source_ip: str) -> str:
        """
        Pick the address other instances should use for an announcing peer.

        Several instances on one host all announce over loopback. When this
        device is bound to a static IP and the peer listens on another port,
        the peer is assumed to share that IP; otherwise it is "localhost".
        This cannot tell apart more than two instances whose ports overlap.
        """
        if not is_loopback(source_ip):
            return source_ip
        if self._local.static_ip and announcement.port != self._local.api_port:
            return self._local.static_ip
        return "localhost"

    def upsert_from_announcement(self, announcement: Announcement, source_ip: str) -> Peer | None:
        """Record an announcement; returns the peer, or None for our own broadcasts."""
        if announcement.id == self._local.display_name:
            return None

        ip = self.resolve_announcement_ip(announcement, source_ip)
        peer_id = peer_id_for(ip, announcement.port)
        now = time.time()

        with self._lock:
            peer = self._peers.get(peer_id)
            if peer:
                peer.name = announcement.name
                peer.last_seen = now
                peer.online = True
                peer.port = announcement.port
                return peer.model_copy()

            peer = Peer(
                id=peer_id,
                name=announcement.name,
                ip=ip,
                port=announcement.port,
                manual=False,
                online=True,
                last_seen=now,
            )
            self._peers[peer_id] = peer

        logger.info(f"Discovered new peer: {peer.name} at {peer.ip}:{peer.port}")
        return peer.model_copy()

    def add_manual(self, ip: str, name: str, port: int) -> Peer:
        """Add a user-entered peer, replacing any record with the same id."""
        peer = Peer(
            id=peer_id_for(ip, port),
            name=name,
            ip=ip,
            port=port,
            manual=True,
            online=False,
        )
        with self._lock:
            self._peers[peer.id] = peer
        logger.info(f"Added manual peer: {name} at {ip}:{port}")
        return peer.model_copy()

    def remove(self, peer_id: str) -> Peer | None:
        with self._lock:
            peer = self._peers.pop(peer_id, None)
        if peer:
            logger.info(f"Removed peer: {peer.name} ({peer.id})")
        return peer

    def get(self, peer_id: str) -> Peer | None:
        with self._lock:
            peer = self._peers.get(peer_id)
            return peer.model_copy() if peer else None

    def list(self) -> list[Peer]:
        with self._lock:
            return [p.model_copy() for p in self._peers.values()]

    def manual_peers(self) -> list[Peer]:
        return [p for p in self.list() if p.manual]

    def sweep_stale(self, max_age: float, now: float | None = None) -> list[Peer]:
        """Drop discovered peers not heard from within max_age seconds."""
        now = time.time() if now is None else now
        stale: list[Peer] = []

        with self._lock:
            for peer_id, peer in list(self._peers.items()):
                if peer.manual:
                    continue
                if peer.last_seen is None or now - peer.last_seen > max_age:
                    stale.append(peer)
                    del self._peers[peer_id]

        for peer in stale:
            logger.info(f"Peer lost: {peer.name} ({peer.id})")
        return stale

    def _probe_url(self, peer: Peer) -> str:
        ip = peer.ip
        # Same-host peers are reachable through our bound address
        if is_loopback(ip) and self._local.static_ip:
            ip = self._local.static_ip
        return f"http://{ip}:{peer.port}/api/config"

    async def _probe(self, url: str, timeout: float) -> httpx.Response:
        if self._client is not None:
            return await self._client.get(url, timeout=timeout)
        async with httpx.AsyncClient(timeout=timeout) as client:
            return await client.get(url)

    async def check_liveness(self, peer: Peer, timeout: float = PEER_CHECK_TIMEOUT) -> bool:
        """Probe a peer's config endpoint and record the outcome. Never raises."""
        url = self._probe_url(peer)
        reported_name = None
        try:
            response = await asyncio.wait_for(self._probe(url, timeout), timeout)
            response.raise_for_status()
            online = True
            try:
                body = response.json()
            except ValueError:
                body = None
            if isinstance(body, dict) and body.get("displayName"):
                reported_name = str(body["displayName"])
        except Exception as e:
            logger.debug(f"Failed to reach peer {peer.ip}:{peer.port}: {e}")
            online = False

        with self._lock:
            record = self._peers.get(peer.id)
            if record:
                record.online = online
                record.last_checked = time.time()
                if reported_name:
                    record.name = reported_name
        return online
