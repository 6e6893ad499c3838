"""Tests for the UDP discovery service and the peer health monitor."""

from __future__ import annotations

import asyncio
import json
import socket

import httpx
import pytest

from coordinator.events import PEERS_UPDATED, EventBus
from discovery.health import PeerHealthMonitor
from discovery.models import Announcement, LocalDevice
from discovery.registry import PeerRegistry
from discovery.service import DiscoveryProtocol, DiscoveryService, subnet_broadcast


class FakeTransport:
    def __init__(self):
        self.sent = []

    def sendto(self, data, addr):
        self.sent.append((json.loads(data), addr))

    def close(self):
        pass


def make_service(static_ip: str = "", events=None, **kwargs) -> DiscoveryService:
    registry = PeerRegistry(LocalDevice(display_name="lobby", api_port=3000, static_ip=static_ip))
    return DiscoveryService(registry, events, **kwargs)


def free_udp_port() -> int:
    with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as s:
        s.bind(("127.0.0.1", 0))
        return s.getsockname()[1]


class TestConstruction:
    def test_rejects_short_staleness_window(self):
        with pytest.raises(ValueError):
            make_service(announce_interval=5, staleness_window=20)

    def test_accepts_five_intervals(self):
        service = make_service(announce_interval=5, staleness_window=25)
        assert service.port == 3002

    def test_subnet_broadcast(self):
        assert subnet_broadcast("192.168.4.17") == "192.168.4.255"
        assert subnet_broadcast("not-an-ip") is None


class TestDatagrams:
    def _deliver(self, service, payload, addr=("192.168.1.20", 3002)):
        data = payload if isinstance(payload, bytes) else json.dumps(payload).encode()
        DiscoveryProtocol(service).datagram_received(data, addr)

    def test_announce_creates_peer(self):
        service = make_service()
        self._deliver(service, {"type": "announce", "id": "hall", "name": "Hall", "port": 3000})
        peers = service._registry.list()
        assert [p.id for p in peers] == ["192.168.1.20:3000"]

    @pytest.mark.parametrize("payload", [
        b"\xff\xfe not json",
        b"[1, 2, 3]",
        {"type": "hello", "id": "x", "name": "x", "port": 3000},
        {"id": "x", "name": "x", "port": 3000},
        {"type": "announce", "id": "x", "name": "x", "port": "abc"},
        {"type": "announce", "id": "x", "name": "x", "port": 70000},
    ])
    def test_malformed_packets_dropped(self, payload):
        service = make_service()
        self._deliver(service, payload)
        assert service._registry.list() == []

    @pytest.mark.asyncio
    async def test_new_peer_published_once(self):
        events = EventBus()
        q = events.queue()
        service = make_service(events=events)
        packet = {"type": "announce", "id": "hall", "name": "Hall", "port": 3000}
        self._deliver(service, packet)
        self._deliver(service, packet)
        event, data = q.get_nowait()
        assert event == PEERS_UPDATED
        assert data["event"] == "peer_discovered"
        assert q.empty()


class TestAnnouncing:
    def test_broadcast_targets_include_static_subnet(self):
        service = make_service(static_ip="10.1.2.3")
        assert service.broadcast_targets() == ["255.255.255.255", "127.0.0.1", "10.1.2.255"]

    def test_announce_payload(self):
        service = make_service()
        service._transport = FakeTransport()
        service.announce()
        payloads = [p for p, _ in service._transport.sent]
        assert payloads[0] == {"type": "announce", "id": "lobby", "name": "lobby", "port": 3000}
        assert [addr for _, addr in service._transport.sent] == [
            ("255.255.255.255", 3002),
            ("127.0.0.1", 3002),
        ]


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_start_and_stop(self):
        service = make_service(port=free_udp_port(), announce_interval=0.05, sweep_interval=0.05,
                               staleness_window=1)
        await service.start()
        try:
            assert service.running
            assert service.listening
            assert service.bind_error is None
        finally:
            await service.stop()
        assert not service.running
        assert not service.listening

    @pytest.mark.asyncio
    async def test_port_in_use_degrades_to_announce_only(self):
        blocker = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        blocker.bind(("0.0.0.0", 0))
        port = blocker.getsockname()[1]
        service = make_service(port=port, announce_interval=0.05, sweep_interval=0.05,
                               staleness_window=1)
        try:
            await service.start()
            assert service.bind_error is not None
            assert service.running
            assert not service.listening
            await asyncio.sleep(0.12)
            assert service.running
        finally:
            await service.stop()
            blocker.close()

    @pytest.mark.asyncio
    async def test_sweep_loop_publishes_lost_peers(self):
        events = EventBus()
        q = events.queue()
        service = make_service(events=events, port=free_udp_port(), announce_interval=0.02,
                               sweep_interval=0.05, staleness_window=0.1)
        service._registry.upsert_from_announcement(
            Announcement(id="hall", name="Hall", port=3000),
            "192.168.1.20",
        )
        await service.start()
        try:
            await asyncio.sleep(0.3)
        finally:
            await service.stop()
        assert service._registry.list() == []
        seen = []
        while not q.empty():
            seen.append(q.get_nowait())
        assert any(e == PEERS_UPDATED and d["event"] == "peer_lost" for e, d in seen)


class TestHealthMonitor:
    @pytest.mark.asyncio
    async def test_check_all_reports_status_changes(self):
        def handler(request):
            if request.url.host == "10.0.0.1":
                return httpx.Response(200, json={"displayName": "A"})
            raise httpx.ConnectError("refused", request=request)

        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        registry = PeerRegistry(LocalDevice(display_name="lobby", api_port=3000), client)
        registry.add_manual("10.0.0.1", "A", 3000)
        registry.add_manual("10.0.0.2", "B", 3000)
        events = EventBus()
        q = events.queue()

        monitor = PeerHealthMonitor(registry, events, interval=60, timeout=1)
        result = await monitor.check_all()

        assert result == {"10.0.0.1:3000": True, "10.0.0.2:3000": False}
        event, data = q.get_nowait()
        assert event == PEERS_UPDATED
        assert data["peers"] == ["10.0.0.1:3000"]
        await client.aclose()

    @pytest.mark.asyncio
    async def test_check_all_without_peers(self):
        registry = PeerRegistry(LocalDevice(display_name="lobby", api_port=3000))
        assert await PeerHealthMonitor(registry).check_all() == {}
