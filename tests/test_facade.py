"""Tests for CoordinatorFacade wiring: peers, config, local fan-out and addons."""

from __future__ import annotations

import asyncio
import io
import socket

import httpx
import pytest

from coordinator.events import CONFIG_UPDATED, MEDIA_UPDATED
from coordinator.facade import CoordinatorFacade
from coordinator.media import MediaLibrary
from errors import NotFound, ValidationError
from fanout.models import LOCAL_TARGET_ID, FanoutOperation
from helpers import RECORDING_ADDON, write_addon


def free_udp_port() -> int:
    with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as s:
        s.bind(("127.0.0.1", 0))
        return s.getsockname()[1]


@pytest.fixture
def peer_client():
    def handler(request):
        return httpx.Response(200, json={"displayName": f"Screen {request.url.host}"})

    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


@pytest.fixture
def facade(store, tmp_path, addons_dir, fonts_dir, peer_client):
    store.update({"displayName": "Lobby", "discoveryPort": free_udp_port()})
    return CoordinatorFacade(
        store,
        media=MediaLibrary(tmp_path / "Media", tmp_path / "updates"),
        addons_dir=addons_dir,
        fonts_dir=fonts_dir,
        client=peer_client,
    )


class TestPeers:
    @pytest.mark.asyncio
    async def test_add_check_remove_round_trip(self, facade, store):
        before = facade.list_peers()
        peer = await facade.add_manual_peer("10.0.0.9", "Kiosk")
        assert peer.port == 3000
        assert store.config.peers[0].ip == "10.0.0.9"

        assert await facade.check_peer(peer.id) == {"online": True}
        assert facade.peers.get(peer.id).name == "Screen 10.0.0.9"

        facade.remove_peer(peer.id)
        assert facade.list_peers() == before
        assert store.config.peers == []

    @pytest.mark.asyncio
    async def test_unknown_peer(self, facade):
        with pytest.raises(NotFound):
            facade.remove_peer("1.2.3.4:3000")
        with pytest.raises(NotFound):
            await facade.check_peer("1.2.3.4:3000")

    @pytest.mark.asyncio
    async def test_blank_ip_rejected(self, facade):
        with pytest.raises(ValidationError):
            await facade.add_manual_peer("  ")

    def test_all_targets_include_local(self, facade):
        facade.peers.add_manual("10.0.0.9", "Kiosk", 3000)
        assert facade.all_target_ids() == [LOCAL_TARGET_ID, "10.0.0.9:3000"]


class TestConfig:
    @pytest.mark.asyncio
    async def test_apply_config_hides_password_and_refreshes_identity(self, facade):
        q = facade.events.queue()
        facade.set_password("hunter2")
        public = facade.apply_config({"displayName": "Foyer", "password": "ignored", "peers": []})

        assert "password" not in public
        assert public["hasPassword"] is True
        assert public["displayName"] == "Foyer"
        assert facade.get_config().password == "hunter2"
        assert facade.peers.local.display_name == "Foyer"
        assert q.get_nowait() == (CONFIG_UPDATED, public)

    @pytest.mark.asyncio
    async def test_local_fanout_applies_config(self, facade):
        result = await facade.fanout([LOCAL_TARGET_ID], FanoutOperation.APPLY_CONFIG, {"rotation": 90})
        assert result.success_count == 1
        assert facade.get_config().rotation == 90

    @pytest.mark.asyncio
    async def test_local_fanout_invalid_config_is_a_failure(self, facade):
        result = await facade.fanout([LOCAL_TARGET_ID], FanoutOperation.APPLY_CONFIG, {"rotation": 45})
        assert result.fail_count == 1
        assert facade.get_config().rotation == 0


class TestMedia:
    @pytest.mark.asyncio
    async def test_local_media_fanout_copies_into_library(self, facade, tmp_path):
        source = tmp_path / "upload" / "poster.png"
        source.parent.mkdir()
        source.write_bytes(b"img")
        q = facade.events.queue()

        result = await facade.fanout([LOCAL_TARGET_ID], FanoutOperation.UPLOAD_MEDIA, [str(source)])

        assert result.success_count == 1
        assert [m.name for m in facade.media_snapshot()] == ["poster.png"]
        event, data = q.get_nowait()
        assert event == MEDIA_UPDATED
        assert data["media"][0]["name"] == "poster.png"

    @pytest.mark.asyncio
    async def test_receive_and_delete(self, facade):
        item = await facade.receive_media("clip.mp4", io.BytesIO(b"video"))
        assert item.type == "video"
        facade.delete_media("clip.mp4")
        assert facade.media_snapshot() == []

    @pytest.mark.asyncio
    async def test_local_update_fanout_stages_package(self, facade, tmp_path):
        package = tmp_path / "signage.zip"
        package.write_bytes(b"PK")
        result = await facade.fanout([LOCAL_TARGET_ID], FanoutOperation.PUSH_UPDATE, str(package))
        assert result.success_count == 1
        assert (facade.media.updates_dir / "pending-update").read_bytes() == b"PK"


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_start_restores_peers_and_addons(self, store, facade, addons_dir):
        write_addon(addons_dir, "clock", code=RECORDING_ADDON)
        store.update({"peers": [{"ip": "10.0.0.9", "name": "Kiosk", "port": 3000}]})

        await facade.start()
        try:
            await asyncio.sleep(0.05)
            assert [p.id for p in facade.list_peers()] == ["10.0.0.9:3000"]
            assert facade.list_addons()["clock"].state == "running"
            status = facade.status()
            assert status["name"] == "Lobby"
            assert status["discovery"]["running"] is True
            assert status["addons"] == 1

            summary = await facade.update_addon_config("clock", {"enabled": False})
            assert summary.state == "stopped"

            reloaded = await facade.reload_addons()
            assert list(reloaded) == ["clock"]
        finally:
            await facade.stop()
        assert facade.discovery.running is False

    @pytest.mark.asyncio
    async def test_addon_scripts(self, facade, addons_dir):
        folder = write_addon(addons_dir, "banner")
        (folder / "frontend.js").write_text("console.log('banner');")
        await facade.reload_addons()

        assert await facade.addon_scripts() == {"banner": "console.log('banner');"}
        assert await facade.addon_script("banner") == "console.log('banner');"
        with pytest.raises(NotFound):
            await facade.addon_script("ghost")
