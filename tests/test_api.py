"""Tests for the REST API routes (FastAPI TestClient)."""

from __future__ import annotations

import httpx
import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from api.routes import init_routes, install_error_handlers, parse_targets, router
from coordinator.facade import CoordinatorFacade
from coordinator.media import MediaLibrary
from errors import ValidationError
from helpers import write_addon


@pytest.fixture
def facade(store, tmp_path, addons_dir, fonts_dir):
    store.update({"displayName": "Lobby"})
    client = httpx.AsyncClient(transport=httpx.MockTransport(lambda r: httpx.Response(503)))
    return CoordinatorFacade(
        store,
        media=MediaLibrary(tmp_path / "Media", tmp_path / "updates"),
        addons_dir=addons_dir,
        fonts_dir=fonts_dir,
        client=client,
    )


@pytest.fixture
def client(facade):
    app = FastAPI()
    init_routes(facade)
    install_error_handlers(app)
    app.include_router(router)
    with TestClient(app) as test_client:
        yield test_client


class TestConfigRoutes:
    def test_get_config_hides_password(self, client, facade):
        facade.set_password("hunter2")
        data = client.get("/api/config").json()
        assert data["displayName"] == "Lobby"
        assert data["hasPassword"] is True
        assert "password" not in data

    def test_password_required_once_set(self, client, facade):
        facade.set_password("hunter2")
        assert client.post("/api/config", json={"rotation": 90}).status_code == 401
        resp = client.post("/api/config", json={"rotation": 90}, headers={"X-Signage-Password": "hunter2"})
        assert resp.status_code == 200
        assert resp.json()["rotation"] == 90

    def test_invalid_config_is_400(self, client):
        resp = client.post("/api/config", json={"rotation": 45})
        assert resp.status_code == 400
        assert "Invalid config" in resp.json()["error"]

    def test_change_password(self, client, facade):
        assert client.post("/api/password", json={"password": "new"}).status_code == 200
        assert facade.get_config().password == "new"

    def test_status(self, client):
        data = client.get("/api/status").json()
        assert data["name"] == "Lobby"
        assert data["discovery"]["running"] is False


class TestPeerRoutes:
    def test_add_list_remove(self, client):
        resp = client.post("/api/peers/add", json={"ip": "10.0.0.9", "name": "Kiosk"})
        assert resp.status_code == 200
        peer_id = resp.json()["peer"]["id"]
        assert peer_id == "10.0.0.9:3000"

        peers = client.get("/api/peers").json()["peers"]
        assert [p["id"] for p in peers] == [peer_id]

        assert client.get(f"/api/peers/check/{peer_id}").json() == {"online": False}
        assert client.delete(f"/api/peers/{peer_id}").status_code == 200
        assert client.get("/api/peers").json()["peers"] == []

    def test_unknown_peer_is_404(self, client):
        assert client.delete("/api/peers/1.2.3.4:3000").status_code == 404
        assert client.get("/api/peers/check/1.2.3.4:3000").status_code == 404


class TestMediaRoutes:
    def test_upload_to_local(self, client):
        resp = client.post(
            "/api/media/upload",
            files=[("files", ("poster.png", b"img", "image/png"))],
            data={"targets": "local"},
        )
        assert resp.status_code == 200
        assert resp.json()["success_count"] == 1
        media = client.get("/api/media").json()["media"]
        assert [m["name"] for m in media] == ["poster.png"]

    def test_upload_to_all_reports_offline_peer(self, client, facade):
        facade.peers.add_manual("10.0.0.9", "Kiosk", 3000)
        resp = client.post(
            "/api/media/upload",
            files=[("files", ("poster.png", b"img", "image/png"))],
            data={"targets": "all"},
        )
        body = resp.json()
        assert body["success_count"] == 1
        assert body["fail_count"] == 1
        failed = [r for r in body["results"] if not r["success"]]
        assert failed[0]["error"] == "peer offline"

    def test_receive_and_delete(self, client):
        resp = client.post("/api/media/receive", files={"file": ("clip.mp4", b"video", "video/mp4")})
        assert resp.json()["media"]["type"] == "video"
        assert client.delete("/api/media/clip.mp4").status_code == 200
        assert client.delete("/api/media/clip.mp4").status_code == 404

    def test_update_receive(self, client, facade):
        resp = client.post(
            "/api/update/receive",
            files={"file": ("signage.zip", b"PK", "application/zip")},
            data={"restartPC": "true"},
        )
        assert resp.status_code == 200
        assert resp.json()["update"]["restartPC"] is True
        assert (facade.media.updates_dir / "pending-update").read_bytes() == b"PK"

    def test_fanout_config(self, client, facade):
        resp = client.post("/api/fanout/config", json={"targets": ["local"], "config": {"rotation": 180}})
        assert resp.json()["success_count"] == 1
        assert facade.get_config().rotation == 180

    def test_fanout_without_targets_is_400(self, client):
        resp = client.post("/api/fanout/config", json={"targets": [], "config": {}})
        assert resp.status_code == 400


class TestAddonRoutes:
    def test_list_configure_and_scripts(self, client, facade, addons_dir):
        folder = write_addon(addons_dir, "clock", settings=[
            {"id": "size", "type": "range", "min": 10, "max": 50, "default": 20},
        ])
        (folder / "frontend.js").write_text("console.log('clock');")
        assert client.post("/api/addons/reload").status_code == 200

        addons = client.get("/api/addons").json()["addons"]
        assert addons["clock"]["config"] == {"size": 20}

        assert client.post("/api/addons/clock/config", json={"size": 99}).status_code == 400
        resp = client.post("/api/addons/clock/config", json={"size": 30})
        assert resp.json()["addon"]["config"] == {"size": 30}
        assert client.post("/api/addons/ghost/config", json={}).status_code == 404

        script = client.get("/api/addons/clock/frontend.js")
        assert script.text == "console.log('clock');"
        assert script.headers["content-type"].startswith("application/javascript")
        assert client.get("/api/addons/ghost/frontend.js").status_code == 404

    def test_asset(self, client, facade, addons_dir):
        write_addon(addons_dir, "fonts", code="""
            class Addon:
                def __init__(self, context):
                    pass

                def asset(self, name):
                    return b"FONTDATA" if name == "a.woff2" else None
        """)
        client.post("/api/addons/reload")
        resp = client.get("/api/addons/fonts/assets/a.woff2")
        assert resp.content == b"FONTDATA"
        assert client.get("/api/addons/fonts/assets/b.woff2").status_code == 404


class TestTargets:
    def test_parse_targets(self, facade):
        init_routes(facade)
        facade.peers.add_manual("10.0.0.9", "Kiosk", 3000)
        assert parse_targets("local, 10.0.0.9:3000") == ["local", "10.0.0.9:3000"]
        assert parse_targets('["local"]') == ["local"]
        assert parse_targets("all") == ["local", "10.0.0.9:3000"]
        with pytest.raises(ValidationError):
            parse_targets("[broken")
