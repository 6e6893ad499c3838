"""
Coordinator facade: the one entry point the HTTP layer talks to.

Owns the peer registry, discovery, health monitor, fan-out dispatcher and
the addon registry/lifecycle, all wired to a shared EventBus and a single
httpx.AsyncClient.
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import BinaryIO

import httpx

from addons.lifecycle import AddonLifecycleManager
from addons.models import AddonSummary
from addons.registry import AddonRegistry
from config import (
    ADDONS_DIR,
    ANNOUNCE_INTERVAL,
    APP_NAME,
    APP_VERSION,
    CREDENTIAL_FIELDS,
    FONTS_DIR,
    PEER_TIMEOUT,
    SWEEP_INTERVAL,
)
from coordinator.events import CONFIG_UPDATED, MEDIA_UPDATED, PEERS_UPDATED, UPDATE_STAGED, EventBus
from coordinator.media import MediaItem, MediaLibrary
from coordinator.store import ConfigStore, DeviceConfig, ManualPeer
from discovery.health import PeerHealthMonitor
from discovery.models import LocalDevice, Peer
from discovery.registry import PeerRegistry
from discovery.service import DiscoveryService
from errors import NotFound, ValidationError
from fanout.dispatcher import FanoutDispatcher
from fanout.models import LOCAL_TARGET_ID, ConfigPayload, FanoutOperation, FanoutResult, MediaPayload, UpdatePayload

logger = logging.getLogger(__name__)

# Keys owned by dedicated operations, never by a plain config update
_RESERVED_KEYS = set(CREDENTIAL_FIELDS) | {"peers", "addons"}


def local_device_from(config: DeviceConfig) -> LocalDevice:
    return LocalDevice(
        display_name=config.display_name,
        api_port=config.port,
        static_ip=config.static_ip,
    )


class CoordinatorFacade:
    """Peers, fan-out, addons and device config behind one object."""

    def __init__(
        self,
        store: ConfigStore,
        events: EventBus | None = None,
        media: MediaLibrary | None = None,
        addons_dir: Path = ADDONS_DIR,
        fonts_dir: Path = FONTS_DIR,
        client: httpx.AsyncClient | None = None,
        announce_interval: float = ANNOUNCE_INTERVAL,
        sweep_interval: float = SWEEP_INTERVAL,
        staleness_window: float = PEER_TIMEOUT,
    ) -> None:
        self.store = store
        self.events = events or EventBus()
        self.media = media or MediaLibrary()
        self.addons_dir = Path(addons_dir)

        self._owns_client = client is None
        self.client = client or httpx.AsyncClient()
        self._background: set[asyncio.Task] = set()

        config = store.config
        self.peers = PeerRegistry(local_device_from(config), self.client)
        self.discovery = DiscoveryService(
            self.peers,
            self.events,
            port=config.discovery_port,
            announce_interval=announce_interval,
            sweep_interval=sweep_interval,
            staleness_window=staleness_window,
        )
        self.health = PeerHealthMonitor(self.peers, self.events)

        self.dispatcher = FanoutDispatcher(
            self.peers, self.client, password_provider=lambda: self.store.config.password
        )
        self.dispatcher.register_local(FanoutOperation.APPLY_CONFIG, self._local_apply_config)
        self.dispatcher.register_local(FanoutOperation.UPLOAD_MEDIA, self._local_upload_media)
        self.dispatcher.register_local(FanoutOperation.PUSH_UPDATE, self._local_push_update)

        self.addons = AddonRegistry(store, self.events, fonts_dir)
        self.lifecycle = AddonLifecycleManager(self.addons, self.events)

    # --- Startup / shutdown ---

    async def start(self) -> None:
        for p in self.store.config.peers:
            self.peers.add_manual(p.ip, p.name, p.port)

        await self.discovery.start()
        await self.health.start()

        self.addons.scan(self.addons_dir)
        await self.lifecycle.start_all()

        self._spawn(self.health.check_all())
        logger.info(f"Coordinator started as '{self.store.config.display_name}'")

    async def stop(self) -> None:
        await self.lifecycle.stop_all()
        await self.health.stop()
        await self.discovery.stop()
        for task in list(self._background):
            task.cancel()
        await asyncio.gather(*self._background, return_exceptions=True)
        if self._owns_client:
            await self.client.aclose()
        logger.info("Coordinator stopped")

    def _spawn(self, coro) -> None:
        task = asyncio.create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    def status(self) -> dict:
        bind_error = self.discovery.bind_error
        return {
            "name": self.store.config.display_name,
            "app": APP_NAME,
            "version": APP_VERSION,
            "discovery": {
                "running": self.discovery.running,
                "listening": self.discovery.listening,
                "port": self.discovery.port,
                "bindError": str(bind_error) if bind_error else None,
            },
            "peers": len(self.peers.list()),
            "addons": len(self.addons.ids()),
        }

    # --- Device config ---

    def get_config(self) -> DeviceConfig:
        return self.store.config

    def public_config(self) -> dict:
        data = self.store.config.model_dump(by_alias=True)
        data["hasPassword"] = bool(data.pop("password", ""))
        data.pop("addons", None)
        return data

    def apply_config(self, updates: dict) -> dict:
        if not isinstance(updates, dict):
            raise ValidationError("Config update must be an object")
        updates = {k: v for k, v in updates.items() if k not in _RESERVED_KEYS}
        config = self.store.update(updates)
        self.peers.local = local_device_from(config)
        public = self.public_config()
        self.events.publish(CONFIG_UPDATED, public)
        logger.info("Config updated")
        return public

    def set_password(self, password: str) -> None:
        self.store.set_password(password or "")
        logger.info("Password " + ("set" if password else "cleared"))

    # --- Peers ---

    def list_peers(self) -> list[Peer]:
        return self.peers.list()

    def all_target_ids(self) -> list[str]:
        return [LOCAL_TARGET_ID] + [p.id for p in self.peers.list()]

    async def add_manual_peer(self, ip: str, name: str | None = None, port: int | None = None) -> Peer:
        ip = (ip or "").strip()
        if not ip:
            raise ValidationError("Peer IP is required")
        port = port or self.store.config.port
        if not 0 < port < 65536:
            raise ValidationError(f"Invalid port: {port}")

        peer = self.peers.add_manual(ip, name or ip, port)
        self._persist_manual_peers()
        self.events.publish(PEERS_UPDATED, {"event": "peer_added", "peer": peer.model_dump()})
        self._spawn(self.peers.check_liveness(peer))
        return peer

    def remove_peer(self, peer_id: str) -> None:
        peer = self.peers.remove(peer_id)
        if peer is None:
            raise NotFound(f"Peer {peer_id} not found")
        if peer.manual:
            self._persist_manual_peers()
        self.events.publish(PEERS_UPDATED, {"event": "peer_removed", "peer": peer.model_dump()})

    async def check_peer(self, peer_id: str) -> dict:
        peer = self.peers.get(peer_id)
        if peer is None:
            raise NotFound(f"Peer {peer_id} not found")
        online = await self.peers.check_liveness(peer)
        return {"online": online}

    def _persist_manual_peers(self) -> None:
        self.store.set_manual_peers(
            [ManualPeer(ip=p.ip, name=p.name, port=p.port) for p in self.peers.manual_peers()]
        )

    # --- Fan-out ---

    async def fanout(self, target_ids, operation, payload, timeout: float | None = None) -> FanoutResult:
        return await self.dispatcher.dispatch(target_ids, operation, payload, timeout)

    async def _local_apply_config(self, payload: ConfigPayload) -> None:
        self.apply_config(payload.updates)

    async def _local_upload_media(self, payload: MediaPayload) -> None:
        media_dir = self.media.media_dir.resolve()
        for path in payload.file_paths:
            if Path(path).resolve().parent == media_dir:
                continue
            await self.media.import_file(path)
        self._media_changed()

    async def _local_push_update(self, payload: UpdatePayload) -> None:
        with open(payload.file_path, "rb") as f:
            await self.stage_update(Path(payload.file_path).name, f, payload.restart_pc)

    # --- Media / updates ---

    def media_snapshot(self) -> list[MediaItem]:
        return self.media.list_media()

    def _media_changed(self) -> None:
        self.events.publish(MEDIA_UPDATED, {"media": [m.model_dump() for m in self.media.list_media()]})

    async def receive_media(self, filename: str, stream: BinaryIO) -> MediaItem | None:
        dest = await self.media.save(filename, stream)
        self._media_changed()
        return next((m for m in self.media.list_media() if m.name == dest.name), None)

    def delete_media(self, name: str) -> None:
        self.media.delete(name)
        self._media_changed()

    async def stage_update(self, filename: str, stream: BinaryIO, restart_pc: bool = False) -> dict:
        info = await self.media.stage_update(filename, stream, restart_pc)
        self.events.publish(UPDATE_STAGED, info)
        return info

    # --- Addons ---

    def list_addons(self) -> dict[str, AddonSummary]:
        return self.addons.get_addon_configs()

    async def update_addon_config(self, addon_id: str, partial: dict) -> AddonSummary:
        if not isinstance(partial, dict):
            raise ValidationError("Addon config must be an object")
        addon = await self.addons.update_config(addon_id, partial)
        return addon.summary()

    async def reload_addons(self) -> dict[str, AddonSummary]:
        await self.lifecycle.reload_all(self.addons_dir)
        return self.addons.get_addon_configs()

    async def addon_scripts(self) -> dict[str, str]:
        return await self.lifecycle.frontend_scripts()

    async def addon_script(self, addon_id: str) -> str:
        return await self.lifecycle.frontend_script(addon_id)

    async def addon_asset(self, addon_id: str, name: str) -> bytes:
        return await self.lifecycle.get_asset(addon_id, name)
