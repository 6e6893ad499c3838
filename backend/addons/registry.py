"""
Addon registry: the single owner of loaded addons and their config state.

The registry scans the addons directory, validates manifests, merges the
persisted config over the manifest defaults and builds one instance per
addon. Lifecycle transitions (init/stop) belong to AddonLifecycleManager,
which attaches itself so config updates can trigger a restart.
"""

from __future__ import annotations

import logging
from pathlib import Path

from addons.base import AddonContext
from addons.loader import iter_candidates, load_entry, unload_module
from addons.models import Addon, AddonState, AddonSummary
from config import CREDENTIAL_FIELDS, FONTS_DIR
from coordinator.events import ADDON_EVENT, EventBus
from coordinator.store import ConfigStore
from errors import NotFound, ValidationError

logger = logging.getLogger(__name__)


def strip_credentials(config: dict) -> dict:
    return {k: v for k, v in config.items() if k not in CREDENTIAL_FIELDS}


class AddonRegistry:
    """Map of addon id -> Addon; replaced wholesale on every scan."""

    def __init__(
        self,
        store: ConfigStore,
        events: EventBus | None = None,
        fonts_dir: Path = FONTS_DIR,
    ) -> None:
        self._store = store
        self._events = events
        self._fonts_dir = Path(fonts_dir)
        self._addons: dict[str, Addon] = {}
        self._lifecycle = None  # AddonLifecycleManager, attached later

    def attach_lifecycle(self, lifecycle) -> None:
        self._lifecycle = lifecycle

    def get(self, addon_id: str) -> Addon | None:
        return self._addons.get(addon_id)

    def require(self, addon_id: str) -> Addon:
        addon = self._addons.get(addon_id)
        if addon is None:
            raise NotFound(f"Addon {addon_id} not found")
        return addon

    def list(self) -> list[Addon]:
        return list(self._addons.values())

    def ids(self) -> list[str]:
        return list(self._addons)

    def replace(self, addons: list[Addon]) -> None:
        old = self._addons
        self._addons = {a.id: a for a in addons}
        for addon in old.values():
            if self._addons.get(addon.id) is not addon:
                unload_module(addon.module)

    # --- Scanning ---

    def discover(self, addons_dir: Path) -> list[Addon]:
        """Load every valid addon in addons_dir without touching the current set."""
        addons_dir = Path(addons_dir)
        if not addons_dir.exists():
            addons_dir.mkdir(parents=True, exist_ok=True)
            logger.info(f"Created Addons directory: {addons_dir}")
            return []

        addons: list[Addon] = []
        candidates = iter_candidates(addons_dir)
        logger.info(f"Found {len(candidates)} addon candidate(s) in {addons_dir}")

        for addon_id, path in candidates:
            try:
                entry = load_entry(addon_id, path, self._fonts_dir)
            except ValidationError as e:
                logger.error(f"Skipping addon {addon_id}: {e}")
                continue
            except Exception as e:
                logger.error(f"Failed to load addon {addon_id}: {e}")
                continue

            config = self.effective_config(addon_id, entry.manifest)
            addon = Addon(
                id=addon_id,
                folder=entry.folder,
                manifest=entry.manifest,
                config=config,
                enabled=config.get("enabled") is not False,
                module=entry.module,
                frontend_path=entry.frontend_path,
                state=AddonState.STOPPED,
            )
            self._instantiate(addon)
            addons.append(addon)
            logger.info(f"Loaded addon: {addon.info.name} v{addon.info.version}")

        return addons

    def scan(self, addons_dir: Path) -> list[Addon]:
        """Discover and replace the whole addon set."""
        addons = self.discover(addons_dir)
        self.replace(addons)
        return addons

    def effective_config(self, addon_id: str, manifest) -> dict:
        """Setting defaults overlaid by the persisted config."""
        persisted = strip_credentials(self._store.addon_config(addon_id))
        return {**manifest.defaults(), **persisted}

    def sync_config(self, addon: Addon) -> None:
        """Re-read an addon's persisted config onto its record."""
        addon.config = self.effective_config(addon.id, addon.manifest)
        addon.enabled = addon.config.get("enabled") is not False

    def _instantiate(self, addon: Addon) -> None:
        cls = getattr(addon.module, "Addon", None) if addon.module else None
        if cls is None:
            return
        context = AddonContext(
            addon_id=addon.id,
            folder=addon.folder,
            fonts_dir=self._fonts_dir,
            emit=self._emitter(addon.id),
        )
        try:
            addon.instance = cls(context)
        except Exception as e:
            addon.last_error = f"constructor failed: {e}"
            logger.error(f"Failed to create addon {addon.id}: {e}")

    def _emitter(self, addon_id: str):
        def emit(event: str, data: dict | None = None) -> None:
            if self._events:
                self._events.publish(ADDON_EVENT, {"addon": addon_id, "type": event, "data": data or {}})
        return emit

    # --- Admin projection / config ---

    def get_addon_configs(self) -> dict[str, AddonSummary]:
        return {addon_id: addon.summary() for addon_id, addon in self._addons.items()}

    def validate_config(self, addon: Addon, partial: dict) -> None:
        for key, value in partial.items():
            setting = addon.manifest.setting(key)
            try:
                if setting is not None:
                    setting.validate_value(value)
                elif key == "enabled" and not isinstance(value, bool):
                    raise ValueError("'enabled' must be true or false")
            except ValueError as e:
                raise ValidationError(f"Invalid config for {addon.id}: {e}") from e

    def commit_config(self, addon_id: str, partial: dict) -> dict:
        """Validate and persist a partial config; returns the new effective config."""
        addon = self.require(addon_id)
        partial = strip_credentials(partial)
        self.validate_config(addon, partial)

        persisted = strip_credentials(self._store.addon_config(addon_id))
        persisted.update(partial)
        self._store.set_addon_config(addon_id, persisted)
        logger.info(f"Updated config for addon: {addon_id}")
        return self.effective_config(addon_id, addon.manifest)

    async def update_config(self, addon_id: str, partial: dict) -> Addon:
        """Merge, persist and apply a partial config (restarting the addon)."""
        self.require(addon_id)
        if self._lifecycle is not None:
            return await self._lifecycle.reconfigure(addon_id, partial)

        self.commit_config(addon_id, partial)
        addon = self.require(addon_id)
        self.sync_config(addon)
        return addon
