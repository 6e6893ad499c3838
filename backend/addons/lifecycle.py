"""
Addon lifecycle manager.

Drives every addon instance through init / update_config / stop:

    unloaded -> stopped -> running -> stopped -> unloaded
                           running -> running   (reconfigure)

Transitions are serialized per addon id with an asyncio.Lock; different
addons may transition concurrently. A failing hook is logged and leaves that
addon stopped without affecting any other addon.
"""

import asyncio
import contextlib
import inspect
import logging
from pathlib import Path

from addons.models import Addon, AddonState
from addons.registry import AddonRegistry
from config import ADDON_HOOK_TIMEOUT
from coordinator.events import ADDONS_UPDATED, EventBus
from errors import LifecycleError, NotFound, is_transient_io

logger = logging.getLogger(__name__)


class AddonLifecycleManager:
    """Calls addon hooks at the right transitions and isolates their failures."""

    def __init__(
        self,
        registry: AddonRegistry,
        events: EventBus | None = None,
        hook_timeout: float = ADDON_HOOK_TIMEOUT,
    ) -> None:
        self._registry = registry
        self._events = events
        self._hook_timeout = hook_timeout
        self._locks: dict[str, asyncio.Lock] = {}
        self._reload_lock = asyncio.Lock()
        self._shutting_down = False
        registry.attach_lifecycle(self)

    def _lock(self, addon_id: str) -> asyncio.Lock:
        return self._locks.setdefault(addon_id, asyncio.Lock())

    def _notify(self) -> None:
        if self._events:
            self._events.publish(ADDONS_UPDATED, {"addons": self._registry.ids()})

    async def _call_hook(self, addon: Addon, hook_name: str, *args):
        """Invoke an optional hook (sync or async). Raises LifecycleError on failure."""
        hook = getattr(addon.instance, hook_name, None)
        if hook is None:
            return None
        try:
            result = hook(*args)
            if inspect.isawaitable(result):
                result = await asyncio.wait_for(result, self._hook_timeout)
            return result
        except asyncio.TimeoutError as e:
            raise LifecycleError(addon.id, hook_name, TimeoutError(f"no answer after {self._hook_timeout}s")) from e
        except Exception as e:
            raise LifecycleError(addon.id, hook_name, e) from e

    # --- Transitions (callers hold the addon's lock) ---

    async def _start(self, addon: Addon) -> None:
        if addon.instance is None or not addon.enabled or addon.state == AddonState.RUNNING:
            return
        try:
            await self._call_hook(addon, "init", dict(addon.config))
        except LifecycleError as e:
            addon.state = AddonState.STOPPED
            addon.last_error = str(e)
            logger.error(f"Failed to initialize addon {addon.info.name}: {e.cause}")
            return
        addon.state = AddonState.RUNNING
        addon.last_error = None
        logger.info(f"Initialized addon: {addon.info.name}")

    async def _stop(self, addon: Addon) -> LifecycleError | None:
        if addon.state != AddonState.RUNNING:
            return None
        try:
            await self._call_hook(addon, "stop")
        except LifecycleError as e:
            if is_transient_io(e.cause):
                # Closed stdio/sockets while the host exits
                log = logger.debug if self._shutting_down else logger.warning
                log(f"Ignoring transient I/O error stopping {addon.id}: {e.cause}")
                return None
            logger.error(f"Error stopping addon {addon.info.name}: {e.cause}")
            return e
        finally:
            addon.state = AddonState.STOPPED
        logger.info(f"Stopped addon: {addon.info.name}")
        return None

    async def _apply(self, addon: Addon, new_config: dict) -> None:
        await self._stop(addon)
        addon.config = dict(new_config)
        addon.enabled = new_config.get("enabled") is not False
        try:
            await self._call_hook(addon, "update_config", dict(addon.config))
        except LifecycleError as e:
            addon.last_error = str(e)
            logger.error(f"Addon {addon.id} rejected config update: {e.cause}")
        if addon.enabled:
            await self._start(addon)

    async def _stop_many(self, addons: list[Addon]) -> list[LifecycleError]:
        results = await asyncio.gather(*(self._stop(a) for a in addons))
        errors = [e for e in results if e is not None]
        if errors:
            logger.warning(f"{len(errors)} addon(s) failed to stop cleanly")
        return errors

    # --- Public operations ---

    async def load_and_start(self, addon: Addon) -> None:
        async with self._lock(addon.id):
            await self._start(addon)

    async def start_all(self) -> None:
        await asyncio.gather(*(self.load_and_start(a) for a in self._registry.list()))

    async def apply_config_update(self, addon: Addon, new_config: dict) -> None:
        """Restart-on-reconfigure: stop, swap config, init again if still enabled."""
        async with self._lock(addon.id):
            await self._apply(addon, new_config)

    async def reconfigure(self, addon_id: str, partial: dict) -> Addon:
        """Persist a partial config and apply it to the current instance."""
        async with self._lock(addon_id):
            # Re-read under the lock: a reload may have replaced the record
            addon = self._registry.require(addon_id)
            new_config = self._registry.commit_config(addon_id, partial)
            await self._apply(addon, new_config)
        self._notify()
        return addon

    async def reload_all(self, addons_dir: Path) -> list[Addon]:
        """Replace every addon with a freshly loaded generation."""
        async with self._reload_lock:
            # Load first: if this raises, the running set is untouched
            new_addons = self._registry.discover(addons_dir)
            ids = sorted(set(self._registry.ids()) | {a.id for a in new_addons})

            async with contextlib.AsyncExitStack() as stack:
                for addon_id in ids:
                    await stack.enter_async_context(self._lock(addon_id))

                # Updates committed while waiting on the locks postdate the load
                for addon in new_addons:
                    self._registry.sync_config(addon)

                errors = await self._stop_many(self._registry.list())
                for addon in self._registry.list():
                    addon.instance = None
                    addon.state = AddonState.UNLOADED
                self._registry.replace(new_addons)
                await asyncio.gather(*(self._start(a) for a in new_addons))

        logger.info(f"Reloaded {len(new_addons)} addon(s), {len(errors)} stop error(s)")
        self._notify()
        return new_addons

    async def stop_all(self) -> None:
        """Host shutdown: best-effort stop of every running addon."""
        self._shutting_down = True
        async with self._reload_lock:
            ids = sorted(self._registry.ids())
            async with contextlib.AsyncExitStack() as stack:
                for addon_id in ids:
                    await stack.enter_async_context(self._lock(addon_id))
                await self._stop_many(self._registry.list())

    # --- Capability hooks ---

    async def _script_for(self, addon: Addon) -> str | None:
        """An enabled addon's display script, or None. Failures are logged."""
        if not addon.enabled:
            return None
        try:
            if hasattr(addon.instance, "frontend_script"):
                return await self._call_hook(addon, "frontend_script", dict(addon.config))
            if addon.frontend_path is not None:
                return addon.frontend_path.read_text(encoding="utf-8")
        except (LifecycleError, OSError) as e:
            logger.error(f"Frontend script of {addon.id} unavailable: {e}")
        return None

    async def frontend_scripts(self) -> dict[str, str]:
        """Display-layer scripts of every enabled addon."""
        scripts: dict[str, str] = {}
        for addon in self._registry.list():
            script = await self._script_for(addon)
            if script:
                scripts[addon.id] = script
        return scripts

    async def frontend_script(self, addon_id: str) -> str:
        script = await self._script_for(self._registry.require(addon_id))
        if not script:
            raise NotFound(f"No frontend script for {addon_id}")
        return script

    async def get_asset(self, addon_id: str, name: str) -> bytes:
        """Binary asset (e.g. a font file) exported by an addon."""
        addon = self._registry.require(addon_id)
        if not hasattr(addon.instance, "asset"):
            raise NotFound(f"Addon {addon_id} has no assets")
        data = await self._call_hook(addon, "asset", name)
        if data is None:
            raise NotFound(f"Asset {name} not found in {addon_id}")
        return data
