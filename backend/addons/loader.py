"""
Addon discovery on disk: manifests and code modules.

Two layouts are recognised inside the addons directory:

    Addons/<id>/addon.json      manifest (required)
    Addons/<id>/addon.py        backend module exporting ``Addon`` (optional)
    Addons/<id>/frontend.js     static display script (optional)

    Addons/<id>.py              single-file addon exporting ``INFO``,
                                ``SETTINGS`` (optional) and ``Addon``

Code is always executed from a freshly created module object so a reload
never sees the previous generation's classes.
"""

import importlib.util
import itertools
import json
import logging
import re
import sys
from dataclasses import dataclass
from pathlib import Path
from types import ModuleType

import pydantic

from addons.models import AddonManifest, SelectOption, SelectSetting
from config import FONT_EXTENSIONS
from errors import ValidationError

logger = logging.getLogger(__name__)

MANIFEST_FILE = "addon.json"
BACKEND_FILE = "addon.py"
FRONTEND_FILE = "frontend.js"
MODULE_PREFIX = "signage_addon"

_generation = itertools.count(1)


@dataclass
class LoadedEntry:
    manifest: AddonManifest
    folder: Path
    module: ModuleType | None = None
    frontend_path: Path | None = None


def iter_candidates(addons_dir: Path) -> list[tuple[str, Path]]:
    """(addon id, path) for every entry that looks like an addon, sorted by id."""
    found = []
    for entry in sorted(addons_dir.iterdir()):
        if entry.name.startswith((".", "_")):
            continue
        if entry.is_dir() and (entry / MANIFEST_FILE).is_file():
            found.append((entry.name, entry))
        elif entry.is_file() and entry.suffix == ".py":
            found.append((entry.stem, entry))
    return found


def load_module(addon_id: str, path: Path) -> ModuleType:
    """Execute an addon's code in a new module object."""
    safe_id = re.sub(r"\W", "_", addon_id)
    name = f"{MODULE_PREFIX}_{safe_id}_{next(_generation)}"
    spec = importlib.util.spec_from_file_location(name, path)
    if spec is None:
        raise ImportError(f"Cannot load addon module from {path}")
    module = importlib.util.module_from_spec(spec)
    sys.modules[name] = module
    # No .pyc for addons: one written in the same second as an edit would shadow it
    dont_write = sys.dont_write_bytecode
    sys.dont_write_bytecode = True
    try:
        spec.loader.exec_module(module)
    except BaseException:
        sys.modules.pop(name, None)
        raise
    finally:
        sys.dont_write_bytecode = dont_write
    return module


def unload_module(module: ModuleType | None) -> None:
    if module is not None:
        sys.modules.pop(module.__name__, None)


def parse_manifest(addon_id: str, raw) -> AddonManifest:
    if not isinstance(raw, dict):
        raise ValidationError(f"Manifest for '{addon_id}' must be an object")
    try:
        return AddonManifest(
            id=addon_id,
            info=raw.get("info"),
            settings=raw.get("settings") or [],
        )
    except pydantic.ValidationError as e:
        raise ValidationError(f"Invalid manifest for '{addon_id}': {e}") from e


def list_fonts(fonts_dir: Path) -> list[str]:
    if not fonts_dir.is_dir():
        return []
    return sorted(
        f.name for f in fonts_dir.iterdir()
        if f.is_file() and f.suffix.lower() in FONT_EXTENSIONS
    )


def resolve_dynamic_options(manifest: AddonManifest, fonts_dir: Path) -> None:
    """Fill ``optionsFrom`` select settings; done once per load."""
    for setting in manifest.settings:
        if not isinstance(setting, SelectSetting) or setting.options_from is None:
            continue
        if setting.options_from != "fonts":
            logger.warning(f"{manifest.id}: unknown optionsFrom '{setting.options_from}'")
            continue
        known = set(setting.allowed_values())
        for font in list_fonts(fonts_dir):
            if font not in known:
                setting.options.append(SelectOption(value=font, label=font))


def load_entry(addon_id: str, path: Path, fonts_dir: Path) -> LoadedEntry:
    """Read one addon from disk. Raises ValidationError for bad manifests."""
    if path.is_dir():
        try:
            raw = json.loads((path / MANIFEST_FILE).read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            raise ValidationError(f"Unreadable manifest for '{addon_id}': {e}") from e
        manifest = parse_manifest(addon_id, raw)
        backend = path / BACKEND_FILE
        module = load_module(addon_id, backend) if backend.is_file() else None
        frontend = path / FRONTEND_FILE
        entry = LoadedEntry(
            manifest=manifest,
            folder=path,
            module=module,
            frontend_path=frontend if frontend.is_file() else None,
        )
    else:
        module = load_module(addon_id, path)
        raw = {"info": getattr(module, "INFO", None), "settings": getattr(module, "SETTINGS", None)}
        try:
            manifest = parse_manifest(addon_id, raw)
        except ValidationError:
            unload_module(module)
            raise
        entry = LoadedEntry(manifest=manifest, folder=path.parent, module=module)

    resolve_dynamic_options(entry.manifest, fonts_dir)
    return entry
