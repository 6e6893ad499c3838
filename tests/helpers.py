"""Shared builders for addon tests."""

import json
import textwrap
from pathlib import Path

REPO_ADDONS_DIR = Path(__file__).resolve().parent.parent / "Addons"


def write_addon(addons_dir: Path, addon_id: str, info=None, settings=None, code: str | None = None) -> Path:
    """Create Addons/<id>/addon.json (+ addon.py) and return the folder."""
    folder = addons_dir / addon_id
    folder.mkdir(parents=True, exist_ok=True)
    manifest = {"info": info if info is not None else {"name": addon_id.title(), "version": "1.0.0"}}
    if settings is not None:
        manifest["settings"] = settings
    (folder / "addon.json").write_text(json.dumps(manifest), encoding="utf-8")
    if code is not None:
        (folder / "addon.py").write_text(textwrap.dedent(code), encoding="utf-8")
    return folder


# Records every hook call on the instance
RECORDING_ADDON = """
    class Addon:
        def __init__(self, context):
            self.context = context
            self.calls = []

        async def init(self, config):
            self.calls.append(("init", dict(config)))

        async def update_config(self, config):
            self.calls.append(("update_config", dict(config)))

        async def stop(self):
            self.calls.append(("stop", None))
"""
