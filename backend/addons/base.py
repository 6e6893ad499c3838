"""Base class for addons.

An addon's backend module exports a class named ``Addon``. The host builds
one instance per load, passing an :class:`AddonContext`, and then drives it
through ``init(config)``, ``update_config(config)`` and ``stop()``. Hooks may
be plain or ``async`` functions.

Optional capabilities are discovered with ``hasattr``:

- ``frontend_script(config) -> str``: JavaScript injected into the display.
- ``asset(name) -> bytes``: binary data served to the display (e.g. fonts).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable


@dataclass
class AddonContext:
    """Everything an addon may touch on the host; there is no global state."""
    addon_id: str
    folder: Path
    fonts_dir: Path
    emit: Callable[[str, dict], None] = field(default=lambda event, data: None)


class SignageAddon:
    """Convenience base; any class with the same hooks works."""

    def __init__(self, context: AddonContext) -> None:
        self.context = context
        self.config: dict[str, Any] = {}

    async def init(self, config: dict[str, Any]) -> None:
        self.config = dict(config)

    async def update_config(self, config: dict[str, Any]) -> None:
        self.config = dict(config)

    async def stop(self) -> None:
        pass
