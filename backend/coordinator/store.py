"""JSON-backed device configuration (display settings, manual peers, addon configs)."""

import json
import logging
from pathlib import Path
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError
from pydantic.alias_generators import to_camel

from config import API_PORT, DEFAULT_DISPLAY_NAME, DISCOVERY_PORT
from errors import ConfigStoreError, ValidationError

logger = logging.getLogger(__name__)


class ManualPeer(BaseModel):
    """Only user-entered peers survive a restart."""
    ip: str
    name: str
    port: int


class DeviceConfig(BaseModel):
    """The persisted config blob; keys are camelCase on disk."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    display_name: str = DEFAULT_DISPLAY_NAME
    image_duration: int = Field(default=5000, gt=0)  # milliseconds
    video_position: Literal["after", "between"] = "after"
    password: str = ""
    static_ip: str = ""
    localhost_only: bool = False
    port: int = API_PORT
    discovery_port: int = DISCOVERY_PORT
    rotation: Literal[0, 90, -90, 180, 270] = 0
    peers: list[ManualPeer] = Field(default_factory=list)
    addons: dict[str, dict] = Field(default_factory=dict)


class ConfigStore:
    """Loads and saves DeviceConfig as pretty-printed JSON."""

    def __init__(self, path: Path):
        self._path = Path(path)
        self._config = DeviceConfig()

    @property
    def config(self) -> DeviceConfig:
        return self._config

    @property
    def path(self) -> Path:
        return self._path

    def load(self) -> DeviceConfig:
        """Read the file over the defaults; create it if missing."""
        if not self._path.exists():
            logger.info(f"No config at {self._path}, writing defaults")
            self._config = DeviceConfig()
            self.save()
            return self._config

        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
            self._config = DeviceConfig.model_validate(data)
            logger.info(f"Loaded config from {self._path}")
        except (OSError, json.JSONDecodeError, PydanticValidationError) as e:
            logger.error(f"Failed to load config, using defaults: {e}")
            self._config = DeviceConfig()
        return self._config

    def save(self) -> None:
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            data = self._config.model_dump(by_alias=True)
            self._path.write_text(json.dumps(data, indent=2), encoding="utf-8")
        except OSError as e:
            logger.error(f"Failed to save config: {e}")
            raise ConfigStoreError(f"Could not write {self._path}: {e}") from e

    def update(self, updates: dict) -> DeviceConfig:
        """Merge top-level updates (camelCase or snake_case keys) and persist."""
        merged = self._config.model_dump(by_alias=True)
        fields = DeviceConfig.model_fields
        for key, value in updates.items():
            if key in fields:
                key = fields[key].alias or key
            merged[key] = value
        try:
            self._config = DeviceConfig.model_validate(merged)
        except PydanticValidationError as e:
            raise ValidationError(f"Invalid config: {e}") from e
        self.save()
        return self._config

    def set_password(self, password: str) -> None:
        self._config.password = password
        self.save()

    def addon_config(self, addon_id: str) -> dict:
        return dict(self._config.addons.get(addon_id, {}))

    def set_addon_config(self, addon_id: str, config: dict) -> None:
        self._config.addons[addon_id] = dict(config)
        self.save()

    def set_manual_peers(self, peers: list[ManualPeer]) -> None:
        self._config.peers = list(peers)
        self.save()
