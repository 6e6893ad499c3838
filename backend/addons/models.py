"""Addon manifest, setting specs and runtime records."""

import re
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from types import ModuleType
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, model_validator

_COLOR_RE = re.compile(r"^#(?:[0-9a-fA-F]{3}|[0-9a-fA-F]{6}|[0-9a-fA-F]{8})$")


class AddonInfo(BaseModel):
    name: str = Field(min_length=1)
    version: str = Field(min_length=1)
    author: str | None = None
    description: str | None = None
    category: str | None = None


class _SettingBase(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    id: str = Field(min_length=1)
    name: str = ""
    description: str | None = None

    def validate_value(self, value: Any) -> Any:
        raise NotImplementedError

    @model_validator(mode="after")
    def check_default(self):
        if getattr(self, "default", None) is not None:
            self.default = self.validate_value(self.default)
        return self


class BooleanSetting(_SettingBase):
    type: Literal["boolean"]
    default: bool = False

    def validate_value(self, value: Any) -> bool:
        if not isinstance(value, bool):
            raise ValueError(f"'{self.id}' must be true or false")
        return value


class TextSetting(_SettingBase):
    type: Literal["text"]
    default: str = ""
    placeholder: str | None = None

    def validate_value(self, value: Any) -> str:
        if not isinstance(value, str):
            raise ValueError(f"'{self.id}' must be text")
        return value


class ColorSetting(_SettingBase):
    type: Literal["color"]
    default: str = "#FFFFFF"

    def validate_value(self, value: Any) -> str:
        if not isinstance(value, str) or not _COLOR_RE.match(value):
            raise ValueError(f"'{self.id}' must be a hex color like #FFFFFF")
        return value


class RangeSetting(_SettingBase):
    type: Literal["range"]
    default: int | float | None = None
    min: int | float | None = None
    max: int | float | None = None
    step: int | float | None = None
    unit: str | None = None

    def validate_value(self, value: Any) -> float:
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise ValueError(f"'{self.id}' must be a number")
        if self.min is not None and value < self.min:
            raise ValueError(f"'{self.id}' must be >= {self.min:g}")
        if self.max is not None and value > self.max:
            raise ValueError(f"'{self.id}' must be <= {self.max:g}")
        return value


class SelectOption(BaseModel):
    value: Any
    label: str = ""


class SelectSetting(_SettingBase):
    type: Literal["select"]
    default: Any = None
    options: list[SelectOption] = Field(default_factory=list)
    # "fonts" fills options from the shared fonts directory at scan time
    options_from: str | None = Field(default=None, alias="optionsFrom")

    @model_validator(mode="before")
    @classmethod
    def normalize_options(cls, data):
        if isinstance(data, dict) and "options" in data:
            data = dict(data)
            data["options"] = [
                o if isinstance(o, dict) else {"value": o, "label": str(o)}
                for o in data["options"] or []
            ]
        return data

    def allowed_values(self) -> list:
        return [o.value for o in self.options]

    def validate_value(self, value: Any) -> Any:
        allowed = self.allowed_values()
        if allowed and value not in allowed:
            raise ValueError(f"'{self.id}' must be one of {allowed}")
        return value


SettingSpec = Annotated[
    Union[BooleanSetting, TextSetting, ColorSetting, RangeSetting, SelectSetting],
    Field(discriminator="type"),
]


class AddonManifest(BaseModel):
    """Static description of an addon, immutable until the next reload."""
    id: str
    info: AddonInfo
    settings: list[SettingSpec] = Field(default_factory=list)

    def defaults(self) -> dict[str, Any]:
        return {s.id: s.default for s in self.settings if s.default is not None}

    def setting(self, setting_id: str):
        return next((s for s in self.settings if s.id == setting_id), None)


class AddonState(str, Enum):
    UNLOADED = "unloaded"
    STOPPED = "stopped"
    RUNNING = "running"


@dataclass
class Addon:
    """A loaded addon: manifest, effective config and the live instance handle."""
    id: str
    folder: Path
    manifest: AddonManifest
    config: dict = field(default_factory=dict)
    enabled: bool = True
    module: ModuleType | None = None
    instance: Any = None
    state: AddonState = AddonState.STOPPED
    frontend_path: Path | None = None
    last_error: str | None = None

    @property
    def info(self) -> AddonInfo:
        return self.manifest.info

    def summary(self) -> "AddonSummary":
        return AddonSummary(
            id=self.id,
            info=self.info,
            enabled=self.enabled,
            config=dict(self.config),
            settings=[s.model_dump(by_alias=True, exclude_none=True) for s in self.manifest.settings],
            state=self.state,
            has_frontend=self.frontend_path is not None or hasattr(self.instance, "frontend_script"),
            has_backend=self.instance is not None,
            error=self.last_error,
        )


class AddonSummary(BaseModel):
    """Read-only projection for the admin API; never carries the instance."""
    id: str
    info: AddonInfo
    enabled: bool
    config: dict
    settings: list[dict]
    state: AddonState
    has_frontend: bool = False
    has_backend: bool = False
    error: str | None = None
