"""Pydantic models for multi-device fan-out."""

from enum import Enum

from pydantic import BaseModel, Field

from config import FANOUT_CONFIG_TIMEOUT, FANOUT_MEDIA_TIMEOUT, FANOUT_UPDATE_TIMEOUT

# Synthetic target id for this device; dispatched in-process
LOCAL_TARGET_ID = "local"


class FanoutOperation(str, Enum):
    """Operations that can be pushed to a set of devices."""
    APPLY_CONFIG = "apply-config"
    UPLOAD_MEDIA = "upload-media"
    PUSH_UPDATE = "push-update"

    @property
    def path(self) -> str:
        return _PATHS[self]

    @property
    def default_timeout(self) -> float:
        return _TIMEOUTS[self]


_PATHS = {
    FanoutOperation.APPLY_CONFIG: "/api/config",
    FanoutOperation.UPLOAD_MEDIA: "/api/media/receive",
    FanoutOperation.PUSH_UPDATE: "/api/update/receive",
}

_TIMEOUTS = {
    FanoutOperation.APPLY_CONFIG: FANOUT_CONFIG_TIMEOUT,
    FanoutOperation.UPLOAD_MEDIA: FANOUT_MEDIA_TIMEOUT,
    FanoutOperation.PUSH_UPDATE: FANOUT_UPDATE_TIMEOUT,
}


class ConfigPayload(BaseModel):
    updates: dict = Field(default_factory=dict)


class MediaPayload(BaseModel):
    """Local files to copy to every target."""
    file_paths: list[str]


class UpdatePayload(BaseModel):
    file_path: str
    restart_pc: bool = False


class FanoutTarget(BaseModel):
    """A target resolved at dispatch time; base_url is None for this device."""
    target_id: str
    base_url: str | None = None


class TargetResult(BaseModel):
    target_id: str
    success: bool
    error: str | None = None


class FanoutResult(BaseModel):
    """Aggregate of a batch; partial failure is a normal outcome."""
    success_count: int = 0
    fail_count: int = 0
    results: list[TargetResult] = Field(default_factory=list)

    @classmethod
    def from_results(cls, results: list[TargetResult]) -> "FanoutResult":
        ok = sum(1 for r in results if r.success)
        return cls(success_count=ok, fail_count=len(results) - ok, results=results)
