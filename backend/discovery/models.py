"""Pydantic models for peer discovery."""

from typing import Literal

from pydantic import BaseModel, Field


def peer_id_for(ip: str, port: int) -> str:
    """Canonical peer key; never changes once a peer exists."""
    return f"{ip}:{port}"


class Peer(BaseModel):
    """Another signage instance, either auto-discovered or entered by hand."""
    id: str
    name: str
    ip: str
    port: int
    manual: bool = False
    online: bool = False
    last_seen: float | None = None  # Unix timestamp, discovered peers only
    last_checked: float | None = None

    @property
    def base_url(self) -> str:
        return f"http://{self.ip}:{self.port}"


class Announcement(BaseModel):
    """The JSON payload broadcast over UDP."""
    type: Literal["announce"] = "announce"
    id: str
    name: str
    port: int = Field(gt=0, lt=65536)


class LocalDevice(BaseModel):
    """What this instance announces about itself."""
    display_name: str
    api_port: int
    static_ip: str = ""
