"""Local media folder and staged software updates."""

import asyncio
import json
import logging
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import BinaryIO

from pydantic import BaseModel

from config import CHUNK_SIZE, MEDIA_DIR, MEDIA_EXTENSIONS, UPDATES_DIR, VIDEO_EXTENSIONS
from errors import NotFound, ValidationError

logger = logging.getLogger(__name__)

PENDING_UPDATE = "pending-update"
UPDATE_INFO = "update-info.json"


class MediaItem(BaseModel):
    name: str
    path: str
    type: str  # image | video
    size: int
    modified: float


def safe_name(filename: str) -> str:
    """Strip any directory part a client may have sent."""
    name = os.path.basename((filename or "").replace("\\", "/"))
    if name in ("", ".", ".."):
        raise ValidationError(f"Invalid file name: {filename!r}")
    return name


async def copy_stream(stream: BinaryIO, dest: Path) -> int:
    """Chunked copy of a blocking file object; returns bytes written."""
    written = 0
    with open(dest, "wb") as f:
        while True:
            chunk = await asyncio.to_thread(stream.read, CHUNK_SIZE)
            if not chunk:
                break
            await asyncio.to_thread(f.write, chunk)
            written += len(chunk)
    return written


class MediaLibrary:
    def __init__(self, media_dir: Path = MEDIA_DIR, updates_dir: Path = UPDATES_DIR) -> None:
        self.media_dir = Path(media_dir)
        self.updates_dir = Path(updates_dir)

    def list_media(self) -> list[MediaItem]:
        if not self.media_dir.is_dir():
            return []
        items = []
        for f in sorted(self.media_dir.iterdir(), key=lambda p: p.name):
            ext = f.suffix.lower()
            if not f.is_file() or ext not in MEDIA_EXTENSIONS:
                continue
            stat = f.stat()
            items.append(MediaItem(
                name=f.name,
                path=str(f),
                type="video" if ext in VIDEO_EXTENSIONS else "image",
                size=stat.st_size,
                modified=stat.st_mtime,
            ))
        return items

    async def save(self, filename: str, stream: BinaryIO) -> Path:
        name = safe_name(filename)
        self.media_dir.mkdir(parents=True, exist_ok=True)
        dest = self.media_dir / name
        size = await copy_stream(stream, dest)
        logger.info(f"Saved media {name} ({size} bytes)")
        return dest

    async def import_file(self, path: str | Path) -> Path:
        """Copy a file already on disk into the library."""
        with open(path, "rb") as f:
            return await self.save(os.path.basename(str(path)), f)

    def delete(self, name: str) -> None:
        target = self.media_dir / safe_name(name)
        if not target.is_file():
            raise NotFound(f"Media {name} not found")
        target.unlink()
        logger.info(f"Deleted media {name}")

    async def stage_update(self, filename: str, stream: BinaryIO, restart_pc: bool = False) -> dict:
        """Write the package to updates/pending-update and describe it in update-info.json."""
        original = safe_name(filename)
        self.updates_dir.mkdir(parents=True, exist_ok=True)
        dest = self.updates_dir / PENDING_UPDATE
        size = await copy_stream(stream, dest)
        info = {
            "version": datetime.now(timezone.utc).isoformat(),
            "path": str(dest),
            "originalName": original,
            "size": size,
            "applied": False,
            "restartPC": restart_pc,
        }
        (self.updates_dir / UPDATE_INFO).write_text(json.dumps(info, indent=2), encoding="utf-8")
        logger.info(f"Staged update {original} ({size} bytes)")
        return info
