"""REST API routes for the signage coordinator."""

import json
import logging
import mimetypes
import secrets
import tempfile
from pathlib import Path

from fastapi import APIRouter, Body, Depends, FastAPI, File, Form, Header, HTTPException, Request, UploadFile
from fastapi.responses import JSONResponse, Response
from pydantic import BaseModel

from config import PASSWORD_HEADER
from coordinator.media import copy_stream, safe_name
from errors import NotFound, SignageError, ValidationError
from fanout.models import FanoutOperation, MediaPayload, UpdatePayload

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api")

# Injected by main.py at startup
_coordinator = None


def init_routes(coordinator) -> None:
    """Inject the coordinator facade into the routes module."""
    global _coordinator
    _coordinator = coordinator


def install_error_handlers(app: FastAPI) -> None:
    """Map coordinator errors onto HTTP status codes."""

    async def handle(request: Request, exc: SignageError) -> JSONResponse:
        if isinstance(exc, NotFound):
            status = 404
        elif isinstance(exc, ValidationError):
            status = 400
        else:
            logger.error(f"{request.method} {request.url.path} failed: {exc}")
            status = 500
        return JSONResponse(status_code=status, content={"error": str(exc)})

    app.add_exception_handler(SignageError, handle)


async def require_password(
    password: str | None = Header(default=None, alias=PASSWORD_HEADER),
) -> None:
    """Mutating routes need the device password once one is set."""
    expected = _coordinator.get_config().password
    if expected and not secrets.compare_digest(password or "", expected):
        raise HTTPException(status_code=401, detail="Invalid password")


def parse_targets(raw) -> list[str]:
    """Explicit ids (JSON list or comma separated) or "all" for local + every peer."""
    if isinstance(raw, str):
        raw = raw.strip()
        if raw.startswith("["):
            try:
                raw = json.loads(raw)
            except json.JSONDecodeError as e:
                raise ValidationError(f"Invalid targets: {e}") from e
        else:
            raw = [t.strip() for t in raw.split(",") if t.strip()]
    if not isinstance(raw, list):
        raise ValidationError("targets must be a list or \"all\"")
    if "all" in raw:
        return _coordinator.all_target_ids()
    return [str(t) for t in raw]


def _is_true(value: str | bool | None) -> bool:
    if isinstance(value, bool):
        return value
    return str(value or "").lower() in ("1", "true", "yes", "on")


# --- Device config ---

@router.get("/config")
async def get_config():
    return _coordinator.public_config()


@router.post("/config", dependencies=[Depends(require_password)])
async def apply_config(updates: dict = Body(...)):
    return _coordinator.apply_config(updates)


class PasswordBody(BaseModel):
    password: str = ""


@router.post("/password", dependencies=[Depends(require_password)])
async def set_password(body: PasswordBody):
    _coordinator.set_password(body.password)
    return {"status": "updated"}


@router.get("/status")
async def status():
    return _coordinator.status()


# --- Media ---

@router.get("/media")
async def list_media():
    return {"media": [m.model_dump() for m in _coordinator.media_snapshot()]}


@router.post("/media/upload", dependencies=[Depends(require_password)])
async def upload_media(
    files: list[UploadFile] = File(...),
    targets: str = Form("local"),
):
    """Spool the uploads once, then fan them out to every target."""
    target_ids = parse_targets(targets)
    with tempfile.TemporaryDirectory() as tmp:
        paths = []
        for upload in files:
            dest = Path(tmp) / safe_name(upload.filename)
            await copy_stream(upload.file, dest)
            paths.append(str(dest))
        result = await _coordinator.fanout(
            target_ids, FanoutOperation.UPLOAD_MEDIA, MediaPayload(file_paths=paths)
        )
    return result.model_dump()


@router.post("/media/receive", dependencies=[Depends(require_password)])
async def receive_media(file: UploadFile = File(...)):
    """Inbound copy from another device's fan-out."""
    item = await _coordinator.receive_media(file.filename, file.file)
    return {"status": "received", "media": item.model_dump() if item else None}


@router.delete("/media/{name}", dependencies=[Depends(require_password)])
async def delete_media(name: str):
    _coordinator.delete_media(name)
    return {"status": "deleted"}


# --- Updates ---

@router.post("/update", dependencies=[Depends(require_password)])
async def push_update(
    file: UploadFile = File(...),
    targets: str = Form("local"),
    restartPC: str = Form("false"),
):
    target_ids = parse_targets(targets)
    with tempfile.TemporaryDirectory() as tmp:
        dest = Path(tmp) / safe_name(file.filename)
        await copy_stream(file.file, dest)
        payload = UpdatePayload(file_path=str(dest), restart_pc=_is_true(restartPC))
        result = await _coordinator.fanout(target_ids, FanoutOperation.PUSH_UPDATE, payload)
    return result.model_dump()


@router.post("/update/receive", dependencies=[Depends(require_password)])
async def receive_update(
    file: UploadFile = File(...),
    restartPC: str = Form("false"),
):
    info = await _coordinator.stage_update(file.filename, file.file, _is_true(restartPC))
    return {"status": "staged", "update": info}


# --- Peers ---

class AddPeerBody(BaseModel):
    ip: str
    name: str | None = None
    port: int | None = None


@router.get("/peers")
async def list_peers():
    return {"peers": [p.model_dump() for p in _coordinator.list_peers()]}


@router.post("/peers/add", dependencies=[Depends(require_password)])
async def add_peer(body: AddPeerBody):
    peer = await _coordinator.add_manual_peer(body.ip, body.name, body.port)
    return {"status": "added", "peer": peer.model_dump()}


@router.delete("/peers/{peer_id}", dependencies=[Depends(require_password)])
async def remove_peer(peer_id: str):
    _coordinator.remove_peer(peer_id)
    return {"status": "removed"}


@router.get("/peers/check/{peer_id}")
async def check_peer(peer_id: str):
    return await _coordinator.check_peer(peer_id)


# --- Fan-out ---

class FanoutConfigBody(BaseModel):
    targets: list[str] | str
    config: dict


@router.post("/fanout/config", dependencies=[Depends(require_password)])
async def fanout_config(body: FanoutConfigBody):
    result = await _coordinator.fanout(
        parse_targets(body.targets), FanoutOperation.APPLY_CONFIG, body.config
    )
    return result.model_dump()


# --- Addons ---

@router.get("/addons")
async def list_addons():
    return {"addons": {k: v.model_dump() for k, v in _coordinator.list_addons().items()}}


@router.post("/addons/reload", dependencies=[Depends(require_password)])
async def reload_addons():
    addons = await _coordinator.reload_addons()
    return {"status": "reloaded", "addons": {k: v.model_dump() for k, v in addons.items()}}


@router.post("/addons/{addon_id}/config", dependencies=[Depends(require_password)])
async def update_addon_config(addon_id: str, partial: dict = Body(...)):
    summary = await _coordinator.update_addon_config(addon_id, partial)
    return {"status": "updated", "addon": summary.model_dump()}


@router.get("/addons/{addon_id}/frontend.js")
async def addon_frontend(addon_id: str):
    script = await _coordinator.addon_script(addon_id)
    return Response(content=script, media_type="application/javascript")


@router.get("/addons/{addon_id}/assets/{name}")
async def addon_asset(addon_id: str, name: str):
    data = await _coordinator.addon_asset(addon_id, name)
    media_type = mimetypes.guess_type(name)[0] or "application/octet-stream"
    return Response(content=data, media_type=media_type)
