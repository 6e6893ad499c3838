"""
Fan-out dispatcher: issues one operation to many devices at once.

Every target runs as its own task with its own timeout, so a dead or slow
peer only costs its own slot. Offline peers fail fast without a request and
the local device is served in-process.
"""

import asyncio
import logging
import os
from pathlib import Path

import httpx
from pydantic import BaseModel

from config import PASSWORD_HEADER
from discovery.registry import PeerRegistry
from errors import Unreachable, ValidationError
from fanout.models import (
    LOCAL_TARGET_ID,
    ConfigPayload,
    FanoutOperation,
    FanoutResult,
    FanoutTarget,
    MediaPayload,
    TargetResult,
    UpdatePayload,
)

logger = logging.getLogger(__name__)


def coerce_payload(operation: FanoutOperation, payload) -> BaseModel:
    """Accept either the payload model or its shorthand (dict, path list, path)."""
    if operation == FanoutOperation.APPLY_CONFIG:
        if isinstance(payload, ConfigPayload):
            return payload
        if isinstance(payload, dict):
            return ConfigPayload(updates=payload)
    elif operation == FanoutOperation.UPLOAD_MEDIA:
        if isinstance(payload, MediaPayload):
            return payload
        if isinstance(payload, (list, tuple)):
            return MediaPayload(file_paths=[str(p) for p in payload])
    elif operation == FanoutOperation.PUSH_UPDATE:
        if isinstance(payload, UpdatePayload):
            return payload
        if isinstance(payload, (str, Path)):
            return UpdatePayload(file_path=str(payload))
    raise ValidationError(f"Invalid payload for {operation.value}: {type(payload).__name__}")


def _check_files(payload: BaseModel) -> None:
    paths = []
    if isinstance(payload, MediaPayload):
        paths = payload.file_paths
        if not paths:
            raise ValidationError("No media files given")
    elif isinstance(payload, UpdatePayload):
        paths = [payload.file_path]
    for path in paths:
        if not os.path.isfile(path):
            raise ValidationError(f"File not found: {path}")


class FanoutDispatcher:
    """Sends apply-config / upload-media / push-update to a set of devices."""

    def __init__(
        self,
        registry: PeerRegistry,
        client: httpx.AsyncClient | None = None,
        password_provider=None,  # fn() -> str
    ) -> None:
        self._registry = registry
        self._client = client
        self._password_provider = password_provider
        self._local_handlers: dict[FanoutOperation, object] = {}

    def register_local(self, operation: FanoutOperation, handler) -> None:
        """Register handler: async fn(payload) used when the target is this device."""
        self._local_handlers[operation] = handler

    def resolve(self, target_id: str) -> FanoutTarget | None:
        """Map a target id to an address; None if the peer is unknown."""
        if target_id == LOCAL_TARGET_ID:
            return FanoutTarget(target_id=target_id)
        peer = self._registry.get(target_id)
        if peer is None:
            return None
        return FanoutTarget(target_id=target_id, base_url=peer.base_url)

    async def dispatch(
        self,
        target_ids,
        operation: FanoutOperation,
        payload,
        timeout: float | None = None,
    ) -> FanoutResult:
        """Run the operation against every target concurrently and aggregate."""
        targets = list(dict.fromkeys(target_ids or []))
        if not targets:
            raise ValidationError("Fan-out needs at least one target")
        operation = FanoutOperation(operation)
        payload = coerce_payload(operation, payload)
        _check_files(payload)
        if timeout is None:
            timeout = operation.default_timeout

        logger.info(f"Dispatching {operation.value} to {len(targets)} target(s)")
        if self._client is not None:
            results = await self._run_all(self._client, targets, operation, payload, timeout)
        else:
            async with httpx.AsyncClient(timeout=timeout) as client:
                results = await self._run_all(client, targets, operation, payload, timeout)

        result = FanoutResult.from_results(results)
        logger.info(
            f"{operation.value}: {result.success_count} succeeded, {result.fail_count} failed"
        )
        return result

    async def _run_all(self, client, targets, operation, payload, timeout) -> list[TargetResult]:
        return await asyncio.gather(
            *(self._dispatch_one(client, t, operation, payload, timeout) for t in targets)
        )

    async def _dispatch_one(
        self,
        client: httpx.AsyncClient,
        target_id: str,
        operation: FanoutOperation,
        payload: BaseModel,
        timeout: float,
    ) -> TargetResult:
        target = self.resolve(target_id)
        if target is None:
            return TargetResult(target_id=target_id, success=False, error="peer not found")

        if target.base_url is None:
            handler = self._local_handlers.get(operation)
            if handler is None:
                return TargetResult(
                    target_id=target_id, success=False, error=f"no local handler for {operation.value}"
                )
            call = handler(payload)
        else:
            peer = self._registry.get(target_id)
            if peer is None or not peer.online:
                logger.info(f"Skipping offline peer: {target_id}")
                return TargetResult(target_id=target_id, success=False, error="peer offline")
            call = self._send_checked(client, target, operation, payload, timeout)

        try:
            await asyncio.wait_for(call, timeout)
        except asyncio.TimeoutError:
            error = f"timed out after {timeout}s"
        except httpx.HTTPStatusError as e:
            error = f"HTTP {e.response.status_code}"
        except Exception as e:
            error = str(e) or type(e).__name__
        else:
            return TargetResult(target_id=target_id, success=True)

        logger.warning(f"{operation.value} to {target_id} failed: {error}")
        return TargetResult(target_id=target_id, success=False, error=error)

    def _headers(self) -> dict[str, str]:
        password = self._password_provider() if self._password_provider else ""
        return {PASSWORD_HEADER: password} if password else {}

    async def _send_checked(self, client, target, operation, payload, timeout) -> None:
        try:
            await self._send(client, target, operation, payload, timeout)
        except httpx.TransportError as e:
            raise Unreachable(f"{target.target_id} unreachable: {e or type(e).__name__}") from e

    async def _send(
        self,
        client: httpx.AsyncClient,
        target: FanoutTarget,
        operation: FanoutOperation,
        payload: BaseModel,
        timeout: float,
    ) -> None:
        url = f"{target.base_url}{operation.path}"
        headers = self._headers()

        if isinstance(payload, ConfigPayload):
            response = await client.post(url, json=payload.updates, headers=headers, timeout=timeout)
            response.raise_for_status()

        elif isinstance(payload, MediaPayload):
            for path in payload.file_paths:
                # Each peer streams from its own handle; nothing is buffered per batch
                with open(path, "rb") as f:
                    response = await client.post(
                        url,
                        files={"file": (os.path.basename(path), f)},
                        headers=headers,
                        timeout=timeout,
                    )
                response.raise_for_status()
                logger.debug(f"Sent {os.path.basename(path)} to {target.target_id}")

        elif isinstance(payload, UpdatePayload):
            with open(payload.file_path, "rb") as f:
                response = await client.post(
                    url,
                    files={"file": (os.path.basename(payload.file_path), f)},
                    data={"restartPC": "true" if payload.restart_pc else "false"},
                    headers=headers,
                    timeout=timeout,
                )
            response.raise_for_status()
