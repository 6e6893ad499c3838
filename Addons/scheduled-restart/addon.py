"""Restarts the PC on a fixed interval, warning on screen beforehand."""

import asyncio
import json
import logging
import math
import platform
import time

from addons.base import SignageAddon

logger = logging.getLogger(__name__)

WARNING_UPDATE_INTERVAL = 60  # seconds

_SCRIPT = """
(function () {
  const cfg = %(config)s;
  const addonId = %(addon_id)s;
  let box = null;
  function show(minutes) {
    if (!box) {
      box = document.createElement('div');
      Object.assign(box.style, {
        position: 'fixed', left: '50%%', top: '50%%', transform: 'translate(-50%%, -50%%)',
        padding: '30px 50px', borderRadius: '12px', zIndex: 2000, textAlign: 'center',
        background: cfg.backgroundColor, color: cfg.textColor, fontSize: cfg.fontSize + 'px',
        fontFamily: 'Arial'
      });
      document.body.appendChild(box);
    }
    box.textContent = minutes > 0
      ? 'This PC will restart in ' + minutes + ' minute' + (minutes === 1 ? '' : 's')
      : 'Restarting now...';
  }
  function hide() { if (box) { box.remove(); box = null; } }
  const ws = new WebSocket((location.protocol === 'https:' ? 'wss://' : 'ws://') + location.host + '/ws');
  ws.onmessage = (msg) => {
    const {event, data} = JSON.parse(msg.data);
    if (event !== 'addon-event' || data.addon !== addonId) return;
    if (data.type === 'restart-warning' || data.type === 'update-warning') show(data.data.warningTime);
    else if (data.type === 'restart-now') show(0);
    else if (data.type === 'remove-warning') hide();
  };
})();
"""


def restart_command() -> list[str]:
    system = platform.system()
    if system == "Windows":
        return ["shutdown", "/r", "/t", "0"]
    if system == "Darwin":
        return ["sudo", "shutdown", "-r", "now"]
    return ["shutdown", "-r", "now"]


class Addon(SignageAddon):
    def __init__(self, context):
        super().__init__(context)
        self._task: asyncio.Task | None = None
        self._started_at: float | None = None
        self._warning_active = False

    def interval_seconds(self) -> float:
        if self.config.get("testMode"):
            return float(self.config.get("testInterval", 5)) * 60
        return float(self.config.get("restartInterval", 24)) * 3600

    def warning_seconds(self) -> float:
        return float(self.config.get("warningTime", 5)) * 60

    def time_remaining(self) -> float | None:
        if self._started_at is None:
            return None
        return max(0.0, self.interval_seconds() - (time.monotonic() - self._started_at))

    def time_remaining_text(self) -> str:
        remaining = self.time_remaining()
        if remaining is None:
            return "Not scheduled"
        if remaining <= 0:
            return "Restarting soon..."
        total = int(remaining)
        hours, rest = divmod(total, 3600)
        minutes, seconds = divmod(rest, 60)
        if hours:
            return f"{hours}h {minutes}m {seconds}s"
        if minutes:
            return f"{minutes}m {seconds}s"
        return f"{seconds}s"

    async def init(self, config):
        await super().init(config)
        await self._cancel()
        self._started_at = time.monotonic()
        self._task = asyncio.create_task(self._run())
        unit = "minutes" if self.config.get("testMode") else "hours"
        amount = self.config.get("testInterval") if self.config.get("testMode") else self.config.get("restartInterval")
        logger.info(f"Restart scheduled in {amount} {unit}")

    async def stop(self):
        await self._cancel()
        if self._warning_active:
            self.context.emit("remove-warning", {})
        self._warning_active = False
        self._started_at = None

    async def _cancel(self) -> None:
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

    async def _run(self) -> None:
        await asyncio.sleep(max(0.0, self.interval_seconds() - self.warning_seconds()))

        self._warning_active = True
        self.context.emit("restart-warning", {"warningTime": math.ceil(self.time_remaining() / 60)})
        while self.time_remaining() > WARNING_UPDATE_INTERVAL:
            await asyncio.sleep(WARNING_UPDATE_INTERVAL)
            self.context.emit("update-warning", {"warningTime": math.ceil(self.time_remaining() / 60)})

        await asyncio.sleep(self.time_remaining())
        self.context.emit("restart-now", {})
        await self.restart()

    async def restart(self) -> None:
        cmd = restart_command()
        logger.warning(f"Restarting PC: {' '.join(cmd)}")
        try:
            proc = await asyncio.create_subprocess_exec(*cmd)
            await proc.wait()
        except OSError as e:
            logger.error(f"Failed to restart PC: {e}")

    def frontend_script(self, config) -> str:
        return _SCRIPT % {"config": json.dumps(config), "addon_id": json.dumps(self.context.addon_id)}
