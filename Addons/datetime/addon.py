"""Date/time overlay for the display."""

import json
import logging
from pathlib import Path

from addons.base import SignageAddon
from config import FONT_EXTENSIONS

logger = logging.getLogger(__name__)

_SCRIPT = """
(function () {
  const cfg = %(config)s;
  const assetUrl = %(asset_url)s;
  (window.__addonDatetimeTimers || []).forEach(clearInterval);
  const timers = window.__addonDatetimeTimers = [];
  const old = document.getElementById('addon-datetime');
  if (old) old.remove();
  if (cfg.font && cfg.font !== 'default') {
    const face = new FontFace('DateTimeFont', 'url(' + assetUrl + encodeURIComponent(cfg.font) + ')');
    face.load().then(f => document.fonts.add(f)).catch(() => {});
  }
  const el = document.createElement('div');
  el.id = 'addon-datetime';
  Object.assign(el.style, {
    position: 'fixed', right: '20px', bottom: '20px', zIndex: 1000,
    fontFamily: cfg.font && cfg.font !== 'default' ? 'DateTimeFont' : 'Arial',
    fontSize: cfg.fontSize + 'px', fontWeight: cfg.bold ? 'bold' : 'normal',
    color: cfg.color, webkitTextStroke: cfg.borderWidth + 'px ' + cfg.borderColor,
    whiteSpace: 'pre', pointerEvents: 'none'
  });
  document.body.appendChild(el);
  const pad = n => String(n).padStart(2, '0');
  let x = 0, y = 0, dx = 1, dy = 1, corner = 0;
  function render() {
    const d = new Date();
    const date = [pad(d.getDate()), pad(d.getMonth() + 1), d.getFullYear()].join(cfg.dateSeparator);
    const time = [pad(d.getHours()), pad(d.getMinutes()), pad(d.getSeconds())].join(cfg.timeSeparator);
    el.textContent = cfg.layout === 'below' ? date + '\\n' + time
      : cfg.layout === 'above' ? time + '\\n' + date : date + ' ' + time;
  }
  function move() {
    const w = window.innerWidth - el.offsetWidth, h = window.innerHeight - el.offsetHeight;
    const step = cfg.speed / 25;
    if (cfg.style === 'sliding') {
      x = (x + step) %% Math.max(w, 1);
      Object.assign(el.style, {left: x + 'px', right: 'auto'});
    } else if (cfg.style === 'bouncing') {
      x += dx * step; y += dy * step;
      if (x <= 0 || x >= w) dx = -dx;
      if (y <= 0 || y >= h) dy = -dy;
      Object.assign(el.style, {left: x + 'px', top: y + 'px', right: 'auto', bottom: 'auto'});
    }
  }
  render();
  timers.push(setInterval(render, 1000));
  if (cfg.style === 'sliding' || cfg.style === 'bouncing') timers.push(setInterval(move, 40));
  if (cfg.style === 'teleporting') {
    const spots = [['20px', 'auto', 'auto', '20px'], ['20px', '20px', 'auto', 'auto'],
                   ['auto', '20px', '20px', 'auto'], ['auto', 'auto', '20px', '20px']];
    timers.push(setInterval(() => {
      corner = (corner + 1) %% spots.length;
      const [top, right, bottom, left] = spots[corner];
      Object.assign(el.style, {top, right, bottom, left});
    }, Math.max(1000, 200000 / cfg.speed)));
  }
})();
"""


class Addon(SignageAddon):
    async def init(self, config):
        await super().init(config)
        self.context.fonts_dir.mkdir(parents=True, exist_ok=True)
        logger.info(f"Date/time display ready (style={self.config.get('style')})")

    def frontend_script(self, config) -> str:
        return _SCRIPT % {
            "config": json.dumps(config),
            "asset_url": json.dumps(f"/api/addons/{self.context.addon_id}/assets/"),
        }

    def asset(self, name: str) -> bytes | None:
        """Font files from the shared fonts directory."""
        path = self.context.fonts_dir / Path(name).name
        if path.suffix.lower() not in FONT_EXTENSIONS or not path.is_file():
            return None
        return path.read_bytes()
