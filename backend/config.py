"""Application-wide configuration constants."""

import os
import platform
from pathlib import Path

# --- Identity ---
APP_NAME = "signage-coordinator"
APP_VERSION = "1.0.0"
DEFAULT_DISPLAY_NAME = platform.node() or "signage"  # user can override in config.json

# --- Storage ---
# Everything lives next to the running app unless SIGNAGE_HOME points elsewhere
APP_DIR = Path(os.environ.get("SIGNAGE_HOME", Path.cwd()))
CONFIG_PATH = APP_DIR / "config.json"
MEDIA_DIR = APP_DIR / "Media"
ADDONS_DIR = APP_DIR / "Addons"
FONTS_DIR = APP_DIR / "Fonts"
UPDATES_DIR = APP_DIR / "updates"

MEDIA_EXTENSIONS = {".svg", ".png", ".jpg", ".jpeg", ".mp4"}
VIDEO_EXTENSIONS = {".mp4"}
FONT_EXTENSIONS = {".ttf", ".otf", ".woff", ".woff2"}
CHUNK_SIZE = 131072  # 128 KB

# --- Networking ---
API_HOST = "0.0.0.0"
API_PORT = 3000
DISCOVERY_PORT = 3002  # UDP
ANNOUNCE_INTERVAL = 5  # seconds
SWEEP_INTERVAL = 10  # seconds
PEER_TIMEOUT = 30  # seconds without an announcement before a discovered peer is dropped
STALENESS_MARGIN = 5  # PEER_TIMEOUT must be at least this many announce intervals

PEER_CHECK_INTERVAL = 10  # seconds
PEER_CHECK_TIMEOUT = 2  # seconds

# --- Fan-out ---
FANOUT_CONFIG_TIMEOUT = 10  # seconds
FANOUT_MEDIA_TIMEOUT = 30
FANOUT_UPDATE_TIMEOUT = 60
PASSWORD_HEADER = "X-Signage-Password"

# --- Addons ---
ADDON_HOOK_TIMEOUT = 10  # seconds
CREDENTIAL_FIELDS = ("password", "newPassword")
