"""Application-wide configuration constants."""

import os
import platform
from pathlib import Path

# --- Identity ---
DEVICE_NAME = os.environ.get("LANSHARE_DEVICE_NAME", platform.node() or "Unknown device")

# --- Discovery ---
# The standard mDNS/DNS-SD type for this application
SERVICE_TYPE = os.environ.get("LANSHARE_SERVICE_TYPE", "_file-transfer-app._tcp.local.")
DISCOVERY_WINDOW = float(os.environ.get("LANSHARE_DISCOVERY_WINDOW", "2.0"))  # seconds
RESOLVE_TIMEOUT_MS = int(os.environ.get("LANSHARE_RESOLVE_TIMEOUT_MS", "1500"))

# --- Networking ---
RECEIVER_HOST = os.environ.get("LANSHARE_RECEIVER_HOST", "0.0.0.0")
RECEIVER_PORT = int(os.environ.get("LANSHARE_RECEIVER_PORT", "4000"))
SIGNALING_HOST = os.environ.get("LANSHARE_SIGNALING_HOST", "0.0.0.0")
SIGNALING_PORT = int(os.environ.get("LANSHARE_SIGNALING_PORT", "4001"))
API_HOST = os.environ.get("LANSHARE_API_HOST", "127.0.0.1")
API_PORT = int(os.environ.get("LANSHARE_API_PORT", "8765"))
STATUS_TIMEOUT = float(os.environ.get("LANSHARE_STATUS_TIMEOUT", "3.0"))  # seconds
# Queued messages a websocket client may fall behind before it is dropped
SIGNALING_MAX_PENDING = int(os.environ.get("LANSHARE_SIGNALING_MAX_PENDING", "256"))
UI_MAX_PENDING = int(os.environ.get("LANSHARE_UI_MAX_PENDING", "1000"))

# --- Transfer ---
CHUNK_SIZE = 256 * 1024  # 256 KB
# Only connecting is bounded; a running transfer has no deadline
TRANSFER_CONNECT_TIMEOUT = float(os.environ.get("LANSHARE_TRANSFER_CONNECT_TIMEOUT", "10.0"))

# --- Security ---
PBKDF2_ITERATIONS = 100_000
PASSWORD_HASH_LENGTH = 64
SALT_SIZE = 32

# --- Storage ---
CONFIG_DIR = Path(os.environ.get("LANSHARE_CONFIG_DIR", Path.home() / ".lanshare"))
SETTINGS_FILE = CONFIG_DIR / "settings.json"
DEFAULT_DOWNLOAD_DIR = str(
    Path(os.environ.get("LANSHARE_DOWNLOAD_DIR", Path.home() / "Downloads"))
)

LOG_LEVEL = os.environ.get("LANSHARE_LOG_LEVEL", "INFO").upper()
