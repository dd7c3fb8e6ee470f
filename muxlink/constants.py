"""Application-wide constants: paths, metadata, remote service defaults."""

from __future__ import annotations

import os
import pathlib

APP_NAME = "MuxLink"
APP_VERSION = "1.0.0"
DATA_DIR = pathlib.Path(
    os.environ.get("MUXLINK_HOME", pathlib.Path.home() / ".muxlink")
)
SESSIONS_FILE = DATA_DIR / "sessions.json"
SETTINGS_FILE = DATA_DIR / "settings.json"

# ---------------------------------------------------------------------------
# Remote multiplexing service
# ---------------------------------------------------------------------------
SERVICE_NAME = "zellij"
SERVICE_PORT = 8082
SERVICE_TAG = "web"                 # pgrep/pkill pattern is "<name> web"
STARTUP_SETTLE_S = 2.0
STARTUP_POLLS = 5
STARTUP_POLL_INTERVAL_S = 0.5
STOP_SETTLE_S = 0.5
LOG_TAIL_LINES = 20
MIN_VERSION = (0, 43)               # web client first shipped in 0.43.0
MIN_RAW_TOKEN_LEN = 20

# ---------------------------------------------------------------------------
# Timeouts (seconds unless noted)
# ---------------------------------------------------------------------------
DIAL_TIMEOUT_S = 30
COMMAND_TIMEOUT_S = 30
QUICK_COMMAND_TIMEOUT_S = 5
PROBE_TIMEOUT_MS = 2000

# Android-emulator style host-to-guest loopback
LOOPBACK_HOSTS = ("localhost", "127.0.0.1")
LOOPBACK_ALIAS = "10.0.2.2"

# ---------------------------------------------------------------------------
# Companion daemon control channel
# ---------------------------------------------------------------------------
DAEMON_PORT = 8083
DAEMON_PSK_HEADER = "X-Zelland-PSK"
RECONNECT_DELAY_S = 5.0
DAEMON_PING_INTERVAL_S = 30.0
DAEMON_OPEN_TIMEOUT_S = 10.0
