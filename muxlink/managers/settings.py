"""Application settings persistence (~/.muxlink/settings.json)."""

from __future__ import annotations

import json
import pathlib
from typing import Any

from muxlink.constants import (
    COMMAND_TIMEOUT_S,
    DAEMON_PING_INTERVAL_S,
    LOOPBACK_ALIAS,
    PROBE_TIMEOUT_MS,
    RECONNECT_DELAY_S,
    SERVICE_NAME,
    SETTINGS_FILE,
)
from muxlink.managers.logger import get_logger

log = get_logger(__name__)


class SettingsManager:
    """Load/save application-wide preferences."""

    _DEFAULTS: dict[str, Any] = {
        "service_name":            SERVICE_NAME,
        "token_parsing":           "strict",     # strict | legacy_trim
        "loopback_alias":          LOOPBACK_ALIAS,
        "probe_timeout_ms":        PROBE_TIMEOUT_MS,
        "command_timeout_s":       COMMAND_TIMEOUT_S,
        "reconnect_delay_s":       RECONNECT_DELAY_S,
        "daemon_ping_interval_s":  DAEMON_PING_INTERVAL_S,
    }

    def __init__(self, path: pathlib.Path = SETTINGS_FILE) -> None:
        self._path = path
        self._data: dict[str, Any] = dict(self._DEFAULTS)
        self._load()

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def _load(self) -> None:
        if not self._path.exists():
            return
        try:
            with open(self._path, "r", encoding="utf-8") as fh:
                stored = json.load(fh)
            self._data.update(stored)
        except (OSError, ValueError) as exc:
            log.warning("Ignoring unreadable settings file %s: %s", self._path, exc)

    def save(self) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        with open(self._path, "w", encoding="utf-8") as fh:
            json.dump(self._data, fh, indent=2)

    # ------------------------------------------------------------------
    # Access
    # ------------------------------------------------------------------

    def get(self, key: str, default: Any = None) -> Any:
        if default is None:
            default = self._DEFAULTS.get(key)
        return self._data.get(key, default)

    def set(self, key: str, value: Any) -> None:
        self._data[key] = value
        self.save()


# Global singleton
settings_manager = SettingsManager()
