"""Read-only KeePass lookup for connection secrets.

Secrets are normally not written to ``sessions.json``; a config can instead
name a KeePass entry whose password is fetched right before dialing.
Multiple .kdbx databases can be open at once; lookups try the active one
first.
"""

from __future__ import annotations

import threading
import uuid
from typing import TYPE_CHECKING, Optional

from pykeepass import PyKeePass

from muxlink.managers.logger import get_logger

if TYPE_CHECKING:
    from muxlink.models import ConnectionConfig

log = get_logger(__name__)


class KeePassManager:
    """Thread-safe holder of unlocked databases."""

    def __init__(self) -> None:
        self._dbs: dict[str, PyKeePass] = {}  # path → db instance
        self._active_path: str = ""
        self._lock = threading.Lock()

    @property
    def is_open(self) -> bool:
        with self._lock:
            return bool(self._dbs)

    @property
    def open_paths(self) -> list[str]:
        with self._lock:
            return list(self._dbs.keys())

    def open(self, path: str, password: str, keyfile: str = "") -> None:
        """Unlock a .kdbx file and make it the active database.

        Re-raises pykeepass exceptions on bad credentials or corrupt files.
        """
        log.info("Opening KeePass database: %s", path)
        db = PyKeePass(path, password=password or None, keyfile=keyfile or None)
        self.add(path, db)

    def add(self, path: str, db: PyKeePass) -> None:
        with self._lock:
            self._dbs[path] = db
            self._active_path = path

    def lock(self) -> None:
        """Drop all in-memory databases."""
        with self._lock:
            count = len(self._dbs)
            self._dbs.clear()
            self._active_path = ""
        log.info("All KeePass databases locked (%d db(s) cleared)", count)

    def _find(self, db: PyKeePass, uuid_str: str):
        try:
            target = uuid.UUID(uuid_str)
        except ValueError:
            return None
        for entry in db.entries:
            if entry.uuid == target:
                return entry
        return None

    def get_secret(self, config: "ConnectionConfig") -> Optional[str]:
        """Password of the entry linked to *config*, or None."""
        if not config.keepass_entry_uuid:
            return None
        with self._lock:
            paths = [self._active_path] + [p for p in self._dbs if p != self._active_path]
            dbs = [self._dbs[p] for p in paths if p in self._dbs]
        for db in dbs:
            entry = self._find(db, config.keepass_entry_uuid)
            if entry is not None:
                return entry.password
        log.debug("No KeePass entry %s in %d open db(s)", config.keepass_entry_uuid, len(dbs))
        return None


# Global singleton shared across the application
keepass_manager = KeePassManager()
