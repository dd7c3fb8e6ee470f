"""JSON persistence for terminal sessions."""

from __future__ import annotations

import json
import pathlib

from muxlink.constants import SESSIONS_FILE
from muxlink.managers.logger import get_logger
from muxlink.models import Session

log = get_logger(__name__)


class SessionStore:
    """Loads and saves the whole session list; never partial state."""

    def __init__(self, path: pathlib.Path = SESSIONS_FILE) -> None:
        self._path = path

    @property
    def path(self) -> pathlib.Path:
        return self._path

    def load(self) -> list[Session]:
        if not self._path.exists():
            return []
        try:
            with open(self._path, "r", encoding="utf-8") as fh:
                raw: list[dict] = json.load(fh)
            return [Session.from_dict(d) for d in raw]
        except (OSError, ValueError, KeyError, TypeError) as exc:
            log.warning("Could not read %s, starting empty: %s", self._path, exc)
            return []

    def save(self, sessions: list[Session]) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self._path.with_suffix(".tmp")
        with open(tmp, "w", encoding="utf-8") as fh:
            json.dump([s.to_dict() for s in sessions], fh, indent=2)
        tmp.replace(self._path)


class MemoryStore:
    """Store that keeps sessions in memory only (tests, throwaway runs)."""

    def __init__(self, sessions: list[Session] | None = None) -> None:
        self.sessions: list[Session] = list(sessions or [])
        self.saves = 0

    def load(self) -> list[Session]:
        return list(self.sessions)

    def save(self, sessions: list[Session]) -> None:
        self.sessions = list(sessions)
        self.saves += 1
