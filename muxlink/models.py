"""Data models for MuxLink."""

from __future__ import annotations

import dataclasses
import enum
import re
import time
import uuid
from typing import Optional


class AuthMode(str, enum.Enum):
    SECRET = "secret"
    KEY_FILE = "key_file"


class ConnectMode(str, enum.Enum):
    """How a session is brought up.

    DIRECT     - the service is assumed running; probe its HTTPS endpoint.
    BOOTSTRAP  - log in over SSH, start the service, mint a token.
    """

    DIRECT = "direct"
    BOOTSTRAP = "bootstrap"


class TokenParsing(str, enum.Enum):
    STRICT = "strict"
    LEGACY_TRIM = "legacy_trim"


# ---------------------------------------------------------------------------
# Session naming
# ---------------------------------------------------------------------------

_NON_SLUG = re.compile(r"[^a-z0-9]+")


def fallback_session_name() -> str:
    return f"session-{uuid.uuid4().hex[:8]}"


def slugify(text: str) -> str:
    """``"My Session!"`` → ``"my-session"``.  Never returns an empty string."""
    slug = _NON_SLUG.sub("-", (text or "").lower()).strip("-")
    return slug or fallback_session_name()


def now_ms() -> int:
    return int(time.time() * 1000)


# ---------------------------------------------------------------------------
# Connection configuration
# ---------------------------------------------------------------------------

@dataclasses.dataclass(frozen=True)
class ValidationResult:
    ok: bool
    message: str = ""


@dataclasses.dataclass
class ConnectionConfig:
    """Everything needed to reach one remote host.

    ``secret`` is a password for AuthMode.SECRET.  ``key_path`` and the
    optional ``key_passphrase`` are used for AuthMode.KEY_FILE.  Credential
    fields are only written to disk when ``save_secret`` is set.
    """

    name: str
    host: str
    port: int = 22
    username: str = ""
    auth_mode: AuthMode = AuthMode.SECRET
    secret: Optional[str] = None
    key_path: Optional[str] = None
    key_passphrase: Optional[str] = None
    save_secret: bool = False
    session_name: Optional[str] = None
    connect_mode: ConnectMode = ConnectMode.DIRECT
    service_port: int = 8082
    daemon_port: Optional[int] = None
    daemon_psk: Optional[str] = None
    keepass_entry_uuid: str = ""
    id: str = dataclasses.field(default_factory=lambda: str(uuid.uuid4()))

    _SECRET_FIELDS = ("secret", "key_passphrase", "daemon_psk")

    def validate(self, strict: bool = False) -> ValidationResult:
        if strict:
            if not self.host.strip():
                return ValidationResult(False, "Host cannot be empty")
            if not self.username.strip():
                return ValidationResult(False, "Username cannot be empty")
            if not 1 <= self.port <= 65535:
                return ValidationResult(False, "Invalid port number")
        if self.auth_mode is AuthMode.SECRET:
            if not (self.secret or "").strip():
                return ValidationResult(False, "Password cannot be empty")
        elif self.auth_mode is AuthMode.KEY_FILE:
            if not (self.key_path or "").strip():
                return ValidationResult(False, "Private key path cannot be empty")
        return ValidationResult(True)

    # ------------------------------------------------------------------
    # Serialisation helpers
    # ------------------------------------------------------------------

    def to_dict(self) -> dict:
        d = dataclasses.asdict(self)
        d["auth_mode"] = self.auth_mode.value
        d["connect_mode"] = self.connect_mode.value
        if not self.save_secret:
            for key in self._SECRET_FIELDS:
                d[key] = None
        return d

    @classmethod
    def from_dict(cls, d: dict) -> "ConnectionConfig":
        valid = {f.name for f in dataclasses.fields(cls)}
        kwargs = {k: v for k, v in d.items() if k in valid}
        if "auth_mode" in kwargs:
            kwargs["auth_mode"] = AuthMode(kwargs["auth_mode"])
        if "connect_mode" in kwargs:
            kwargs["connect_mode"] = ConnectMode(kwargs["connect_mode"])
        return cls(**kwargs)


# ---------------------------------------------------------------------------
# Terminal session
# ---------------------------------------------------------------------------

@dataclasses.dataclass
class Session:
    """A configured terminal session backed by a remote multiplexer session.

    ``remote_session`` is stable across reconnects; it is what lets the client
    reattach to the same remote workspace.
    """

    title: str
    config: ConnectionConfig
    remote_session: str
    connected: bool = False
    url: Optional[str] = None
    last_token: Optional[str] = None
    last_connected: int = 0
    id: str = dataclasses.field(default_factory=lambda: str(uuid.uuid4()))

    def display_name(self) -> str:
        return f"{self.title} ({self.config.host})"

    def status_text(self) -> str:
        if self.connected:
            return "Connected"
        if self.last_connected > 0:
            return "Disconnected"
        return "Not connected"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "title": self.title,
            "config": self.config.to_dict(),
            "remote_session": self.remote_session,
            "connected": self.connected,
            "url": self.url,
            "last_token": self.last_token,
            "last_connected": self.last_connected,
        }

    @classmethod
    def from_dict(cls, d: dict) -> "Session":
        return cls(
            id=d["id"],
            title=d.get("title", ""),
            config=ConnectionConfig.from_dict(d["config"]),
            remote_session=d["remote_session"],
            connected=bool(d.get("connected", False)),
            url=d.get("url"),
            last_token=d.get("last_token"),
            last_connected=int(d.get("last_connected", 0)),
        )


# ---------------------------------------------------------------------------
# Results and status
# ---------------------------------------------------------------------------

@dataclasses.dataclass(frozen=True)
class CommandResult:
    exit_code: int
    stdout: str = ""
    stderr: str = ""
    timed_out: bool = False

    @property
    def success(self) -> bool:
        return self.exit_code == 0 and not self.timed_out

    def output(self) -> str:
        return self.stdout if self.stdout else self.stderr


class StatusKind(str, enum.Enum):
    CONNECTING = "connecting"
    CONNECTED = "connected"
    ERROR = "error"
    DISCONNECTED = "disconnected"


@dataclasses.dataclass(frozen=True)
class ConnectionStatus:
    kind: StatusKind
    text: str = ""

    @classmethod
    def connecting(cls, label: str) -> "ConnectionStatus":
        return cls(StatusKind.CONNECTING, label)

    @classmethod
    def connected(cls, label: str) -> "ConnectionStatus":
        return cls(StatusKind.CONNECTED, label)

    @classmethod
    def error(cls, message: str) -> "ConnectionStatus":
        return cls(StatusKind.ERROR, message)

    @classmethod
    def disconnected(cls) -> "ConnectionStatus":
        return cls(StatusKind.DISCONNECTED)

    def __str__(self) -> str:
        return f"{self.kind.value}: {self.text}" if self.text else self.kind.value


@dataclasses.dataclass(frozen=True)
class TestResult:
    ok: bool
    message: str

    __test__ = False  # not a pytest class
