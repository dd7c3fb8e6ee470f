"""Lifecycle of the multiplexing service's web server on a remote host.

Everything here is driven through a :class:`RemoteCommandChannel`; the
command strings are kept literal so they can be pasted into a shell when
diagnosing a host by hand.
"""

from __future__ import annotations

import re
import shlex
import time
from typing import Callable, Optional

from muxlink.constants import (
    LOG_TAIL_LINES,
    MIN_RAW_TOKEN_LEN,
    MIN_VERSION,
    QUICK_COMMAND_TIMEOUT_S,
    SERVICE_NAME,
    SERVICE_PORT,
    SERVICE_TAG,
    STARTUP_POLL_INTERVAL_S,
    STARTUP_POLLS,
    STARTUP_SETTLE_S,
    STOP_SETTLE_S,
)
from muxlink.errors import NotInstalled, StartupFailed
from muxlink.managers.logger import get_logger
from muxlink.models import TokenParsing
from muxlink.remote.channel import RemoteCommandChannel

log = get_logger(__name__)

ANSI_ESCAPE = re.compile(r"\x1B(?:[@-Z\\-_]|\[[0-?]*[ -/]*[@-~])")
_LABELED_TOKEN = re.compile(r"token_\d+:\s*([A-Za-z0-9\-]+)")
_UUID = re.compile(
    r"[a-f0-9]{8}-[a-f0-9]{4}-[a-f0-9]{4}-[a-f0-9]{4}-[a-f0-9]{12}", re.IGNORECASE
)
_VERSION = re.compile(r"(\d+)\.(\d+)\.(\d+)")


def strip_ansi(text: str) -> str:
    return ANSI_ESCAPE.sub("", text)


def parse_version(text: str) -> Optional[str]:
    """Pull ``major.minor.patch`` out of ``"<name> 0.43.1"``-style output."""
    match = _VERSION.search(strip_ansi(text or ""))
    return match.group(0) if match else None


def is_version_supported(version: Optional[str]) -> bool:
    """True when the service ships the web client.  Never raises."""
    parts = (version or "").strip().split(".")
    if len(parts) < 2:
        return False
    try:
        major, minor = int(parts[0]), int(parts[1])
    except ValueError:
        return False
    return major > MIN_VERSION[0] or (major == MIN_VERSION[0] and minor >= MIN_VERSION[1])


def parse_token(output: str, mode: TokenParsing = TokenParsing.STRICT) -> str:
    """Extract an auth token from ``--create-token`` output.

    STRICT tries, in order: a ``token_N: <value>`` label, any UUID, then the
    whole trimmed output if it is long enough.  LEGACY_TRIM takes the trimmed
    output as-is.  Raises StartupFailed when nothing usable is found.
    """
    clean = strip_ansi(output or "")
    if mode is TokenParsing.LEGACY_TRIM:
        token = clean.strip()
        if not token:
            raise StartupFailed("Token command produced no output")
        return token

    labeled = _LABELED_TOKEN.search(clean)
    if labeled:
        return labeled.group(1)
    bare = _UUID.search(clean)
    if bare:
        return bare.group(0)
    trimmed = clean.strip()
    if len(trimmed) > MIN_RAW_TOKEN_LEN:
        return trimmed
    raise StartupFailed(f"Failed to parse auth token from output: {clean!r}")


class ServiceOrchestrator:
    """Detects, starts, stops and queries ``<service> web`` on one host."""

    def __init__(
        self,
        channel: RemoteCommandChannel,
        service: str = SERVICE_NAME,
        token_parsing: TokenParsing = TokenParsing.STRICT,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._channel = channel
        self._service = service
        self._server = f"{service} {SERVICE_TAG}"
        self._token_parsing = token_parsing
        self._sleep = sleep

    @property
    def log_path(self) -> str:
        return f"/tmp/{self._service}-web.log"

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def is_installed(self) -> bool:
        return self._channel.exists(self._service)

    def version(self) -> Optional[str]:
        try:
            result = self._channel.execute(
                f"{self._service} --version", timeout=QUICK_COMMAND_TIMEOUT_S
            )
        except Exception as exc:  # noqa: BLE001
            log.debug("Version query failed: %s", exc)
            return None
        return parse_version(result.stdout) if result.success else None

    def _pgrep(self) -> str:
        try:
            result = self._channel.execute(
                f"pgrep -f '{self._server}' | head -1",
                timeout=QUICK_COMMAND_TIMEOUT_S,
            )
        except Exception as exc:  # noqa: BLE001
            log.debug("pgrep failed: %s", exc)
            return ""
        return result.stdout.strip() if result.success else ""

    def is_running(self) -> bool:
        return bool(self._pgrep())

    def pid(self) -> Optional[int]:
        text = self._pgrep()
        return int(text) if text.isdigit() else None

    def logs(self, lines: int = 50) -> str:
        try:
            result = self._channel.execute(
                f"tail -{lines} {self.log_path} 2>/dev/null || echo 'No logs available'",
                timeout=QUICK_COMMAND_TIMEOUT_S,
            )
        except Exception as exc:  # noqa: BLE001
            return f"Error retrieving logs: {exc}"
        return result.stdout

    def overlay_address(self) -> Optional[str]:
        """First tailnet IPv4 of the host, or None when tailscale is absent."""
        try:
            result = self._channel.execute(
                "tailscale ip -4 2>/dev/null", timeout=QUICK_COMMAND_TIMEOUT_S
            )
        except Exception as exc:  # noqa: BLE001
            log.warning("Error getting overlay address: %s", exc)
            return None
        lines = [line.strip() for line in result.stdout.splitlines() if line.strip()]
        if not (result.success and lines):
            log.debug("No overlay address: %s", result.stderr.strip())
            return None
        log.debug("Overlay address: %s", lines[0])
        return lines[0]

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> int:
        """Make sure the web server is running; return the port it listens on."""
        if not self.is_installed():
            raise NotInstalled(f"{self._service} is not installed on the remote host")

        version = self.version()
        if version is not None and not is_version_supported(version):
            log.warning("%s %s may not support the web client", self._service, version)

        if self.is_running():
            log.info("%s web already running", self._service)
            return SERVICE_PORT

        result = self._channel.execute(
            f"nohup {self._server} > {self.log_path} 2>&1 &",
            timeout=QUICK_COMMAND_TIMEOUT_S * 2,
        )
        if not result.success:
            raise StartupFailed(f"Failed to start {self._service} web: {result.stderr}")
        log.debug("Launched %s web", self._service)

        self._sleep(STARTUP_SETTLE_S)
        for attempt in range(1, STARTUP_POLLS + 1):
            if self.is_running():
                log.info("%s web started (poll %d)", self._service, attempt)
                return SERVICE_PORT
            self._sleep(STARTUP_POLL_INTERVAL_S)

        tail = self._channel.execute(
            f"tail -{LOG_TAIL_LINES} {self.log_path}", timeout=QUICK_COMMAND_TIMEOUT_S
        ).stdout
        raise StartupFailed(f"{self._service} web failed to start. Logs:\n{tail}", tail)

    def stop(self) -> bool:
        """Kill the web server.  Returns True only when it is confirmed gone."""
        try:
            self._channel.execute(
                f"pkill -f '{self._server}'", timeout=QUICK_COMMAND_TIMEOUT_S
            )
            self._sleep(STOP_SETTLE_S)
            still_running = self.is_running()
        except Exception:  # noqa: BLE001
            log.exception("Error stopping %s web", self._service)
            return False
        if still_running:
            log.warning("%s web may still be running after pkill", self._service)
        return not still_running

    def create_auth_token(self) -> str:
        try:
            result = self._channel.execute(f"{self._server} --create-token", timeout=10)
        except Exception as exc:
            raise StartupFailed(f"Error creating auth token: {exc}") from exc
        if not result.success:
            raise StartupFailed(f"Failed to create auth token: {result.stderr.strip()}")
        token = parse_token(result.stdout, self._token_parsing)
        log.debug("Extracted auth token (%d chars)", len(token))
        return token

    # ------------------------------------------------------------------
    # Named sessions
    # ------------------------------------------------------------------

    def session_list(self) -> list[str]:
        try:
            result = self._channel.execute(
                f"{self._service} list-sessions 2>/dev/null || echo ''", timeout=10
            )
        except Exception as exc:  # noqa: BLE001
            log.debug("list-sessions failed: %s", exc)
            return []
        if not result.success:
            return []
        # "dev-2 [Created 3h ago] (EXITED ...)": the name is the first word
        return [
            line.split()[0]
            for line in strip_ansi(result.stdout).splitlines()
            if line.strip()
        ]

    def session_exists(self, name: str) -> bool:
        return name in self.session_list()

    def kill_session(self, name: str) -> bool:
        try:
            result = self._channel.execute(
                f"{self._service} delete-session {shlex.quote(name)}", timeout=10
            )
        except Exception as exc:  # noqa: BLE001
            log.warning("delete-session %s failed: %s", name, exc)
            return False
        return result.success
