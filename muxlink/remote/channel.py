"""Authenticated remote-shell channel used to bootstrap the multiplexer.

One :class:`RemoteCommandChannel` owns at most one live paramiko client.
The only primitive the layers above need is :meth:`execute`; a non-zero exit
status is reported through :class:`CommandResult`, never raised.
"""

from __future__ import annotations

import socket
from typing import Optional

import paramiko

from muxlink.constants import (
    COMMAND_TIMEOUT_S,
    DIAL_TIMEOUT_S,
    LOOPBACK_ALIAS,
    LOOPBACK_HOSTS,
    QUICK_COMMAND_TIMEOUT_S,
)
from muxlink.errors import AuthFailed, CommandTimeout, NetworkUnreachable, NotConnected
from muxlink.managers.logger import get_logger
from muxlink.models import AuthMode, CommandResult, ConnectionConfig

log = get_logger(__name__)


def dial_host(host: str, alias: Optional[str] = LOOPBACK_ALIAS) -> str:
    """Rewrite loopback hosts to the host-to-guest alias (emulator convenience)."""
    if alias and host in LOOPBACK_HOSTS:
        return alias
    return host


class RemoteCommandChannel:
    """Manages a single SSH connection and runs one-shot commands over it."""

    def __init__(
        self,
        loopback_alias: Optional[str] = LOOPBACK_ALIAS,
        client_factory=paramiko.SSHClient,
        command_timeout: float = COMMAND_TIMEOUT_S,
    ) -> None:
        self._loopback_alias = loopback_alias
        self._command_timeout = command_timeout
        self._client_factory = client_factory
        self._client: Optional[paramiko.SSHClient] = None
        self._config: Optional[ConnectionConfig] = None

    @property
    def config(self) -> Optional[ConnectionConfig]:
        return self._config

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def connect(self, config: ConnectionConfig) -> None:
        """Dial and authenticate.  Any previous connection is closed first.

        Raises AuthFailed, NetworkUnreachable or CommandTimeout.
        """
        self.disconnect()

        host = dial_host(config.host, self._loopback_alias)
        client = self._client_factory()
        client.set_missing_host_key_policy(paramiko.AutoAddPolicy())
        kwargs: dict = {
            "hostname": host,
            "port": config.port,
            "username": config.username,
            "timeout": DIAL_TIMEOUT_S,
            "banner_timeout": DIAL_TIMEOUT_S,
            "auth_timeout": DIAL_TIMEOUT_S,
            "allow_agent": False,
            "look_for_keys": False,
        }
        if config.auth_mode is AuthMode.KEY_FILE:
            if not config.key_path:
                raise AuthFailed("Private key path is required")
            kwargs["key_filename"] = config.key_path
            if config.key_passphrase:
                kwargs["passphrase"] = config.key_passphrase
        else:
            if not config.secret:
                raise AuthFailed("Password is required")
            kwargs["password"] = config.secret

        log.info("Connecting to %s@%s:%d", config.username, host, config.port)
        try:
            client.connect(**kwargs)
        except paramiko.AuthenticationException as exc:
            client.close()
            raise AuthFailed(f"Authentication failed for {config.username}@{host}: {exc}") from exc
        except socket.timeout as exc:
            client.close()
            raise CommandTimeout(f"Timed out connecting to {host}:{config.port}") from exc
        except (paramiko.SSHException, OSError) as exc:
            client.close()
            raise NetworkUnreachable(f"Cannot reach {host}:{config.port}: {exc}") from exc

        self._client = client
        self._config = config
        log.info("Connected to %s@%s", config.username, host)

    def disconnect(self) -> None:
        """Close the connection.  Safe to call any number of times."""
        client, self._client = self._client, None
        self._config = None
        if client is None:
            return
        try:
            client.close()
        except Exception as exc:  # noqa: BLE001 - teardown must not fail
            log.debug("Ignoring error while closing SSH client: %s", exc)

    def is_connected(self) -> bool:
        if self._client is None:
            return False
        transport = self._client.get_transport()
        return bool(transport and transport.is_active() and transport.is_authenticated())

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    def execute(self, command: str, timeout: Optional[float] = None) -> CommandResult:
        """Run *command* and wait at most *timeout* seconds for it to finish.

        Without *timeout* the channel's ``command_timeout`` applies.
        """
        if self._client is None:
            raise NotConnected("Not connected")
        if timeout is None:
            timeout = self._command_timeout

        log.debug("exec: %s", command)
        try:
            _stdin, stdout, stderr = self._client.exec_command(command, timeout=timeout)
            chan = stdout.channel
            # status_event is set when the remote side reports an exit status
            if not chan.status_event.wait(timeout):
                chan.close()
                log.warning("Command timed out after %ss: %s", timeout, command)
                return CommandResult(-1, "", f"timed out after {timeout}s", timed_out=True)
            out = stdout.read().decode("utf-8", errors="replace")
            err = stderr.read().decode("utf-8", errors="replace")
            code = chan.recv_exit_status()
        except socket.timeout:
            log.warning("Command timed out after %ss: %s", timeout, command)
            return CommandResult(-1, "", f"timed out after {timeout}s", timed_out=True)
        except paramiko.SSHException as exc:
            raise NetworkUnreachable(f"SSH channel failed: {exc}") from exc

        log.debug("exit=%d stdout=%d bytes stderr=%d bytes", code, len(out), len(err))
        return CommandResult(code, out, err)

    def exists(self, name: str) -> bool:
        try:
            result = self.execute(f"which {name}", timeout=QUICK_COMMAND_TIMEOUT_S)
        except Exception as exc:  # noqa: BLE001
            log.debug("which %s failed: %s", name, exc)
            return False
        return result.success and bool(result.stdout.strip())
