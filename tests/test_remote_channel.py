from __future__ import annotations

import io
import socket
import threading

import paramiko
import pytest

from muxlink.errors import AuthFailed, CommandTimeout, NetworkUnreachable, NotConnected
from muxlink.models import AuthMode, ConnectionConfig
from muxlink.remote.channel import RemoteCommandChannel, dial_host


class _Chan:
    def __init__(self, code: int, done: bool = True) -> None:
        self.status_event = threading.Event()
        if done:
            self.status_event.set()
        self._code = code
        self.closed = False

    def recv_exit_status(self) -> int:
        return self._code

    def close(self) -> None:
        self.closed = True


class _Stream(io.BytesIO):
    def __init__(self, data: bytes, chan: _Chan) -> None:
        super().__init__(data)
        self.channel = chan


class FakeClient:
    instances: list["FakeClient"] = []

    def __init__(self) -> None:
        self.kwargs: dict = {}
        self.closed = False
        self.error: Exception | None = None
        self.script: dict[str, tuple[int, bytes, bytes, bool]] = {}
        self.timeouts: list = []
        FakeClient.instances.append(self)

    def set_missing_host_key_policy(self, policy) -> None:
        self.policy = policy

    def connect(self, **kwargs) -> None:
        if self.error:
            raise self.error
        self.kwargs = kwargs

    def close(self) -> None:
        self.closed = True

    def exec_command(self, command, timeout=None):
        self.timeouts.append(timeout)
        code, out, err, done = self.script.get(command, (0, b"", b"", True))
        chan = _Chan(code, done)
        return None, _Stream(out, chan), _Stream(err, chan)


@pytest.fixture(autouse=True)
def _reset():
    FakeClient.instances.clear()


def _cfg(**kw) -> ConnectionConfig:
    base = dict(name="dev", host="box.lan", username="me", secret="pw")
    base.update(kw)
    return ConnectionConfig(**base)


def test_dial_host_rewrites_loopback_only():
    assert dial_host("localhost") == "10.0.2.2"
    assert dial_host("127.0.0.1") == "10.0.2.2"
    assert dial_host("box.lan") == "box.lan"
    assert dial_host("localhost", None) == "localhost"


def test_connect_uses_password_and_rewritten_host():
    ch = RemoteCommandChannel(client_factory=FakeClient)
    ch.connect(_cfg(host="localhost", port=2222))
    kw = FakeClient.instances[0].kwargs
    assert kw["hostname"] == "10.0.2.2"
    assert kw["port"] == 2222
    assert kw["password"] == "pw"
    assert "key_filename" not in kw


def test_connect_with_key_file():
    ch = RemoteCommandChannel(client_factory=FakeClient)
    ch.connect(_cfg(auth_mode=AuthMode.KEY_FILE, secret=None, key_path="/k", key_passphrase="pp"))
    kw = FakeClient.instances[0].kwargs
    assert kw["key_filename"] == "/k"
    assert kw["passphrase"] == "pp"
    assert "password" not in kw


def test_reconnect_closes_previous_client():
    ch = RemoteCommandChannel(client_factory=FakeClient)
    ch.connect(_cfg())
    ch.connect(_cfg())
    first, second = FakeClient.instances
    assert first.closed and not second.closed


def test_auth_failure_maps_to_auth_failed():
    def factory():
        c = FakeClient()
        c.error = paramiko.AuthenticationException("bad password")
        return c

    ch = RemoteCommandChannel(client_factory=factory)
    with pytest.raises(AuthFailed):
        ch.connect(_cfg())
    assert FakeClient.instances[0].closed


def test_refused_maps_to_network_unreachable():
    def factory():
        c = FakeClient()
        c.error = ConnectionRefusedError(111, "Connection refused")
        return c

    with pytest.raises(NetworkUnreachable):
        RemoteCommandChannel(client_factory=factory).connect(_cfg())


def test_execute_reports_nonzero_exit_without_raising():
    ch = RemoteCommandChannel(client_factory=FakeClient)
    ch.connect(_cfg())
    FakeClient.instances[0].script["false"] = (1, b"", b"nope\n", True)
    result = ch.execute("false")
    assert not result.success
    assert result.exit_code == 1
    assert result.stderr == "nope\n"


def test_execute_timeout_is_a_failed_result():
    ch = RemoteCommandChannel(client_factory=FakeClient)
    ch.connect(_cfg())
    FakeClient.instances[0].script["sleep 60"] = (0, b"", b"", False)
    result = ch.execute("sleep 60", timeout=0.01)
    assert result.timed_out and not result.success


def test_execute_defaults_to_the_channel_command_timeout():
    ch = RemoteCommandChannel(client_factory=FakeClient, command_timeout=7)
    ch.connect(_cfg())
    ch.execute("true")
    ch.execute("true", timeout=3)
    assert FakeClient.instances[0].timeouts == [7, 3]


def test_exists():
    ch = RemoteCommandChannel(client_factory=FakeClient)
    ch.connect(_cfg())
    FakeClient.instances[0].script["which zellij"] = (0, b"/usr/bin/zellij\n", b"", True)
    FakeClient.instances[0].script["which tmux"] = (1, b"", b"", True)
    assert ch.exists("zellij")
    assert not ch.exists("tmux")


def test_disconnect_is_idempotent():
    ch = RemoteCommandChannel(client_factory=FakeClient)
    ch.disconnect()
    ch.connect(_cfg())
    ch.disconnect()
    ch.disconnect()
    assert FakeClient.instances[0].closed
    assert ch.config is None
    with pytest.raises(NotConnected):
        ch.execute("true")


def test_socket_timeout_on_dial():
    def factory():
        c = FakeClient()
        c.error = socket.timeout("timed out")
        return c

    with pytest.raises(CommandTimeout):
        RemoteCommandChannel(client_factory=factory).connect(_cfg())
