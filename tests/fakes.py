"""Scripted stand-ins for the SSH channel, the clock and timers."""

from __future__ import annotations

from typing import Callable, Optional, Union

from muxlink.errors import AuthFailed
from muxlink.models import CommandResult

Reply = Union[CommandResult, Callable[[], CommandResult]]


def ok(stdout: str = "") -> CommandResult:
    return CommandResult(0, stdout, "")


def fail(stderr: str = "", code: int = 1) -> CommandResult:
    return CommandResult(code, "", stderr)


class FakeRemote:
    """RemoteCommandChannel double.  Replies are matched by command prefix."""

    def __init__(self, replies: Optional[dict[str, Reply]] = None, auth_error: bool = False) -> None:
        self.replies: dict[str, Reply] = dict(replies or {})
        self.commands: list[str] = []
        self.auth_error = auth_error
        self.connected = False
        self.connects = 0
        self.disconnects = 0
        self.config = None

    def connect(self, config) -> None:
        self.connects += 1
        if self.auth_error:
            raise AuthFailed(f"Authentication failed for {config.username}@{config.host}")
        self.config = config
        self.connected = True

    def disconnect(self) -> None:
        self.disconnects += 1
        self.connected = False

    def execute(self, command: str, timeout: float = 30) -> CommandResult:
        self.commands.append(command)
        for prefix, reply in self.replies.items():
            if command.startswith(prefix):
                return reply() if callable(reply) else reply
        return fail(f"unexpected command: {command}", code=127)

    def exists(self, name: str) -> bool:
        result = self.execute(f"which {name}", timeout=5)
        return result.success and bool(result.stdout.strip())

    def count(self, prefix: str) -> int:
        return sum(1 for c in self.commands if c.startswith(prefix))


class FakeClock:
    def __init__(self) -> None:
        self.sleeps: list[float] = []

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)


class Sequence:
    """Reply callable that walks through results, repeating the last one."""

    def __init__(self, *results: CommandResult) -> None:
        self._results = list(results)
        self.calls = 0

    def __call__(self) -> CommandResult:
        result = self._results[min(self.calls, len(self._results) - 1)]
        self.calls += 1
        return result


def running_zellij(token_output: str = "token_1: 40cfd772-e052-43a0-8acf-e64b1b8825fb") -> FakeRemote:
    """A host where zellij 0.43.1 is installed and its web server is up."""
    return FakeRemote({
        "which zellij": ok("/usr/local/bin/zellij\n"),
        "zellij --version": ok("zellij 0.43.1\n"),
        "pgrep -f 'zellij web'": ok("4242\n"),
        "tailscale ip -4": ok("100.64.0.7\nfd7a:115c::7\n"),
        "zellij web --create-token": ok(token_output),
        "pkill -f 'zellij web'": ok(),
        "zellij list-sessions": ok("main\nscratch\n"),
    })
