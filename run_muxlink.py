#!/usr/bin/env python3
"""MuxLink command line front-end.

Drives the same :class:`SessionOrchestrator` a GUI would, inside a
``QCoreApplication`` event loop so queued results land on the main thread.

    run_muxlink.py add --name dev --host box.lan --user me --password ... \
        --session "My Session" --mode bootstrap
    run_muxlink.py connect <id>
    run_muxlink.py watch <id>
    run_muxlink.py watch --host box.lan --psk s3cret
"""

from __future__ import annotations

import argparse
import dataclasses
import getpass
import logging
import signal
import sys
from typing import Optional

from PySide6.QtCore import QCoreApplication, QThreadPool, QTimer

from muxlink.constants import APP_NAME, APP_VERSION, DAEMON_PORT, SERVICE_PORT
from muxlink.daemon.channel import ControlChannel
from muxlink.daemon.envelope import payload_kind
from muxlink.daemon.relay import ChannelRelay
from muxlink.managers.keepass import keepass_manager
from muxlink.managers.logger import get_logger, set_console_level
from muxlink.managers.session import SessionStore
from muxlink.managers.settings import settings_manager
from muxlink.models import AuthMode, ConnectionConfig, ConnectMode, StatusKind, TokenParsing
from muxlink.orchestrator import SessionOrchestrator

log = get_logger("cli")


def _build_orchestrator() -> SessionOrchestrator:
    return SessionOrchestrator(
        SessionStore(),
        credentials=keepass_manager,
        service_name=settings_manager.get("service_name"),
        token_parsing=TokenParsing(settings_manager.get("token_parsing")),
        loopback_alias=settings_manager.get("loopback_alias") or None,
        probe_timeout_ms=int(settings_manager.get("probe_timeout_ms")),
        command_timeout_s=float(settings_manager.get("command_timeout_s")),
    )


def _find(orch: SessionOrchestrator, ref: str):
    """Resolve a session by id, id prefix or remote session name."""
    for s in orch.sessions:
        if s.id == ref or s.remote_session == ref or s.id.startswith(ref):
            return s
    print(f"No session matching {ref!r}", file=sys.stderr)
    return None


def _unlock_keepass(args) -> None:
    if getattr(args, "keepass", None):
        keepass_manager.open(args.keepass, getpass.getpass("KeePass password: "))


def _run_until_settled(app: QCoreApplication, orch: SessionOrchestrator, session_id: str) -> int:
    """Spin the event loop until the session's flow finishes."""
    result = {"code": 1}

    def on_status(status) -> None:
        if status.kind is StatusKind.CONNECTING:
            print(f"… connecting {status.text}")
            return
        print(status)
        result["code"] = 0 if status.kind is not StatusKind.ERROR else 1
        if not orch.is_busy(session_id):
            app.quit()

    orch.status_changed.connect(on_status)
    app.exec()
    orch.status_changed.disconnect(on_status)
    return result["code"]


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------

def cmd_list(app, orch, args) -> int:
    for i, s in enumerate(orch.sessions):
        mark = "*" if i == orch.active_index else " "
        print(f"{mark} {s.id[:8]}  {s.display_name():40}  {s.remote_session:20}  "
              f"{s.config.connect_mode.value:9}  {s.status_text()}")
    return 0


def _config_from_args(args) -> ConnectionConfig:
    auth = AuthMode.KEY_FILE if args.key else AuthMode.SECRET
    secret = args.password
    if auth is AuthMode.SECRET and not secret and not args.keepass_entry:
        secret = getpass.getpass(f"Password for {args.user}@{args.host}: ")
    return ConnectionConfig(
        name=args.name or "",
        host=args.host,
        port=args.port,
        username=args.user,
        auth_mode=auth,
        secret=secret,
        key_path=args.key,
        key_passphrase=args.passphrase,
        save_secret=args.save_secret,
        session_name=args.session,
        connect_mode=ConnectMode(args.mode),
        service_port=args.service_port,
        daemon_port=args.daemon_port,
        daemon_psk=args.psk,
        keepass_entry_uuid=args.keepass_entry or "",
    )


def cmd_add(app, orch, args) -> int:
    config = _config_from_args(args)
    if config.keepass_entry_uuid and not config.secret:
        # password comes from KeePass at connect time
        check = dataclasses.replace(config, secret="keepass").validate(strict=True)
    else:
        check = config.validate(strict=True)
    if not check.ok:
        print(f"Invalid configuration: {check.message}", file=sys.stderr)
        return 2
    session = orch.add_session(config)
    if session is None:
        print(f"A session named {args.session!r} on {args.host} already exists", file=sys.stderr)
        return 1
    print(f"Added {session.id[:8]}  {session.display_name()}  → {session.remote_session}")
    return 0


def cmd_test(app, orch, args) -> int:
    _unlock_keepass(args)
    session = _find(orch, args.session_ref)
    if session is None:
        return 1
    outcome = {}

    def on_finished(result) -> None:
        outcome["result"] = result
        app.quit()

    orch.test_finished.connect(on_finished)
    orch.request_test(session.config, session.remote_session)
    app.exec()
    orch.test_finished.disconnect(on_finished)
    result = outcome["result"]
    print(("OK  " if result.ok else "FAIL  ") + result.message)
    return 0 if result.ok else 1


def cmd_connect(app, orch, args) -> int:
    _unlock_keepass(args)
    session = _find(orch, args.session_ref)
    if session is None or not orch.connect_session(session.id):
        return 1
    code = _run_until_settled(app, orch, session.id)
    connected = orch.get(session.id)
    if code == 0 and connected is not None and connected.url:
        print(connected.url)
    # The remote service keeps running; only the SSH channel goes away.
    orch.disconnect_session(session.id)
    _wait_for_pool()
    return code


def cmd_disconnect(app, orch, args) -> int:
    session = _find(orch, args.session_ref)
    if session is None:
        return 1
    orch.disconnect_session(session.id)
    return 0


def cmd_kill(app, orch, args) -> int:
    _unlock_keepass(args)
    session = _find(orch, args.session_ref)
    if session is None or not orch.kill_session(session.id):
        return 1
    return _run_until_settled(app, orch, session.id)


def cmd_remove(app, orch, args) -> int:
    session = _find(orch, args.session_ref)
    if session is None:
        return 1
    orch.remove_session(session.id)
    _wait_for_pool()
    print(f"Removed {session.display_name()}")
    return 0


def cmd_sessions(app, orch, args) -> int:
    """Connect in bootstrap mode and list the host's multiplexer sessions."""
    _unlock_keepass(args)
    session = _find(orch, args.session_ref)
    if session is None:
        return 1
    if session.config.connect_mode is not ConnectMode.BOOTSTRAP:
        print("Remote session listing needs a bootstrap-mode session", file=sys.stderr)
        return 2
    orch.connect_session(session.id)
    code = _run_until_settled(app, orch, session.id)
    if code == 0:
        listed = {}

        def on_listed(session_id: str, names) -> None:
            if session_id == session.id:
                listed["names"] = names
                app.quit()

        orch.remote_sessions_listed.connect(on_listed)
        if orch.request_remote_sessions(session.id):
            app.exec()
        orch.remote_sessions_listed.disconnect(on_listed)
        for name in listed.get("names", []):
            print(name)
    orch.disconnect_session(session.id)
    _wait_for_pool()
    return code


def cmd_watch(app, orch, args) -> int:
    options = {
        "secure": args.tls,
        "reconnect_delay": float(settings_manager.get("reconnect_delay_s")),
        "ping_interval": float(settings_manager.get("daemon_ping_interval_s")),
    }
    if args.session_ref:
        session = _find(orch, args.session_ref)
        if session is None:
            return 1
        channel = orch.control_channel(session.id, psk=args.psk, **options)
        if args.host:
            channel.host = args.host
        if args.port:
            channel.port = args.port
    elif args.host:
        channel = ControlChannel(args.host, args.port or DAEMON_PORT, args.psk, **options)
    else:
        print("watch needs a session reference or --host", file=sys.stderr)
        return 2
    relay = ChannelRelay(channel)
    relay.status_changed.connect(lambda up: print("daemon:", "connected" if up else "disconnected"))
    relay.error_occurred.connect(lambda msg: print("daemon error:", msg, file=sys.stderr))
    relay.message_received.connect(lambda env: print(f"[{payload_kind(env)}] {env}"))
    relay.start()
    signal.signal(signal.SIGINT, lambda *_: app.quit())
    # Let Python see SIGINT while Qt's loop is running
    tick = QTimer()
    tick.start(250)
    tick.timeout.connect(lambda: None)
    app.exec()
    relay.stop()
    return 0


def _wait_for_pool() -> None:
    QThreadPool.globalInstance().waitForDone(5000)


# ---------------------------------------------------------------------------
# Argument parsing
# ---------------------------------------------------------------------------

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="muxlink", description=f"{APP_NAME} {APP_VERSION}")
    parser.add_argument("-v", "--verbose", action="store_true", help="debug output on the console")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("list", help="show configured sessions").set_defaults(func=cmd_list)

    add = sub.add_parser("add", help="configure a new session")
    add.add_argument("--name", default="")
    add.add_argument("--host", required=True)
    add.add_argument("--port", type=int, default=22)
    add.add_argument("--user", required=True)
    add.add_argument("--password")
    add.add_argument("--key", help="private key file (switches to key auth)")
    add.add_argument("--passphrase")
    add.add_argument("--save-secret", action="store_true")
    add.add_argument("--keepass-entry", help="KeePass entry UUID holding the password")
    add.add_argument("--session", help="remote session name")
    add.add_argument("--mode", choices=[m.value for m in ConnectMode], default=ConnectMode.DIRECT.value)
    add.add_argument("--service-port", type=int, default=SERVICE_PORT)
    add.add_argument("--daemon-port", type=int)
    add.add_argument("--psk")
    add.set_defaults(func=cmd_add)

    for name, func, text in (
        ("test", cmd_test, "dry-run a session's connection"),
        ("connect", cmd_connect, "connect and print the session URL"),
        ("disconnect", cmd_disconnect, "forget a session's connection"),
        ("kill", cmd_kill, "stop the remote service (bootstrap mode)"),
        ("remove", cmd_remove, "delete a session"),
        ("sessions", cmd_sessions, "list multiplexer sessions on the host"),
    ):
        p = sub.add_parser(name, help=text)
        p.add_argument("session_ref", help="session id, id prefix or remote name")
        p.add_argument("--keepass", help="unlock this .kdbx for password lookup")
        p.set_defaults(func=func)

    watch = sub.add_parser("watch", help="follow the companion daemon's control channel")
    watch.add_argument("session_ref", nargs="?", help="take host, daemon port and PSK from this session")
    watch.add_argument("--host", help="daemon host (overrides the session's)")
    watch.add_argument("--port", type=int, help=f"daemon port (default {DAEMON_PORT})")
    watch.add_argument("--psk")
    watch.add_argument("--tls", action="store_true")
    watch.set_defaults(func=cmd_watch)
    return parser


def main(argv: Optional[list[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    if args.verbose:
        set_console_level(logging.DEBUG)
    app = QCoreApplication.instance() or QCoreApplication(sys.argv[:1])
    orch = _build_orchestrator()
    return args.func(app, orch, args)


if __name__ == "__main__":
    sys.exit(main())
