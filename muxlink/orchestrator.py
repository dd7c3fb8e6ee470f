"""Session collection and the connect / disconnect / test flows.

Threading model
---------------
The orchestrator lives on one thread (the GUI thread, or the CLI's
QCoreApplication thread).  That thread alone reads and writes the session
list, the current status, and the arena of live remote handles.

Each flow runs as a task on ``QThreadPool``; steps inside a flow are strictly
sequential and every remote call blocks only the pool thread.  A flow never
touches shared state: it returns a :class:`FlowOutcome`, which travels back
through the queued ``_flow_finished`` signal and is applied by
:meth:`_apply_outcome`.  Starting a new flow for a session cancels the
previous one's :class:`FlowToken`; outcomes carrying a stale token are
dropped (and any SSH handle they carry is closed).
"""

from __future__ import annotations

import dataclasses
import functools
import threading
import time
from typing import Callable, Optional

from PySide6.QtCore import QObject, QThreadPool, Signal, Slot

from muxlink.constants import (
    COMMAND_TIMEOUT_S,
    DAEMON_PORT,
    LOOPBACK_ALIAS,
    PROBE_TIMEOUT_MS,
    SERVICE_NAME,
)
from muxlink.daemon.channel import ControlChannel
from muxlink.errors import MuxLinkError
from muxlink.managers.logger import get_logger
from muxlink.models import (
    AuthMode,
    ConnectionConfig,
    ConnectionStatus,
    ConnectMode,
    Session,
    TestResult,
    TokenParsing,
    fallback_session_name,
    now_ms,
    slugify,
)
from muxlink.remote.channel import RemoteCommandChannel, dial_host
from muxlink.remote.probe import candidate_url, probe
from muxlink.remote.service import ServiceOrchestrator

log = get_logger(__name__)


class FlowCancelled(Exception):
    """Raised inside a flow once a newer flow for the same session started."""


class FlowToken:
    """Cancellation handle for one flow."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def check(self) -> None:
        if self._event.is_set():
            raise FlowCancelled()


@dataclasses.dataclass
class LiveHandles:
    """Remote handles kept after a bootstrap connect, keyed by session id.

    Pool tasks hold :attr:`lock` for as long as they use the channel, so a
    close never lands in the middle of a remote command.
    """

    channel: RemoteCommandChannel
    service: ServiceOrchestrator
    lock: threading.RLock = dataclasses.field(default_factory=threading.RLock)

    def close(self) -> None:
        with self.lock:
            self.channel.disconnect()


@dataclasses.dataclass
class FlowOutcome:
    session_id: str
    token: FlowToken
    status: ConnectionStatus
    connected: Optional[bool] = None    # None: leave the session untouched
    url: Optional[str] = None
    auth_token: Optional[str] = None
    live: Optional[LiveHandles] = None


def _pool_submit(fn: Callable[[], None]) -> None:
    QThreadPool.globalInstance().start(fn)


class SessionOrchestrator(QObject):
    """Owns the sessions and drives every connection flow."""

    status_changed = Signal(object)     # ConnectionStatus
    sessions_changed = Signal(object)   # list[Session]
    active_changed = Signal(int)
    test_finished = Signal(object)      # TestResult
    remote_sessions_listed = Signal(str, object)  # session id, list[str]
    _flow_finished = Signal(object)     # FlowOutcome

    def __init__(
        self,
        store,
        *,
        credentials=None,
        channel_factory: Optional[Callable[[], RemoteCommandChannel]] = None,
        probe_fn: Callable[..., bool] = probe,
        service_name: str = SERVICE_NAME,
        token_parsing: TokenParsing = TokenParsing.STRICT,
        loopback_alias: Optional[str] = LOOPBACK_ALIAS,
        probe_timeout_ms: int = PROBE_TIMEOUT_MS,
        command_timeout_s: float = COMMAND_TIMEOUT_S,
        submit: Callable[[Callable[[], None]], None] = _pool_submit,
        sleep: Callable[[float], None] = time.sleep,
        parent: Optional[QObject] = None,
    ) -> None:
        super().__init__(parent)
        self._store = store
        self._credentials = credentials
        self._channel_factory = channel_factory or (
            lambda: RemoteCommandChannel(
                loopback_alias=loopback_alias, command_timeout=command_timeout_s
            )
        )
        self._probe = probe_fn
        self._service_name = service_name
        self._token_parsing = token_parsing
        self._loopback_alias = loopback_alias
        self._probe_timeout_ms = probe_timeout_ms
        self._submit = submit
        self._sleep = sleep

        # Nothing is live after a restart, whatever the file says
        self._sessions: list[Session] = [
            dataclasses.replace(s, connected=False, url=None) for s in store.load()
        ]
        self._active_index = 0 if self._sessions else -1
        self._status = ConnectionStatus.disconnected()
        self._live: dict[str, LiveHandles] = {}
        self._flows: dict[str, FlowToken] = {}

        self._flow_finished.connect(self._apply_outcome)

    # ------------------------------------------------------------------
    # Read access
    # ------------------------------------------------------------------

    @property
    def sessions(self) -> list[Session]:
        return list(self._sessions)

    @property
    def status(self) -> ConnectionStatus:
        return self._status

    @property
    def active_index(self) -> int:
        return self._active_index

    def get(self, session_id: str) -> Optional[Session]:
        return next((s for s in self._sessions if s.id == session_id), None)

    def is_busy(self, session_id: str) -> bool:
        return session_id in self._flows

    def set_active_index(self, index: int) -> None:
        if 0 <= index < len(self._sessions) and index != self._active_index:
            self._active_index = index
            self.active_changed.emit(index)

    # ------------------------------------------------------------------
    # Collection
    # ------------------------------------------------------------------

    def add_session(self, config: ConnectionConfig) -> Optional[Session]:
        """Append a session for *config*; None when (host, remote name) exists."""
        name = (config.session_name or "").strip()
        remote = slugify(name) if name else fallback_session_name()
        if any(
            s.config.host == config.host and s.remote_session == remote
            for s in self._sessions
        ):
            log.info("Duplicate session %s on %s rejected", remote, config.host)
            return None

        session = Session(
            title=config.name.strip() or config.host,
            config=config,
            remote_session=remote,
        )
        self._commit(self._sessions + [session])
        self.set_active_index(len(self._sessions) - 1)
        log.info("Added session %s (%s)", session.title, remote)
        return session

    def remove_session(self, session_id: str) -> None:
        self.disconnect_session(session_id)
        remaining = [s for s in self._sessions if s.id != session_id]
        if len(remaining) == len(self._sessions):
            return
        self._commit(remaining)
        if self._active_index >= len(remaining):
            self._active_index = len(remaining) - 1
            self.active_changed.emit(self._active_index)
        log.info("Removed session %s", session_id)

    # ------------------------------------------------------------------
    # Flows
    # ------------------------------------------------------------------

    def test_connection(self, config: ConnectionConfig, remote_session: Optional[str] = None) -> TestResult:
        """Dry run; blocks the caller and never touches the session list.

        A direct test probes the URL :meth:`connect_session` would use:
        *remote_session* for a stored session, else the slug of the configured
        name.  An unnamed config that is not stored yet has no remote name, so
        the server root is probed instead.
        """
        try:
            if config.connect_mode is ConnectMode.BOOTSTRAP:
                channel = self._channel_factory()
                try:
                    channel.connect(self._with_secret(config))
                    result = channel.execute("echo ok", timeout=10)
                finally:
                    channel.disconnect()
                if result.success:
                    return TestResult(True, "Connection successful!")
                return TestResult(False, f"Remote shell check failed: {result.output().strip()}")

            name = (config.session_name or "").strip()
            url = candidate_url(
                config.host,
                remote_session or (slugify(name) if name else None),
                port=config.service_port,
                loopback_alias=self._loopback_alias,
            )
            if self._probe(url, self._probe_timeout_ms):
                return TestResult(True, "Connection successful!")
            return TestResult(False, f"Could not reach server at {url}")
        except Exception as exc:  # noqa: BLE001 - reported, never raised
            log.warning("Connection test for %s failed: %s", config.host, exc)
            return TestResult(False, f"Connection failed: {exc}")

    def request_test(self, config: ConnectionConfig, remote_session: Optional[str] = None) -> None:
        """Run :meth:`test_connection` off-thread and emit ``test_finished``."""
        self._submit(lambda: self.test_finished.emit(self.test_connection(config, remote_session)))

    def connect_session(self, session_id: str) -> bool:
        session = self.get(session_id)
        if session is None:
            log.warning("connect: unknown session %s", session_id)
            return False
        token = self._begin_flow(session_id)
        self._set_status(ConnectionStatus.connecting(session.title))
        snapshot = dataclasses.replace(session, config=dataclasses.replace(session.config))
        if snapshot.config.connect_mode is ConnectMode.BOOTSTRAP:
            flow = functools.partial(self._bootstrap_flow, snapshot, token)
        else:
            flow = functools.partial(self._direct_flow, snapshot, token)
        self._submit(functools.partial(self._run_flow, session_id, token, flow))
        return True

    def disconnect_session(self, session_id: str) -> None:
        """Soft disconnect: drop the SSH channel, leave the remote service up."""
        self._cancel_flow(session_id)
        live = self._live.pop(session_id, None)
        session = self.get(session_id)
        if session is not None and (session.connected or session.url):
            self._update(dataclasses.replace(session, connected=False, url=None))
        self._set_status(ConnectionStatus.disconnected())
        if live is not None:
            self._submit(live.close)

    def kill_session(self, session_id: str) -> bool:
        """Hard disconnect: stop the remote service, then disconnect."""
        session = self.get(session_id)
        if session is None:
            return False
        if session.config.connect_mode is not ConnectMode.BOOTSTRAP:
            log.warning("kill: %s is not a bootstrap session; disconnecting only", session.title)
            self.disconnect_session(session_id)
            return False

        live = self._live.pop(session_id, None)
        token = self._begin_flow(session_id)
        snapshot = dataclasses.replace(session, config=dataclasses.replace(session.config))
        flow = functools.partial(self._kill_flow, snapshot, token, live)
        self._submit(functools.partial(self._run_flow, session_id, token, flow))
        return True

    def request_remote_sessions(self, session_id: str) -> bool:
        """List the host's multiplexer sessions off-thread.

        The names arrive through ``remote_sessions_listed``.  Returns False
        when the session holds no live bootstrap connection.
        """
        live = self._live.get(session_id)
        if live is None:
            return False
        self._submit(functools.partial(self._list_remote_task, session_id, live))
        return True

    def control_channel(
        self, session_id: str, psk: Optional[str] = None, **options
    ) -> Optional[ControlChannel]:
        """An unconnected :class:`ControlChannel` to the session host's daemon.

        Uses the stored ``daemon_port`` and ``daemon_psk``; *psk* overrides a
        key that was not saved.  *options* go to :class:`ControlChannel`.
        """
        session = self.get(session_id)
        if session is None:
            return None
        cfg = session.config
        return ControlChannel(
            dial_host(cfg.host, self._loopback_alias),
            cfg.daemon_port or DAEMON_PORT,
            psk or cfg.daemon_psk,
            **options,
        )

    # ------------------------------------------------------------------
    # Flow bodies (pool threads; touch only their snapshot)
    # ------------------------------------------------------------------

    def _run_flow(self, session_id: str, token: FlowToken, flow: Callable[[], FlowOutcome]) -> None:
        try:
            outcome = flow()
        except FlowCancelled:
            log.debug("Flow for %s superseded", session_id)
            outcome = FlowOutcome(session_id, token, ConnectionStatus.disconnected())
        except MuxLinkError as exc:
            log.error("Flow for %s failed (%s): %s", session_id, exc.kind, exc)
            outcome = FlowOutcome(session_id, token, ConnectionStatus.error(str(exc)))
        except Exception as exc:  # noqa: BLE001 - flow boundary
            log.exception("Flow for %s crashed", session_id)
            outcome = FlowOutcome(session_id, token, ConnectionStatus.error(f"Connection failed: {exc}"))
        self._flow_finished.emit(outcome)

    def _direct_flow(self, session: Session, token: FlowToken) -> FlowOutcome:
        cfg = session.config
        base = candidate_url(
            cfg.host, session.remote_session, port=cfg.service_port,
            loopback_alias=self._loopback_alias,
        )
        log.info("Probing %s", base)
        if not self._probe(base, self._probe_timeout_ms):
            return FlowOutcome(
                session.id, token, ConnectionStatus.error(f"Could not reach server at {base}"),
                connected=False,
            )
        token.check()
        url = f"{base}?token={session.last_token}" if session.last_token else base
        return FlowOutcome(
            session.id, token, ConnectionStatus.connected(f"Connected to {session.title}"),
            connected=True, url=url,
        )

    def _bootstrap_flow(self, session: Session, token: FlowToken) -> FlowOutcome:
        channel = self._channel_factory()
        try:
            channel.connect(self._with_secret(session.config))
            token.check()
            service = ServiceOrchestrator(
                channel, self._service_name, self._token_parsing, sleep=self._sleep
            )
            port = service.start()
            token.check()
            host = service.overlay_address() or dial_host(session.config.host, self._loopback_alias)
            auth = service.create_auth_token()
            token.check()
        except BaseException:
            channel.disconnect()
            raise
        url = f"http://{host}:{port}/{session.remote_session}?token={auth}"
        log.info("Session %s ready at http://%s:%d/%s", session.title, host, port, session.remote_session)
        return FlowOutcome(
            session.id, token, ConnectionStatus.connected(f"Connected to {session.title}"),
            connected=True, url=url, auth_token=auth,
            live=LiveHandles(channel, service),
        )

    def _kill_flow(self, session: Session, token: FlowToken, live: Optional[LiveHandles]) -> FlowOutcome:
        if live is None:
            channel = self._channel_factory()
            try:
                channel.connect(self._with_secret(session.config))
            except Exception as exc:  # noqa: BLE001
                log.warning("kill: cannot reach %s to stop the service: %s", session.config.host, exc)
                channel.disconnect()
                return FlowOutcome(session.id, token, ConnectionStatus.disconnected(), connected=False)
            live = LiveHandles(
                channel,
                ServiceOrchestrator(channel, self._service_name, self._token_parsing, sleep=self._sleep),
            )
        with live.lock:
            try:
                if not live.service.stop():
                    log.warning("kill: %s web may still be running on %s", self._service_name, session.config.host)
            except Exception:  # noqa: BLE001
                log.exception("kill: stopping the service on %s failed", session.config.host)
            finally:
                live.close()
        return FlowOutcome(session.id, token, ConnectionStatus.disconnected(), connected=False)

    def _list_remote_task(self, session_id: str, live: LiveHandles) -> None:
        with live.lock:
            names = live.service.session_list()
        self.remote_sessions_listed.emit(session_id, names)

    def _with_secret(self, config: ConnectionConfig) -> ConnectionConfig:
        if config.auth_mode is AuthMode.SECRET and not config.secret and self._credentials is not None:
            secret = self._credentials.get_secret(config)
            if secret:
                return dataclasses.replace(config, secret=secret)
        return config

    # ------------------------------------------------------------------
    # State owner (orchestrator thread only)
    # ------------------------------------------------------------------

    def _begin_flow(self, session_id: str) -> FlowToken:
        self._cancel_flow(session_id)
        token = FlowToken()
        self._flows[session_id] = token
        return token

    def _cancel_flow(self, session_id: str) -> None:
        token = self._flows.pop(session_id, None)
        if token is not None:
            token.cancel()

    @Slot(object)
    def _apply_outcome(self, outcome: FlowOutcome) -> None:
        if self._flows.get(outcome.session_id) is not outcome.token:
            log.debug("Dropping stale result for %s", outcome.session_id)
            if outcome.live is not None:
                self._submit(outcome.live.close)
            return
        del self._flows[outcome.session_id]

        session = self.get(outcome.session_id)
        if session is None:
            if outcome.live is not None:
                self._submit(outcome.live.close)
            return

        if outcome.live is not None:
            previous = self._live.pop(session.id, None)
            if previous is not None:
                self._submit(previous.close)
            self._live[session.id] = outcome.live

        if outcome.connected is not None:
            changes: dict = {"connected": outcome.connected, "url": outcome.url}
            if outcome.connected:
                changes["last_connected"] = now_ms()
            if outcome.auth_token:
                changes["last_token"] = outcome.auth_token
            self._update(dataclasses.replace(session, **changes))
        self._set_status(outcome.status)

    def _update(self, session: Session) -> None:
        self._commit([session if s.id == session.id else s for s in self._sessions])

    def _commit(self, sessions: list[Session]) -> None:
        """The single mutation path: replace the list, persist, notify."""
        self._sessions = list(sessions)
        self._store.save(self._sessions)
        self.sessions_changed.emit(list(self._sessions))

    def _set_status(self, status: ConnectionStatus) -> None:
        self._status = status
        log.info("Status → %s", status)
        self.status_changed.emit(status)
