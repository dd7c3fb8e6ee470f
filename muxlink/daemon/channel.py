"""Long-lived control channel to the companion daemon.

Architecture
------------
ControlChannel  - owns one websocket connection (``websockets`` threading
                  client) read by a daemon thread.  Inbound envelopes,
                  status flips and errors are posted to :attr:`events`
                  instead of being delivered through listener callbacks.
Reconnect       - a transport failure that was not caused by
                  :meth:`disconnect` schedules exactly one reconnect through
                  a cancellable :class:`threading.Timer`; a failing
                  reconnect schedules the next one, indefinitely.
Keep-alive      - two layers: websocket ping frames every
                  ``ping_interval`` seconds (handled by ``websockets``), and
                  application ``ping`` envelopes from the daemon, answered
                  here and never forwarded.
Generations     - every connect and disconnect starts a new generation; a
                  reader from an older one closes quietly and posts
                  nothing, so :meth:`disconnect` posts the final
                  ``STATUS(False)`` itself.
"""

from __future__ import annotations

import dataclasses
import enum
import queue
import ssl
import threading
from typing import Any, Callable, Optional

from websockets.sync.client import connect as ws_connect

from muxlink.constants import (
    DAEMON_OPEN_TIMEOUT_S,
    DAEMON_PING_INTERVAL_S,
    DAEMON_PSK_HEADER,
    RECONNECT_DELAY_S,
)
from muxlink.daemon.envelope import EnvelopeDecodeError, decode, encode, is_ping, ping_envelope
from muxlink.managers.logger import get_logger

log = get_logger(__name__)

NORMAL_CLOSURE = 1000


class EventKind(str, enum.Enum):
    MESSAGE = "message"
    STATUS = "status"
    ERROR = "error"


@dataclasses.dataclass(frozen=True)
class ChannelEvent:
    kind: EventKind
    payload: Any  # Envelope | bool | str


def permissive_ssl_context() -> ssl.SSLContext:
    """Accept self-signed daemon certificates (development trust policy)."""
    ctx = ssl.create_default_context()
    ctx.check_hostname = False
    ctx.verify_mode = ssl.CERT_NONE
    return ctx


class ControlChannel:
    """A single auto-recovering binary websocket to one daemon endpoint."""

    def __init__(
        self,
        host: str,
        port: int,
        psk: Optional[str] = None,
        *,
        secure: bool = False,
        reconnect_delay: float = RECONNECT_DELAY_S,
        ping_interval: float = DAEMON_PING_INTERVAL_S,
        connector: Callable[..., Any] = ws_connect,
        timer_factory: Callable[..., Any] = threading.Timer,
    ) -> None:
        self.host = host
        self.port = port
        self._psk = psk
        self._secure = secure
        self._reconnect_delay = reconnect_delay
        self._ping_interval = ping_interval
        self._connector = connector
        self._timer_factory = timer_factory

        self.events: "queue.Queue[ChannelEvent]" = queue.Queue()
        self._lock = threading.Lock()
        self._ws: Any = None
        self._worker: Optional[threading.Thread] = None
        self._reconnect_timer: Any = None
        self._closing = False
        self._generation = 0

    @property
    def url(self) -> str:
        scheme = "wss" if self._secure else "ws"
        return f"{scheme}://{self.host}:{self.port}/ws"

    @property
    def is_connected(self) -> bool:
        return self._ws is not None

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def connect(self) -> None:
        """Start the connection in the background.  No-op if one is live."""
        with self._lock:
            self._closing = False
            self._start_locked()

    def send(self, envelope) -> bool:
        ws = self._ws
        if ws is None:
            log.debug("Dropping outbound envelope; %s not connected", self.url)
            return False
        try:
            ws.send(encode(envelope))
        except Exception as exc:  # noqa: BLE001 - the reader thread reports the failure
            log.warning("Send to %s failed: %s", self.url, exc)
            return False
        return True

    def disconnect(self) -> None:
        """Close for good: no reconnect follows.  Idempotent."""
        with self._lock:
            self._closing = True
            self._generation += 1
            timer, self._reconnect_timer = self._reconnect_timer, None
            ws, self._ws = self._ws, None
            self._worker = None
        if timer is not None:
            timer.cancel()
        if ws is not None:
            log.info("Closing control channel %s", self.url)
            try:
                ws.close(code=NORMAL_CLOSURE, reason="User disconnect")
            except Exception as exc:  # noqa: BLE001
                log.debug("Ignoring error while closing %s: %s", self.url, exc)
            # The reader is now stale and stays silent
            self._post(EventKind.STATUS, False)

    # ------------------------------------------------------------------
    # Worker thread
    # ------------------------------------------------------------------

    def _start_locked(self) -> None:
        if self._worker is not None:
            return
        self._generation += 1
        worker = threading.Thread(
            target=self._run,
            args=(self._generation,),
            name=f"control-{self.host}:{self.port}",
            daemon=True,
        )
        self._worker = worker
        worker.start()

    def _open(self):
        headers = {DAEMON_PSK_HEADER: self._psk} if self._psk else None
        kwargs: dict = {
            "additional_headers": headers,
            "open_timeout": DAEMON_OPEN_TIMEOUT_S,
            "ping_interval": self._ping_interval,
            "ping_timeout": self._ping_interval,
        }
        if self._secure:
            kwargs["ssl"] = permissive_ssl_context()
        return self._connector(self.url, **kwargs)

    def _run(self, generation: int) -> None:
        log.info("Connecting to daemon websocket: %s", self.url)
        try:
            ws = self._open()
        except Exception as exc:  # noqa: BLE001
            self._on_failure(exc, generation)
            return

        with self._lock:
            stale = self._closing or generation != self._generation
            if not stale:
                self._ws = ws
                self._post(EventKind.STATUS, True)
        if stale:
            ws.close(code=NORMAL_CLOSURE, reason="User disconnect")
            return

        log.info("Control channel open: %s", self.url)
        try:
            for frame in ws:
                self._handle_frame(frame)
        except Exception as exc:  # noqa: BLE001
            self._on_failure(exc, generation)
            return
        self._on_closed(generation)

    def _handle_frame(self, frame) -> None:
        try:
            envelope = decode(frame)
        except EnvelopeDecodeError as exc:
            log.warning("Dropping undecodable frame from %s: %s", self.url, exc)
            return
        if is_ping(envelope):
            log.debug("Received ping from %s, responding", self.url)
            self.send(ping_envelope())
            return
        self._post(EventKind.MESSAGE, envelope)

    def _on_closed(self, generation: int) -> None:
        with self._lock:
            current = generation == self._generation
            if current:
                self._ws = None
                self._worker = None
        if not current:
            return
        log.info("Control channel closed: %s", self.url)
        self._post(EventKind.STATUS, False)

    def _on_failure(self, exc: BaseException, generation: int) -> None:
        with self._lock:
            current = generation == self._generation
            if current:
                self._ws = None
                self._worker = None
                self._schedule_reconnect_locked()
        if not current:
            log.debug("Ignoring failure of a superseded connection to %s: %s", self.url, exc)
            return
        log.error("Control channel failure (%s): %s", self.url, exc)
        self._post(EventKind.ERROR, str(exc) or exc.__class__.__name__)
        self._post(EventKind.STATUS, False)

    def _schedule_reconnect_locked(self) -> None:
        if self._closing or self._reconnect_timer is not None:
            return
        log.info("Reconnecting to %s in %.0f seconds", self.url, self._reconnect_delay)
        timer = self._timer_factory(self._reconnect_delay, self._reconnect)
        timer.daemon = True
        self._reconnect_timer = timer
        timer.start()

    def _reconnect(self) -> None:
        with self._lock:
            self._reconnect_timer = None
            if self._closing:
                return
            self._start_locked()

    def _post(self, kind: EventKind, payload: Any) -> None:
        self.events.put(ChannelEvent(kind, payload))
