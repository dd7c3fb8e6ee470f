"""Qt bridge for :class:`ControlChannel` events.

The channel's reader thread only ever touches its queue; :class:`ChannelRelay`
drains that queue on the thread that owns it (normally the GUI thread) and
re-emits each event as a Qt signal.
"""

from __future__ import annotations

import queue

from PySide6.QtCore import QObject, QTimer, Signal, Slot

from muxlink.daemon.channel import ControlChannel, EventKind


class ChannelRelay(QObject):
    message_received = Signal(object)   # Envelope
    status_changed = Signal(bool)
    error_occurred = Signal(str)

    _POLL_MS = 50

    def __init__(self, channel: ControlChannel, parent: QObject | None = None) -> None:
        super().__init__(parent)
        self._channel = channel
        self._timer = QTimer(self)
        self._timer.setInterval(self._POLL_MS)
        self._timer.timeout.connect(self.drain)

    @property
    def channel(self) -> ControlChannel:
        return self._channel

    def start(self) -> None:
        self._channel.connect()
        self._timer.start()

    def stop(self) -> None:
        self._channel.disconnect()
        self._timer.stop()
        self.drain()

    @Slot()
    def drain(self) -> int:
        """Emit every queued event.  Returns how many were delivered."""
        delivered = 0
        while True:
            try:
                event = self._channel.events.get_nowait()
            except queue.Empty:
                return delivered
            if event.kind is EventKind.MESSAGE:
                self.message_received.emit(event.payload)
            elif event.kind is EventKind.STATUS:
                self.status_changed.emit(bool(event.payload))
            else:
                self.error_occurred.emit(str(event.payload))
            delivered += 1
