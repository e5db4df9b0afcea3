"""Repeating UI-thread task used to advance the transport.

The transport owns exactly one Ticker and cancels it on every exit path
(pause, stop, natural end, dispose). QtTicker runs on the Qt event loop;
tests swap in a manual ticker with the same three members.
"""

from typing import Callable, Optional, Protocol

from PySide6.QtCore import QTimer


class Ticker(Protocol):
    def start(self, interval_ms: int, callback: Callable[[], None]) -> None: ...
    def cancel(self) -> None: ...

    @property
    def active(self) -> bool: ...


class QtTicker:
    """QTimer-backed repeating task. Restarting replaces the callback."""

    def __init__(self, parent=None):
        self._parent = parent
        self._timer: Optional[QTimer] = None

    def start(self, interval_ms, callback):
        self.cancel()
        self._timer = QTimer(self._parent)
        self._timer.setInterval(int(interval_ms))
        self._timer.timeout.connect(callback)
        self._timer.start()

    def cancel(self):
        if self._timer:
            self._timer.stop()
            self._timer.deleteLater()
            self._timer = None

    @property
    def active(self) -> bool:
        return self._timer is not None and self._timer.isActive()
