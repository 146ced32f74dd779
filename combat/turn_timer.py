import logging
import time

from PySide6.QtCore import QObject, QTimer, Signal

logger = logging.getLogger(__name__)


class TurnTimer(QObject):
    """Single-shot countdown for the action phase.

    ``expired`` fires exactly once per ``start()``: either when the duration
    elapses or through ``force_expire()``. Restarting cancels the pending
    countdown without firing.
    """

    expired = Signal()

    def __init__(self, duration: float, parent=None):
        super().__init__(parent)
        self.duration = duration
        self._timer = QTimer(self)
        self._timer.setSingleShot(True)
        self._timer.timeout.connect(self._on_timeout)
        self._running = False
        self._started_at = 0.0

    @property
    def is_running(self) -> bool:
        return self._running

    def start(self, duration: float = None):
        if duration is not None:
            self.duration = duration
        if self._running:
            logger.debug("Turn timer restarted; previous countdown cancelled")
        self._timer.stop()
        self._running = True
        self._started_at = time.monotonic()
        self._timer.start(int(self.duration * 1000))

    def stop(self):
        """Cancel without firing."""
        self._timer.stop()
        self._running = False

    def force_expire(self) -> bool:
        """Fire now if a countdown is pending; returns whether it fired."""
        if not self._running:
            return False
        self._timer.stop()
        self._fire()
        return True

    def remaining(self) -> float:
        if not self._running:
            return 0.0
        return max(self.duration - (time.monotonic() - self._started_at), 0.0)

    def _on_timeout(self):
        if self._running:
            self._fire()

    def _fire(self):
        self._running = False
        logger.debug("Turn timer expired")
        self.expired.emit()
