"""Qt timer that drives the animation driver at display rate."""

from __future__ import annotations

from concurrent.futures import Future
from typing import Any, Optional

from PySide6.QtCore import QEventLoop, QObject, QTimer, Signal

from ring_animation import AnimationDriver
from ring_gateway import SolverGateway
from ring_settings import FRAME_INTERVAL_MS


class QtFrameSource(QObject):
    frame_ticked = Signal(float)

    def __init__(
        self,
        driver: AnimationDriver,
        interval_ms: int = FRAME_INTERVAL_MS,
        gateway: Optional[SolverGateway] = None,
        parent: Optional[QObject] = None,
    ) -> None:
        super().__init__(parent)
        self.driver = driver
        self.gateway = gateway
        self._timer = QTimer(self)
        self._timer.setInterval(max(1, interval_ms))
        self._timer.timeout.connect(self._on_timeout)
        driver.on_schedule = self.wake

    def is_active(self) -> bool:
        return self._timer.isActive()

    def start(self) -> None:
        self._timer.start()

    def stop(self) -> None:
        self._timer.stop()

    def wake(self) -> None:
        if not self._timer.isActive():
            self._timer.start()

    def _idle(self) -> bool:
        if self.driver.has_pending():
            return False
        return self.gateway is None or not self.gateway.busy

    def _on_timeout(self) -> None:
        if self.gateway is not None:
            self.gateway.poll()
        if self.driver.has_pending():
            now = self.driver.now()
            self.driver.tick(now)
            self.frame_ticked.emit(now)
        if self._idle():
            self._timer.stop()

    def run_until(self, future: "Future[Any]", timeout_ms: int) -> bool:
        """Spin a local event loop until `future` is done or the timeout hits."""
        if future.done():
            return True
        loop = QEventLoop()
        future.add_done_callback(lambda _f: loop.quit())
        guard = QTimer()
        guard.setSingleShot(True)
        guard.timeout.connect(loop.quit)
        guard.start(max(0, timeout_ms))
        self.wake()
        if not future.done():
            loop.exec()
        guard.stop()
        return future.done()
