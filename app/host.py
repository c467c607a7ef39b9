from __future__ import annotations

import time
from typing import Any, Mapping, Optional

from PyQt5.QtCore import QObject, QTimer, pyqtSignal, pyqtSlot

from arbor.engine import MorphEngine
from arbor.progress import TargetState
from arbor.view.sink import QtTransformSink


class SceneHost(QObject):
    """Drives a :class:`MorphEngine` from a Qt timer.

    Exposed to a QWebChannel or a Qt widget: ``toggle``/``setAssembled`` are
    the user triggers, ``stateChanged`` fires when the requested state flips
    and ``frameReady`` carries the batches of every frame.
    """

    # Utiliser QVariant côté QtWebChannel
    stateChanged = pyqtSignal('QVariant')
    frameReady = pyqtSignal(object)

    def __init__(
        self,
        config: Optional[Mapping[str, Any]] = None,
        seed: Optional[int] = None,
        fps: Optional[int] = None,
        parent: Optional[QObject] = None,
    ) -> None:
        super().__init__(parent)
        self.sink = QtTransformSink(self)
        self.engine = MorphEngine(config, sink=self.sink, seed=seed)
        engine_cfg = self.engine.config.get("engine", {}) or {}
        self.fps = int(fps or engine_cfg.get("fps", 60) or 60)
        self._timer = QTimer(self)
        self._timer.setInterval(max(1, int(round(1000.0 / self.fps))))
        self._timer.timeout.connect(self._on_tick)
        self._start: Optional[float] = None
        self._last: Optional[float] = None

    @pyqtSlot(result='QVariant')
    def getState(self):
        return self.engine.state()

    @pyqtSlot()
    def toggle(self):
        self.engine.toggle()
        self.stateChanged.emit(self.engine.state())

    @pyqtSlot(bool)
    def setAssembled(self, assembled):
        target = TargetState.ASSEMBLED if assembled else TargetState.SCATTERED
        if target is self.engine.target:
            return
        self.engine.set_target(target)
        self.stateChanged.emit(self.engine.state())

    @pyqtSlot()
    def start(self):
        now = time.perf_counter()
        self._start = now
        self._last = now
        self._timer.start()

    @pyqtSlot()
    def stop(self):
        self._timer.stop()

    def isRunning(self) -> bool:
        return self._timer.isActive()

    def step(self, now: Optional[float] = None):
        """Advance one frame; ``now`` defaults to ``time.perf_counter()``."""

        if now is None:
            now = time.perf_counter()
        if self._start is None:
            self._start = now
            self._last = now
        delta = now - (self._last if self._last is not None else now)
        self._last = now
        batches = self.engine.advance(now - self._start, delta)
        self.frameReady.emit(batches)
        return batches

    def _on_tick(self):
        self.step()
