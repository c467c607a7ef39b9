"""Consumers of per-frame :class:`~arbor.blend.FrameBatch` outputs.

The engine only knows the :class:`TransformSink` protocol. A renderer (a Qt
widget, a web view behind a QWebChannel, a file writer) subscribes to
:class:`QtTransformSink`; tests and headless runs use :class:`RecordingSink`.
"""

from __future__ import annotations

from collections import deque
from typing import TYPE_CHECKING, Deque, Dict, List, Optional, Protocol

from PyQt5.QtCore import QObject, pyqtSignal

if TYPE_CHECKING:
    from ..blend import FrameBatch

__all__ = ["TransformSink", "QtTransformSink", "RecordingSink"]


class TransformSink(Protocol):
    def push(self, batch: "FrameBatch") -> None:
        ...


class QtTransformSink(QObject):
    """Re-emits every batch as a Qt signal (queued across threads)."""

    batchReady = pyqtSignal(object)

    def __init__(self, parent: Optional[QObject] = None) -> None:
        super().__init__(parent)
        self.pushed = 0

    def push(self, batch: "FrameBatch") -> None:
        self.pushed += 1
        self.batchReady.emit(batch)


class RecordingSink:
    """Keeps the latest batch per family and a bounded history."""

    def __init__(self, history: int = 0) -> None:
        self.latest: Dict[str, "FrameBatch"] = {}
        self.history: Deque["FrameBatch"] = deque(maxlen=history if history > 0 else None)
        self._keep_history = history > 0
        self.pushed = 0

    def push(self, batch: "FrameBatch") -> None:
        self.latest[batch.family] = batch
        if self._keep_history:
            self.history.append(batch)
        self.pushed += 1

    def families(self) -> List[str]:
        return list(self.latest.keys())

    def clear(self) -> None:
        self.latest.clear()
        self.history.clear()
        self.pushed = 0
