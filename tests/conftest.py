import os

os.environ.setdefault("QT_QPA_PLATFORM", "offscreen")

import pytest

from arbor.control.config import DEFAULTS, merge_config

SMALL_COUNTS = {
    "foliage": 120,
    "garland_wire": 60,
    "garland_bulbs": 24,
    "ornaments_pearl": 7,
    "ornaments_crimson": 4,
    "ornaments_diamond": 3,
    "tiny_baubles": 5,
    "gift_boxes": 12,
    "star": 1,
    "snow": 30,
    "sparkles": 40,
}


class ScriptedRandom:
    """Random source replaying a fixed sequence (cycled)."""

    def __init__(self, values):
        self._values = list(values)
        self._index = 0
        self.calls = 0

    def random(self):
        value = self._values[self._index % len(self._values)]
        self._index += 1
        self.calls += 1
        return value


@pytest.fixture
def scripted_rng():
    return ScriptedRandom


@pytest.fixture
def small_config():
    """Default scene with every family shrunk to a handful of elements."""
    return merge_config(
        DEFAULTS,
        {
            "engine": {"seed": 11},
            "families": {name: {"count": count} for name, count in SMALL_COUNTS.items()},
        },
    )


@pytest.fixture
def qapp():
    from PyQt5 import QtCore

    app = QtCore.QCoreApplication.instance()
    if app is None:
        app = QtCore.QCoreApplication([])
    yield app
