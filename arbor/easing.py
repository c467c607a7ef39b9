"""Easing curves mapping linear progress in [0, 1] onto [0, 1].

All functions accept floats or numpy arrays.
"""

from __future__ import annotations

from typing import Callable, Dict

import numpy as np

from .errors import FamilyConfigError

__all__ = [
    "ease_linear",
    "ease_in_out_quad",
    "ease_in_out_cubic",
    "smoothstep",
    "EASINGS",
    "get_easing",
]


def ease_linear(t):
    return t


def ease_in_out_quad(t):
    """Quadratic ease-in-out (slow start, fast middle, slow end)."""
    if isinstance(t, np.ndarray):
        return np.where(t < 0.5, 2 * t * t, 1 - (-2 * t + 2) ** 2 / 2)
    return 2 * t * t if t < 0.5 else 1 - (-2 * t + 2) ** 2 / 2


def ease_in_out_cubic(t):
    """Cubic ease-in-out: ``4t^3`` below 0.5, ``1 - (-2t + 2)^3 / 2`` above."""
    if isinstance(t, np.ndarray):
        return np.where(t < 0.5, 4 * t ** 3, 1 - (-2 * t + 2) ** 3 / 2)
    return 4 * t ** 3 if t < 0.5 else 1 - (-2 * t + 2) ** 3 / 2


def smoothstep(edge0: float, edge1: float, x):
    if edge0 == edge1:
        return np.where(np.asarray(x) < edge0, 0.0, 1.0)
    t = np.clip((np.asarray(x, dtype=np.float64) - edge0) / (edge1 - edge0), 0.0, 1.0)
    return t * t * (3.0 - 2.0 * t)


EASINGS: Dict[str, Callable] = {
    "linear": ease_linear,
    "ease_in_out_quad": ease_in_out_quad,
    "ease_in_out_cubic": ease_in_out_cubic,
}


def get_easing(name: str) -> Callable:
    try:
        return EASINGS[name]
    except KeyError:
        known = ", ".join(sorted(EASINGS))
        raise FamilyConfigError(f"unknown easing {name!r} (expected one of: {known})") from None
