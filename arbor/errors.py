"""Errors raised while building element families."""

from __future__ import annotations

__all__ = ["FamilyConfigError"]


class FamilyConfigError(ValueError):
    """Raised when a family description cannot be turned into elements.

    Only construction paths raise it. Per-frame evaluation clamps numeric edge
    cases instead so a correctly built family never interrupts the frame loop.
    """
