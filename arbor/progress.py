"""Frame-rate independent progress towards the requested state."""

from __future__ import annotations

import math
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Union

from .errors import FamilyConfigError

__all__ = ["TargetState", "FamilyState", "ProgressController", "SETTLE_EPSILON", "damp"]

SETTLE_EPSILON = 1e-4


class TargetState(Enum):
    SCATTERED = 0.0
    ASSEMBLED = 1.0

    @property
    def opposite(self) -> "TargetState":
        return TargetState.SCATTERED if self is TargetState.ASSEMBLED else TargetState.ASSEMBLED

    @classmethod
    def coerce(cls, value: Union["TargetState", bool, str, float]) -> "TargetState":
        if isinstance(value, TargetState):
            return value
        if isinstance(value, str):
            try:
                return cls[value.strip().upper()]
            except KeyError:
                raise FamilyConfigError(f"unknown target state {value!r}") from None
        return cls.ASSEMBLED if value else cls.SCATTERED


@dataclass
class FamilyState:
    progress: float = 0.0
    target: TargetState = TargetState.SCATTERED
    tau: float = 1.0


def damp(current: float, goal: float, delta: float, tau: float) -> float:
    """Exponential approach: ``goal - (goal - current) * exp(-delta / tau)``."""

    if not (delta > 0.0):
        return current
    return goal - (goal - current) * math.exp(-delta / tau)


class ProgressController:
    """Owns one family's transition progress.

    With ``invert`` set the controller tracks the opposite of the requested
    state, for families that are shown while the others are scattered.
    """

    def __init__(
        self,
        tau: float,
        initial: Optional[FamilyState] = None,
        invert: bool = False,
    ) -> None:
        try:
            tau = float(tau)
        except (TypeError, ValueError):
            raise FamilyConfigError(f"time constant must be a number, got {tau!r}") from None
        if not math.isfinite(tau) or tau <= 0.0:
            raise FamilyConfigError(f"time constant must be > 0, got {tau}")
        self.invert = invert
        if initial is None:
            initial = FamilyState(tau=tau)
        self.state = FamilyState(
            progress=min(1.0, max(0.0, float(initial.progress))),
            target=initial.target,
            tau=tau,
        )

    @property
    def progress(self) -> float:
        return self.state.progress

    @property
    def tau(self) -> float:
        return self.state.tau

    def _goal(self, target: TargetState) -> float:
        return target.opposite.value if self.invert else target.value

    @property
    def settled(self) -> bool:
        return abs(self.state.progress - self._goal(self.state.target)) <= SETTLE_EPSILON

    def update(self, target: Union[TargetState, bool, str], delta: float) -> float:
        """Advance by ``delta`` seconds; negative or NaN deltas count as zero."""

        target = TargetState.coerce(target)
        self.state.target = target
        try:
            delta = float(delta)
        except (TypeError, ValueError):
            delta = 0.0
        if math.isnan(delta) or delta < 0.0:
            delta = 0.0
        progress = damp(self.state.progress, self._goal(target), delta, self.state.tau)
        self.state.progress = min(1.0, max(0.0, progress))
        return self.state.progress
