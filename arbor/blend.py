"""Per-element blending between the scattered and assembled configurations.

Every strategy reads a :class:`~arbor.topology_registry.Family` and the
family's current progress and returns a :class:`FrameBatch`. Strategies are
the only per-frame writers of ``family.current`` and ``family.rotation``;
:meth:`Family.reset` seeds them when a family is (re)built.

Phase-stagger
    Closed form. ``delayed = clamp(ease(p) * stretch - phase * spread, 0, 1)``
    gives each point its own arrival time; requires ``stretch - spread >= 1``
    so every element has arrived once progress reaches 1.
Weighted lag
    Stateful. Each element chases ``mix(scatter, target, p)`` with a factor
    ``delta * rate / (max(weight, 1e-3) + offset)`` so light ornaments settle
    first and heavy ones trail behind.
Ambient drift
    Non-morphing families (snow, sparkles) whose positions move around their
    base position; only their opacity follows progress.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any, Callable, Dict, Mapping, Optional, Protocol, Sequence, Tuple

import numpy as np

from .colors import parse_color, parse_gradient_stops, sample_gradient
from .easing import get_easing, smoothstep
from .errors import FamilyConfigError
from .topology_registry import Family

__all__ = [
    "FrameBatch",
    "BlendStrategy",
    "PhaseStaggerBlend",
    "WeightedLagBlend",
    "AmbientDriftBlend",
    "STRATEGIES",
    "strategy_from_config",
    "WEIGHT_EPSILON",
]

WEIGHT_EPSILON = 1e-3
_NORM_EPSILON = 1e-6


@dataclass
class FrameBatch:
    """Per-element outputs of one family for one frame."""

    family: str
    progress: float
    positions: np.ndarray
    rotations: np.ndarray
    scales: np.ndarray
    colors: Optional[np.ndarray] = None
    alpha: Optional[np.ndarray] = None
    accents: Optional[np.ndarray] = None

    def __len__(self) -> int:
        return int(self.positions.shape[0])


class BlendStrategy(Protocol):
    def evaluate(self, family: Family, progress: float, elapsed: float, delta: float) -> FrameBatch:
        ...


def _number(cfg: Mapping[str, Any], key: str, default: float) -> float:
    value = cfg.get(key, default)
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise FamilyConfigError(f"blend parameter {key!r} must be a number, got {value!r}") from None
    if not math.isfinite(number):
        raise FamilyConfigError(f"blend parameter {key!r} must be finite, got {value!r}")
    return number


def _triple(cfg: Mapping[str, Any], key: str, default: Sequence[float]) -> np.ndarray:
    value = cfg.get(key, default)
    if not isinstance(value, Sequence) or isinstance(value, str) or len(value) != 3:
        raise FamilyConfigError(f"blend parameter {key!r} needs three values, got {value!r}")
    return np.array([_number({key: v}, key, 0.0) for v in value], dtype=np.float64)


def _empty_batch(family: Family, progress: float) -> FrameBatch:
    return FrameBatch(
        family=family.name,
        progress=progress,
        positions=np.zeros((0, 3)),
        rotations=np.zeros((0, 3)),
        scales=np.zeros(0),
    )


# ---------------------------------------------------------------------------
# Phase stagger (point clouds)


class PhaseStaggerBlend:
    def __init__(
        self,
        easing: str = "ease_in_out_cubic",
        stretch: float = 1.2,
        spread: float = 0.2,
        breath: float = 0.0,
        sway: float = 0.0,
        bob: float = 0.0,
        color_mode: str = "static",
        gradient: Optional[str] = None,
        height_range: Tuple[float, float] = (-5.0, 5.0),
        highlight: object = (1.0, 0.95, 0.8),
        sparkle_threshold: float = 0.992,
        alpha_base: float = 1.0,
        alpha_flicker: float = 0.0,
        alpha_floor: float = 1.0,
        sparkle_alpha: float = 0.8,
    ) -> None:
        if stretch <= 0 or spread < 0:
            raise FamilyConfigError(f"stretch must be > 0 and spread >= 0, got {stretch}, {spread}")
        if stretch - spread < 1.0 - 1e-9:
            raise FamilyConfigError(
                f"stretch - spread must be >= 1 or late elements never arrive (got {stretch} - {spread})"
            )
        if color_mode not in ("static", "sparkle"):
            raise FamilyConfigError(f"unknown colour mode {color_mode!r}")
        if height_range[1] <= height_range[0]:
            raise FamilyConfigError(f"height range must be increasing, got {height_range}")
        if not 0.0 <= alpha_floor <= 1.0:
            raise FamilyConfigError(f"alpha floor must be in [0, 1], got {alpha_floor}")
        self.ease = get_easing(easing)
        self.stretch = stretch
        self.spread = spread
        self.breath = breath
        self.sway = sway
        self.bob = bob
        self.color_mode = color_mode
        self.gradient = parse_gradient_stops(gradient) if gradient else None
        if color_mode == "sparkle" and self.gradient is None:
            raise FamilyConfigError("sparkle colour mode needs a gradient")
        self.height_range = height_range
        self.highlight = np.array(parse_color(highlight), dtype=np.float64)
        self.sparkle_threshold = sparkle_threshold
        self.alpha_base = alpha_base
        self.alpha_flicker = alpha_flicker
        self.alpha_floor = alpha_floor
        self.sparkle_alpha = sparkle_alpha

    @classmethod
    def from_config(cls, cfg: Mapping[str, Any]) -> "PhaseStaggerBlend":
        height = cfg.get("heightRange", (-5.0, 5.0))
        if not isinstance(height, Sequence) or isinstance(height, str) or len(height) != 2:
            raise FamilyConfigError(f"heightRange needs two values, got {height!r}")
        low, high = (_number({"heightRange": v}, "heightRange", 0.0) for v in height)
        return cls(
            easing=str(cfg.get("easing", "ease_in_out_cubic")),
            stretch=_number(cfg, "stretch", 1.2),
            spread=_number(cfg, "spread", 0.2),
            breath=_number(cfg, "breath", 0.0),
            sway=_number(cfg, "sway", 0.0),
            bob=_number(cfg, "bob", 0.0),
            color_mode=str(cfg.get("colorMode", "static")),
            gradient=cfg.get("gradient"),
            height_range=(low, high),
            highlight=cfg.get("highlight", (1.0, 0.95, 0.8)),
            sparkle_threshold=_number(cfg, "sparkleThreshold", 0.992),
            alpha_base=_number(cfg, "alphaBase", 1.0),
            alpha_flicker=_number(cfg, "alphaFlicker", 0.0),
            alpha_floor=_number(cfg, "alphaFloor", 1.0),
            sparkle_alpha=_number(cfg, "sparkleAlpha", 0.8),
        )

    def delayed(self, family: Family, progress: float) -> np.ndarray:
        t = float(self.ease(min(1.0, max(0.0, progress))))
        return np.clip(t * self.stretch - family.phase * self.spread, 0.0, 1.0)

    def evaluate(self, family: Family, progress: float, elapsed: float, delta: float) -> FrameBatch:
        if len(family) == 0:
            return _empty_batch(family, progress)
        phase = family.phase
        d = self.delayed(family, progress)[:, None]
        positions = family.scatter + (family.target - family.scatter) * d
        idle = 1.0 - progress

        if self.breath and idle > 0.0:
            norm = np.maximum(np.linalg.norm(positions, axis=1, keepdims=True), _NORM_EPSILON)
            pulse = np.sin(1.5 * elapsed + 10.0 * phase)[:, None] * self.breath * idle
            positions = positions + positions / norm * pulse
        if self.sway and idle > 0.0:
            x = positions[:, 0].copy()
            y = positions[:, 1].copy()
            positions[:, 0] = x + np.sin(0.5 * elapsed + y) * self.sway * idle
            positions[:, 1] = y + np.cos(0.3 * elapsed + x) * self.sway * idle
        if self.bob and idle > 0.0:
            positions[:, 1] += np.sin(elapsed + 10.0 * phase) * self.bob * idle

        family.current[...] = positions

        sparkle = np.zeros(len(family))
        if self.color_mode == "sparkle":
            low, high = self.height_range
            height_mix = (family.target[:, 1] - low) / (high - low)
            base = sample_gradient(self.gradient, height_mix)  # type: ignore[arg-type]
            sparkle = smoothstep(self.sparkle_threshold, 1.0, np.sin(3.0 * elapsed + 100.0 * phase))
            sparkle = sparkle * (0.3 + 0.7 * progress)
            colors = base + (self.highlight - base) * sparkle[:, None]
        else:
            colors = np.array(family.color)

        flicker = self.alpha_flicker * np.sin(5.0 * elapsed + 50.0 * phase)
        alpha = (self.alpha_base + flicker) * (self.alpha_floor + (1.0 - self.alpha_floor) * progress)
        alpha = np.clip(alpha + sparkle * self.sparkle_alpha, 0.0, 1.0)

        return FrameBatch(
            family=family.name,
            progress=progress,
            positions=positions.copy(),
            rotations=np.array(family.rotation),
            scales=np.array(family.size),
            colors=colors,
            alpha=alpha,
        )


# ---------------------------------------------------------------------------
# Weighted lag (rigid instances)


class WeightedLagBlend:
    def __init__(
        self,
        base_rate: float = 2.0,
        offset: float = 0.5,
        tumble: bool = True,
        settle_spin: float = 0.1,
        bob: float = 0.0,
        pulse: float = 0.0,
        pulse_rate: float = 2.0,
    ) -> None:
        if base_rate <= 0:
            raise FamilyConfigError(f"lag rate must be > 0, got {base_rate}")
        if offset < 0:
            raise FamilyConfigError(f"lag offset must be >= 0, got {offset}")
        self.base_rate = base_rate
        self.offset = offset
        self.tumble = tumble
        self.settle_spin = settle_spin
        self.bob = bob
        self.pulse = pulse
        self.pulse_rate = pulse_rate

    @classmethod
    def from_config(cls, cfg: Mapping[str, Any]) -> "WeightedLagBlend":
        return cls(
            base_rate=_number(cfg, "rate", 2.0),
            offset=_number(cfg, "offset", 0.5),
            tumble=bool(cfg.get("tumble", True)),
            settle_spin=_number(cfg, "settleSpin", 0.1),
            bob=_number(cfg, "bob", 0.0),
            pulse=_number(cfg, "pulse", 0.0),
            pulse_rate=_number(cfg, "pulseRate", 2.0),
        )

    def factors(self, family: Family, delta: float) -> np.ndarray:
        if family.has_weight:
            rate = self.base_rate / (np.maximum(family.weight, WEIGHT_EPSILON) + self.offset)
        else:
            rate = np.full(len(family), self.base_rate)
        return np.clip(delta * rate, 0.0, 1.0)

    def evaluate(self, family: Family, progress: float, elapsed: float, delta: float) -> FrameBatch:
        if len(family) == 0:
            return _empty_batch(family, progress)
        goal = family.scatter + (family.target - family.scatter) * progress
        factor = self.factors(family, delta)[:, None]
        family.current += (goal - family.current) * factor

        idle = 1.0 - progress
        if self.tumble and idle > 0.0:
            turn = family.spin * delta * idle
            family.rotation[:, 0] += turn
            family.rotation[:, 1] += turn
        if self.settle_spin and progress > 0.0:
            family.rotation[:, 1] += family.spin * self.settle_spin * delta * progress

        positions = family.current.copy()
        if self.bob and idle > 0.0:
            positions[:, 1] += np.sin(elapsed + 2.0 * math.pi * family.phase) * self.bob * idle

        scales = np.array(family.scale)
        if self.pulse:
            scales = scales * (1.0 + self.pulse * math.sin(self.pulse_rate * elapsed))

        return FrameBatch(
            family=family.name,
            progress=progress,
            positions=positions,
            rotations=family.rotation.copy(),
            scales=scales,
            colors=np.array(family.color),
            accents=None if family.accent is None else np.array(family.accent),
        )


# ---------------------------------------------------------------------------
# Ambient drift (snow, sparkles)


_WAVES: Dict[str, Callable[[np.ndarray], np.ndarray]] = {"sin": np.sin, "cos": np.cos}


class AmbientDriftBlend:
    def __init__(
        self,
        amplitude: Sequence[float] = (0.0, 0.0, 0.0),
        frequency: Sequence[float] = (0.0, 0.0, 0.0),
        phase_scale: Sequence[float] = (0.0, 0.0, 0.0),
        waves: Sequence[str] = ("sin", "cos", "sin"),
        fall_speed: float = 0.0,
        fall_height: float = 25.0,
        max_opacity: float = 1.0,
    ) -> None:
        if len(waves) != 3 or any(w not in _WAVES for w in waves):
            raise FamilyConfigError(f"drift waves must be three of {sorted(_WAVES)}, got {waves!r}")
        if fall_speed < 0 or fall_height <= 0:
            raise FamilyConfigError("fall speed must be >= 0 and fall height > 0")
        if not 0.0 <= max_opacity <= 1.0:
            raise FamilyConfigError(f"max opacity must be in [0, 1], got {max_opacity}")
        self.amplitude = np.asarray(amplitude, dtype=np.float64)
        self.frequency = np.asarray(frequency, dtype=np.float64)
        self.phase_scale = np.asarray(phase_scale, dtype=np.float64)
        self.waves = tuple(waves)
        self.fall_speed = fall_speed
        self.fall_height = fall_height
        self.max_opacity = max_opacity

    @classmethod
    def from_config(cls, cfg: Mapping[str, Any]) -> "AmbientDriftBlend":
        waves = cfg.get("driftWave", "sin,cos,sin")
        if isinstance(waves, str):
            waves = [w.strip() for w in waves.split(",")]
        return cls(
            amplitude=_triple(cfg, "driftAmp", (0.0, 0.0, 0.0)),
            frequency=_triple(cfg, "driftFreq", (0.0, 0.0, 0.0)),
            phase_scale=_triple(cfg, "driftPhase", (0.0, 0.0, 0.0)),
            waves=list(waves),
            fall_speed=_number(cfg, "fallSpeed", 0.0),
            fall_height=_number(cfg, "fallHeight", 25.0),
            max_opacity=_number(cfg, "maxOpacity", 1.0),
        )

    def evaluate(self, family: Family, progress: float, elapsed: float, delta: float) -> FrameBatch:
        if len(family) == 0:
            return _empty_batch(family, progress)
        phase = family.phase
        positions = np.array(family.scatter)
        if self.fall_speed:
            half = self.fall_height / 2.0
            fallen = positions[:, 1] + half - self.fall_speed * (0.5 + phase) * elapsed
            positions[:, 1] = np.mod(fallen, self.fall_height) - half
        for axis, wave in enumerate(self.waves):
            if self.amplitude[axis]:
                arg = self.frequency[axis] * elapsed + self.phase_scale[axis] * phase
                positions[:, axis] += _WAVES[wave](arg) * self.amplitude[axis]
        family.current[...] = positions

        return FrameBatch(
            family=family.name,
            progress=progress,
            positions=positions.copy(),
            rotations=np.array(family.rotation),
            scales=np.array(family.size),
            colors=np.array(family.color),
            alpha=np.full(len(family), progress * self.max_opacity),
        )


STRATEGIES: Dict[str, Callable[[Mapping[str, Any]], BlendStrategy]] = {
    "phase": PhaseStaggerBlend.from_config,
    "lag": WeightedLagBlend.from_config,
    "drift": AmbientDriftBlend.from_config,
}


def strategy_from_config(name: object, cfg: Optional[Mapping[str, Any]] = None) -> BlendStrategy:
    factory = STRATEGIES.get(name) if isinstance(name, str) else None
    if factory is None:
        known = ", ".join(sorted(STRATEGIES))
        raise FamilyConfigError(f"unknown blend strategy {name!r} (expected one of: {known})")
    return factory(cfg or {})
