"""Procedural samplers producing the endpoint positions of every family.

Each sampler is a pure function of its shape parameters and a random source.
Random values are consumed exclusively through ``rng.random()`` so a scripted
source yields exact, reproducible points.

The :data:`BUILTIN_SAMPLERS` table maps the sampler names used in family
configurations to factories returning a per-element callable
``sampler(index) -> Point3D``.
"""

from __future__ import annotations

import bisect
import math
from dataclasses import dataclass, field
from functools import cached_property
from typing import Callable, Dict, List, Mapping, Optional, Protocol, Sequence, Tuple

from .errors import FamilyConfigError

__all__ = [
    "RandomSource",
    "Point3D",
    "ScatterVolumeSpec",
    "ShellVolumeSpec",
    "BoxVolumeSpec",
    "ShapeVolumeSpec",
    "CurveSpec",
    "ElementSampler",
    "sample_scatter",
    "sample_shell",
    "sample_box",
    "sample_weighted_volume",
    "sample_along_curve",
    "sample_near_curve",
    "spiral_curve",
    "make_sampler",
    "BUILTIN_SAMPLERS",
]

_TAU = 2.0 * math.pi


class RandomSource(Protocol):
    """Anything exposing ``random() -> float`` in [0, 1), e.g. ``random.Random``."""

    def random(self) -> float:
        ...


@dataclass(frozen=True)
class Point3D:
    """Immutable 3D point."""

    x: float
    y: float
    z: float

    def as_tuple(self) -> Tuple[float, float, float]:
        return (self.x, self.y, self.z)

    def distance_to(self, other: "Point3D") -> float:
        dx = self.x - other.x
        dy = self.y - other.y
        dz = self.z - other.z
        return math.sqrt(dx * dx + dy * dy + dz * dz)


ElementSampler = Callable[[int], Point3D]


def _require(condition: bool, message: str) -> None:
    if not condition:
        raise FamilyConfigError(message)


def _finite(value: object, name: str) -> float:
    try:
        number = float(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        raise FamilyConfigError(f"{name} must be a number, got {value!r}") from None
    _require(math.isfinite(number), f"{name} must be finite, got {value!r}")
    return number


def _uniform(rng: RandomSource, low: float, high: float) -> float:
    return low + (high - low) * rng.random()


# ---------------------------------------------------------------------------
# Volume descriptions


@dataclass(frozen=True)
class ScatterVolumeSpec:
    """Sphere centred on the origin, sampled uniformly by volume."""

    radius: float

    def __post_init__(self) -> None:
        _require(_finite(self.radius, "scatter radius") > 0.0, f"scatter radius must be > 0, got {self.radius}")


@dataclass(frozen=True)
class ShellVolumeSpec:
    """Spherical shell ``inner_radius .. inner_radius + thickness``."""

    inner_radius: float
    thickness: float

    def __post_init__(self) -> None:
        _require(_finite(self.inner_radius, "shell inner radius") >= 0.0, "shell inner radius must be >= 0")
        _require(_finite(self.thickness, "shell thickness") > 0.0, "shell thickness must be > 0")


@dataclass(frozen=True)
class BoxVolumeSpec:
    """Axis aligned box centred on the origin."""

    half_extents: Tuple[float, float, float]

    def __post_init__(self) -> None:
        _require(len(self.half_extents) == 3, "box half extents need three values")
        for axis, value in zip("xyz", self.half_extents):
            _require(_finite(value, f"box half extent {axis}") > 0.0, f"box half extent {axis} must be > 0")


@dataclass(frozen=True)
class ShapeVolumeSpec:
    """Tapered cone volume, optionally wrapped in a spiral.

    ``bias_exponent`` skews the vertical distribution (1 = uniform, >1 bottom
    heavy). ``height_cap`` limits how far up the cone the biased coordinate
    reaches. ``radial_range`` is the jitter applied to the taper radius and
    distinguishes surface-hugging ornaments from filled foliage.
    """

    height: float
    base_radius: float
    y_offset: float = 0.0
    bias_exponent: float = 1.0
    turns: Optional[float] = None
    phase: float = 0.0
    angle_jitter: float = 0.0
    radial_range: Tuple[float, float] = (0.8, 1.0)
    height_cap: float = 1.0

    def __post_init__(self) -> None:
        _require(_finite(self.height, "shape height") > 0.0, f"shape height must be > 0, got {self.height}")
        _require(_finite(self.base_radius, "shape base radius") >= 0.0, f"shape base radius must be >= 0, got {self.base_radius}")
        _finite(self.y_offset, "shape y offset")
        _require(_finite(self.bias_exponent, "bias exponent") > 0.0, f"bias exponent must be > 0, got {self.bias_exponent}")
        if self.turns is not None:
            _require(_finite(self.turns, "spiral turns") >= 0.0, f"spiral turns must be >= 0, got {self.turns}")
        _finite(self.phase, "spiral phase")
        _require(_finite(self.angle_jitter, "angle jitter") >= 0.0, "angle jitter must be >= 0")
        _require(len(self.radial_range) == 2, "radial range needs two values")
        low, high = (_finite(v, "radial range") for v in self.radial_range)
        _require(0.0 <= low <= high, f"radial range must satisfy 0 <= low <= high, got {self.radial_range}")
        cap = _finite(self.height_cap, "height cap")
        _require(0.0 < cap <= 1.0, f"height cap must be in (0, 1], got {self.height_cap}")


@dataclass(frozen=True)
class CurveSpec:
    """Catmull-Rom spline through ``points`` (at least two)."""

    points: Tuple[Point3D, ...]
    divisions: int = field(default=200, compare=False)

    def __post_init__(self) -> None:
        pts = tuple(self.points)
        _require(len(pts) >= 2, f"a curve needs at least 2 control points, got {len(pts)}")
        for p in pts:
            for axis, value in zip("xyz", (p.x, p.y, p.z)):
                _finite(value, f"curve control point {axis}")
        _require(int(self.divisions) >= 1, "curve divisions must be >= 1")
        object.__setattr__(self, "points", pts)

    def evaluate(self, t: float) -> Point3D:
        pts = self.points
        segments = len(pts) - 1
        s = min(1.0, max(0.0, t)) * segments
        i = min(int(s), segments - 1)
        u = s - i
        p0 = pts[i - 1] if i > 0 else _reflect(pts[0], pts[1])
        p1 = pts[i]
        p2 = pts[i + 1]
        p3 = pts[i + 2] if i + 2 <= segments else _reflect(pts[-1], pts[-2])
        return _catmull_rom(p0, p1, p2, p3, u)

    @cached_property
    def _arc_lengths(self) -> List[float]:
        lengths = [0.0]
        prev = self.evaluate(0.0)
        for k in range(1, self.divisions + 1):
            current = self.evaluate(k / self.divisions)
            lengths.append(lengths[-1] + current.distance_to(prev))
            prev = current
        return lengths

    @property
    def length(self) -> float:
        return self._arc_lengths[-1]

    def arc_parameter(self, u: float) -> float:
        """Map an arc-length fraction ``u`` to the spline parameter ``t``."""

        u = min(1.0, max(0.0, u))
        lengths = self._arc_lengths
        total = lengths[-1]
        if total <= 0.0:
            return u
        target = u * total
        idx = bisect.bisect_left(lengths, target)
        if idx <= 0:
            return 0.0
        if idx >= len(lengths):
            return 1.0
        before = lengths[idx - 1]
        span = lengths[idx] - before
        local = (target - before) / span if span > 0 else 0.0
        return (idx - 1 + local) / self.divisions


def _reflect(anchor: Point3D, neighbour: Point3D) -> Point3D:
    return Point3D(2 * anchor.x - neighbour.x, 2 * anchor.y - neighbour.y, 2 * anchor.z - neighbour.z)


def _catmull_rom(p0: Point3D, p1: Point3D, p2: Point3D, p3: Point3D, u: float) -> Point3D:
    u2 = u * u
    u3 = u2 * u
    # Basis weights sum to one, so collinear control points stay on their line.
    w0 = 0.5 * (-u3 + 2.0 * u2 - u)
    w1 = 0.5 * (3.0 * u3 - 5.0 * u2 + 2.0)
    w2 = 0.5 * (-3.0 * u3 + 4.0 * u2 + u)
    w3 = 0.5 * (u3 - u2)
    return Point3D(
        w0 * p0.x + w1 * p1.x + w2 * p2.x + w3 * p3.x,
        w0 * p0.y + w1 * p1.y + w2 * p2.y + w3 * p3.y,
        w0 * p0.z + w1 * p1.z + w2 * p2.z + w3 * p3.z,
    )


# ---------------------------------------------------------------------------
# Samplers


def sample_scatter(radius: float, rng: RandomSource) -> Point3D:
    theta = _TAU * rng.random()
    phi = math.acos(2.0 * rng.random() - 1.0)
    r = radius * math.pow(rng.random(), 1.0 / 3.0)
    sin_phi = math.sin(phi)
    return Point3D(
        r * sin_phi * math.cos(theta),
        r * sin_phi * math.sin(theta),
        r * math.cos(phi),
    )


def sample_shell(spec: ShellVolumeSpec, rng: RandomSource) -> Point3D:
    theta = _TAU * rng.random()
    phi = math.acos(2.0 * rng.random() - 1.0)
    r = spec.inner_radius + math.pow(rng.random(), 1.0 / 3.0) * spec.thickness
    sin_phi = math.sin(phi)
    return Point3D(
        r * sin_phi * math.cos(theta),
        r * sin_phi * math.sin(theta),
        r * math.cos(phi),
    )


def sample_box(spec: BoxVolumeSpec, rng: RandomSource) -> Point3D:
    hx, hy, hz = spec.half_extents
    return Point3D(
        (rng.random() - 0.5) * 2.0 * hx,
        (rng.random() - 0.5) * 2.0 * hy,
        (rng.random() - 0.5) * 2.0 * hz,
    )


def sample_weighted_volume(spec: ShapeVolumeSpec, rng: RandomSource) -> Point3D:
    rel = math.pow(rng.random(), spec.bias_exponent) * spec.height_cap
    y = spec.y_offset - spec.height / 2.0 + rel * spec.height
    taper = spec.base_radius * (1.0 - rel)
    if spec.turns is None:
        theta = _TAU * rng.random()
    else:
        theta = rel * _TAU * spec.turns + spec.phase + (rng.random() - 0.5) * spec.angle_jitter
    low, high = spec.radial_range
    r = taper * _uniform(rng, low, high)
    return Point3D(r * math.cos(theta), y, r * math.sin(theta))


def sample_along_curve(curve: CurveSpec, t: float, arc_length: bool = False) -> Point3D:
    if arc_length:
        t = curve.arc_parameter(t)
    return curve.evaluate(t)


def sample_near_curve(curve: CurveSpec, radial_jitter: float, rng: RandomSource) -> Point3D:
    base = sample_along_curve(curve, rng.random(), arc_length=True)
    return Point3D(
        base.x + (rng.random() - 0.5) * radial_jitter,
        base.y + (rng.random() - 0.5) * radial_jitter,
        base.z + (rng.random() - 0.5) * radial_jitter,
    )


def spiral_curve(
    y_start: float = -5.0,
    y_end: float = 5.0,
    turns: float = 3.5,
    base_radius: float = 5.5,
    min_radius: float = 0.6,
    steps: int = 150,
) -> CurveSpec:
    """Control points of a conical helix wrapping the tree (garland strand)."""

    _require(int(steps) >= 1, "spiral steps must be >= 1")
    points: List[Point3D] = []
    for i in range(int(steps) + 1):
        t = i / steps
        y = y_start + (y_end - y_start) * t
        radius = base_radius * (1.0 - t) + min_radius
        angle = t * _TAU * turns
        points.append(Point3D(math.cos(angle) * radius, y, math.sin(angle) * radius))
    return CurveSpec(tuple(points))


# ---------------------------------------------------------------------------
# Configuration helpers


def _parse_vector_list(value: object) -> List[Tuple[float, float, float]]:
    """Accept ``"x y z; x y z"`` strings or sequences of triples."""

    if value is None:
        return []
    if isinstance(value, str):
        vectors: List[Tuple[float, float, float]] = []
        for token in value.replace("\r", "").split(";"):
            parts = [p for p in token.replace(",", " ").split() if p]
            if not parts:
                continue
            _require(len(parts) == 3, f"control point {token.strip()!r} needs three values")
            x, y, z = (_finite(p, "control point") for p in parts)
            vectors.append((x, y, z))
        return vectors
    out: List[Tuple[float, float, float]] = []
    for entry in value:  # type: ignore[union-attr]
        _require(isinstance(entry, Sequence) and len(entry) == 3, f"control point {entry!r} needs three values")
        x, y, z = (_finite(v, "control point") for v in entry)
        out.append((x, y, z))
    return out


def _pair(value: object, name: str) -> Tuple[float, float]:
    _require(isinstance(value, Sequence) and not isinstance(value, str) and len(value) == 2, f"{name} must be a [low, high] pair")
    low, high = (_finite(v, name) for v in value)  # type: ignore[union-attr]
    return (low, high)


def shape_spec_from_config(cfg: Mapping[str, object]) -> ShapeVolumeSpec:
    turns = cfg.get("turns")
    return ShapeVolumeSpec(
        height=_finite(cfg.get("height", 1.0), "shape height"),
        base_radius=_finite(cfg.get("baseRadius", 1.0), "shape base radius"),
        y_offset=_finite(cfg.get("yOffset", 0.0), "shape y offset"),
        bias_exponent=_finite(cfg.get("bias", 1.0), "bias exponent"),
        turns=None if turns is None else _finite(turns, "spiral turns"),
        phase=_finite(cfg.get("phase", 0.0), "spiral phase"),
        angle_jitter=_finite(cfg.get("angleJitter", 0.0), "angle jitter"),
        radial_range=_pair(cfg.get("radial", (0.8, 1.0)), "radial range"),
        height_cap=_finite(cfg.get("heightCap", 1.0), "height cap"),
    )


def curve_spec_from_config(cfg: Mapping[str, object]) -> CurveSpec:
    spiral = cfg.get("spiral")
    if isinstance(spiral, Mapping):
        return spiral_curve(
            y_start=_finite(spiral.get("yStart", -5.0), "spiral yStart"),
            y_end=_finite(spiral.get("yEnd", 5.0), "spiral yEnd"),
            turns=_finite(spiral.get("turns", 3.5), "spiral turns"),
            base_radius=_finite(spiral.get("baseRadius", 5.5), "spiral base radius"),
            min_radius=_finite(spiral.get("minRadius", 0.6), "spiral min radius"),
            steps=int(_finite(spiral.get("steps", 150), "spiral steps")),
        )
    vectors = _parse_vector_list(cfg.get("points"))
    return CurveSpec(tuple(Point3D(*v) for v in vectors))


def _make_sphere(cfg: Mapping[str, object], count: int, rng: RandomSource) -> ElementSampler:
    spec = ScatterVolumeSpec(_finite(cfg.get("radius", 1.0), "scatter radius"))
    return lambda index: sample_scatter(spec.radius, rng)


def _make_shell(cfg: Mapping[str, object], count: int, rng: RandomSource) -> ElementSampler:
    spec = ShellVolumeSpec(
        _finite(cfg.get("innerRadius", 0.0), "shell inner radius"),
        _finite(cfg.get("thickness", 1.0), "shell thickness"),
    )
    return lambda index: sample_shell(spec, rng)


def _make_box(cfg: Mapping[str, object], count: int, rng: RandomSource) -> ElementSampler:
    raw = cfg.get("halfExtents", (1.0, 1.0, 1.0))
    _require(isinstance(raw, Sequence) and not isinstance(raw, str), "box halfExtents must be a list")
    spec = BoxVolumeSpec(tuple(_finite(v, "box half extent") for v in raw))  # type: ignore[arg-type, union-attr]
    return lambda index: sample_box(spec, rng)


def _make_cone(cfg: Mapping[str, object], count: int, rng: RandomSource) -> ElementSampler:
    spec = shape_spec_from_config(cfg)
    return lambda index: sample_weighted_volume(spec, rng)


def _make_curve(cfg: Mapping[str, object], count: int, rng: RandomSource) -> ElementSampler:
    curve = curve_spec_from_config(cfg)
    denom = max(1, count)
    return lambda index: sample_along_curve(curve, index / denom, arc_length=True)


def _make_near_curve(cfg: Mapping[str, object], count: int, rng: RandomSource) -> ElementSampler:
    curve = curve_spec_from_config(cfg)
    jitter = _finite(cfg.get("jitter", 0.0), "curve jitter")
    _require(jitter >= 0.0, "curve jitter must be >= 0")
    return lambda index: sample_near_curve(curve, jitter, rng)


def _make_point(cfg: Mapping[str, object], count: int, rng: RandomSource) -> ElementSampler:
    raw = cfg.get("position", (0.0, 0.0, 0.0))
    _require(isinstance(raw, Sequence) and not isinstance(raw, str) and len(raw) == 3, "point position needs three values")
    point = Point3D(*(_finite(v, "point position") for v in raw))  # type: ignore[union-attr]
    return lambda index: point


BUILTIN_SAMPLERS: Dict[str, Callable[[Mapping[str, object], int, RandomSource], ElementSampler]] = {
    "sphere": _make_sphere,
    "shell": _make_shell,
    "box": _make_box,
    "cone": _make_cone,
    "curve": _make_curve,
    "near_curve": _make_near_curve,
    "point": _make_point,
}


def make_sampler(cfg: Mapping[str, object], count: int, rng: RandomSource) -> ElementSampler:
    """Build the per-element sampler described by ``cfg['kind']``."""

    kind = cfg.get("kind")
    factory = BUILTIN_SAMPLERS.get(kind) if isinstance(kind, str) else None
    if factory is None:
        known = ", ".join(sorted(BUILTIN_SAMPLERS))
        raise FamilyConfigError(f"unknown sampler kind {kind!r} (expected one of: {known})")
    return factory(cfg, count, rng)
