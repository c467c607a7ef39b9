"""Element registry: builds and owns every animated element of a family.

A family is built once from its samplers and attribute rules. The endpoint
positions, phase and static visuals of an element never change afterwards;
when the element count or any family parameter changes the family is rebuilt
wholesale. Only the blend strategies write the transient ``current`` and
``rotation`` arrays.

Family descriptions can also live in JSON files (one family per file) so new
families can be dropped into a directory and picked up by
:class:`FamilyLibrary` without touching Python code.
"""

from __future__ import annotations

import json
import math
import random
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, Iterator, List, Mapping, Optional, Sequence, Tuple

import numpy as np

from .colors import RGB, WeightedPalette
from .errors import FamilyConfigError
from .placement import place_batch
from .topology_generators import ElementSampler, Point3D, RandomSource, make_sampler

__all__ = [
    "Element",
    "ElementAttributes",
    "AttributeFactory",
    "PlacementRule",
    "Family",
    "build_family",
    "build_family_from_config",
    "FamilyRegistry",
    "FamilyDefinition",
    "FamilyLibrary",
    "load_family_library",
]


@dataclass(frozen=True)
class Element:
    """One animated element; immutable once built."""

    index: int
    scatter_pos: Point3D
    target_pos: Point3D
    phase: float
    size: float
    color: RGB
    scale: float
    rotation: Tuple[float, float, float]
    spin: float
    weight: Optional[float] = None
    accent: Optional[RGB] = None
    fallback: bool = False


@dataclass(frozen=True)
class ElementAttributes:
    size: float
    color: RGB
    scale: float
    rotation: Tuple[float, float, float]
    spin: float
    weight: Optional[float] = None
    accent: Optional[RGB] = None


def _number(value: object, name: str) -> float:
    try:
        number = float(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        raise FamilyConfigError(f"{name} must be a number, got {value!r}") from None
    if not math.isfinite(number):
        raise FamilyConfigError(f"{name} must be finite, got {value!r}")
    return number


def _range(value: object, name: str) -> Tuple[float, float]:
    """A number ``v`` means ``(v, v)``; a pair means a uniform range."""

    if isinstance(value, Sequence) and not isinstance(value, str):
        if len(value) != 2:
            raise FamilyConfigError(f"{name} must be a number or a [low, high] pair")
        low, high = _number(value[0], name), _number(value[1], name)
    else:
        low = high = _number(value, name)
    if low > high:
        raise FamilyConfigError(f"{name} range is inverted: {low} > {high}")
    return (low, high)


class AttributeFactory:
    """Draws the static visual attributes of one element."""

    def __init__(
        self,
        palette: WeightedPalette,
        sizes: Sequence[Tuple[float, float, float]] = ((1.0, 1.0, 1.0),),
        scale: Tuple[float, float] = (1.0, 1.0),
        spin: Tuple[float, float] = (0.0, 0.0),
        weight: Optional[Tuple[float, float]] = None,
        random_rotation: bool = False,
    ) -> None:
        if not sizes:
            raise FamilyConfigError("size rules must not be empty")
        total = sum(prob for prob, _, _ in sizes)
        if total <= 0 or any(prob < 0 for prob, _, _ in sizes):
            raise FamilyConfigError("size rule probabilities must be >= 0 and not all zero")
        for _, low, high in sizes:
            if low < 0 or low > high:
                raise FamilyConfigError(f"invalid size range [{low}, {high}]")
        if scale[0] < 0:
            raise FamilyConfigError(f"scale must be >= 0, got {scale}")
        if weight is not None and (weight[0] < 0 or weight[1] > 1):
            raise FamilyConfigError(f"weight must lie in [0, 1], got {weight}")
        self.palette = palette
        self.sizes = [(prob / total, low, high) for prob, low, high in sizes]
        self.scale = scale
        self.spin = spin
        self.weight = weight
        self.random_rotation = random_rotation

    @classmethod
    def from_config(cls, cfg: Mapping[str, Any]) -> "AttributeFactory":
        raw_sizes = cfg.get("sizes", 1.0)
        sizes: List[Tuple[float, float, float]] = []
        if isinstance(raw_sizes, Sequence) and raw_sizes and isinstance(raw_sizes[0], Sequence):
            for rule in raw_sizes:
                if len(rule) != 3:
                    raise FamilyConfigError(f"size rule {rule!r} must be [probability, low, high]")
                sizes.append((_number(rule[0], "size probability"), *_range(rule[1:], "size")))
        else:
            sizes.append((1.0, *_range(raw_sizes, "size")))
        low, high = _range(cfg.get("scale", 1.0), "scale")
        multiplier = _number(cfg.get("scaleMultiplier", 1.0), "scale multiplier")
        raw_weight = cfg.get("weight")
        return cls(
            palette=WeightedPalette.from_config(cfg.get("palette", "#FFFFFF")),
            sizes=sizes,
            scale=(low * multiplier, high * multiplier),
            spin=_range(cfg.get("spin", 0.0), "spin"),
            weight=None if raw_weight is None else _range(raw_weight, "weight"),
            random_rotation=bool(cfg.get("randomRotation", False)),
        )

    def _size(self, rng: RandomSource) -> float:
        r = rng.random()
        acc = 0.0
        for prob, low, high in self.sizes:
            acc += prob
            if r <= acc:
                return low + (high - low) * rng.random()
        _, low, high = self.sizes[-1]
        return low + (high - low) * rng.random()

    def __call__(self, index: int, rng: RandomSource) -> ElementAttributes:
        size = self._size(rng)
        entry = self.palette.pick(rng)
        scale = self.scale[0] + (self.scale[1] - self.scale[0]) * rng.random()
        if self.random_rotation:
            rotation = (rng.random() * math.pi, rng.random() * math.pi, 0.0)
        else:
            rotation = (0.0, 0.0, 0.0)
        spin = self.spin[0] + (self.spin[1] - self.spin[0]) * rng.random()
        weight = None
        if self.weight is not None:
            weight = self.weight[0] + (self.weight[1] - self.weight[0]) * rng.random()
        return ElementAttributes(size, entry.color, scale, rotation, spin, weight, entry.accent)


@dataclass(frozen=True)
class PlacementRule:
    min_distance: float
    max_attempts: int
    fallback: Optional[ElementSampler] = None


def _readonly(array: np.ndarray) -> np.ndarray:
    array.setflags(write=False)
    return array


class Family:
    """Elements of one family plus their packed per-element arrays."""

    def __init__(self, name: str, elements: Sequence[Element], morphs: bool = True) -> None:
        self.name = name
        self.elements: Tuple[Element, ...] = tuple(elements)
        self.morphs = morphs
        n = len(self.elements)
        self.scatter = _readonly(np.array([e.scatter_pos.as_tuple() for e in self.elements], dtype=np.float64).reshape(n, 3))
        self.target = _readonly(np.array([e.target_pos.as_tuple() for e in self.elements], dtype=np.float64).reshape(n, 3))
        self.phase = _readonly(np.array([e.phase for e in self.elements], dtype=np.float64))
        self.size = _readonly(np.array([e.size for e in self.elements], dtype=np.float64))
        self.scale = _readonly(np.array([e.scale for e in self.elements], dtype=np.float64))
        self.spin = _readonly(np.array([e.spin for e in self.elements], dtype=np.float64))
        self.color = _readonly(np.array([e.color for e in self.elements], dtype=np.float64).reshape(n, 3))
        self.weight = _readonly(
            np.array([1.0 if e.weight is None else e.weight for e in self.elements], dtype=np.float64)
        )
        self.has_weight = any(e.weight is not None for e in self.elements)
        if any(e.accent is not None for e in self.elements):
            self.accent: Optional[np.ndarray] = _readonly(
                np.array([e.accent if e.accent is not None else e.color for e in self.elements], dtype=np.float64).reshape(n, 3)
            )
        else:
            self.accent = None
        self.initial_rotation = _readonly(np.array([e.rotation for e in self.elements], dtype=np.float64).reshape(n, 3))
        self.current = np.empty((n, 3), dtype=np.float64)
        self.rotation = np.empty((n, 3), dtype=np.float64)
        self.reset()

    def __len__(self) -> int:
        return len(self.elements)

    def __iter__(self) -> Iterator[Element]:
        return iter(self.elements)

    def reset(self, progress: float = 0.0) -> None:
        """Put every element at rest for ``progress`` (0 is the scatter position)."""

        self.current[...] = self.scatter + (self.target - self.scatter) * progress
        self.rotation[...] = self.initial_rotation

    @property
    def fallback_count(self) -> int:
        return sum(1 for e in self.elements if e.fallback)


def build_family(
    name: str,
    count: int,
    scatter_sampler: ElementSampler,
    target_sampler: Optional[ElementSampler],
    attribute_factory: Callable[[int, RandomSource], ElementAttributes],
    rng: RandomSource,
    placement: Optional[PlacementRule] = None,
) -> Family:
    """Draw ``count`` elements; scatter and target are sampled independently.

    ``target_sampler=None`` builds a non-morphing family whose target equals
    its scatter position.
    """

    if isinstance(count, bool) or not isinstance(count, int):
        raise FamilyConfigError(f"{name}: element count must be an integer, got {count!r}")
    if count < 0:
        raise FamilyConfigError(f"{name}: element count must be >= 0, got {count}")

    fallbacks = [False] * count
    if placement is not None:
        batch = place_batch(count, scatter_sampler, placement.min_distance, placement.max_attempts, placement.fallback)
        scatter_points = batch.points
        fallbacks = [p.fallback for p in batch.placements]
    else:
        scatter_points = [scatter_sampler(i) for i in range(count)]

    elements: List[Element] = []
    for index in range(count):
        scatter_pos = scatter_points[index]
        target_pos = target_sampler(index) if target_sampler is not None else scatter_pos
        phase = rng.random()
        attrs = attribute_factory(index, rng)
        elements.append(
            Element(
                index=index,
                scatter_pos=scatter_pos,
                target_pos=target_pos,
                phase=phase,
                size=attrs.size,
                color=attrs.color,
                scale=attrs.scale,
                rotation=attrs.rotation,
                spin=attrs.spin,
                weight=attrs.weight,
                accent=attrs.accent,
                fallback=fallbacks[index],
            )
        )
    return Family(name, elements, morphs=target_sampler is not None)


def build_family_from_config(name: str, cfg: Mapping[str, Any], rng: RandomSource) -> Family:
    """Build a family from its configuration mapping (see ``arbor.control.config``)."""

    count = cfg.get("count", 0)
    if isinstance(count, float) and count.is_integer():
        count = int(count)
    if isinstance(count, bool) or not isinstance(count, int):
        raise FamilyConfigError(f"{name}: element count must be an integer, got {count!r}")
    scatter_cfg = cfg.get("scatter")
    if not isinstance(scatter_cfg, Mapping):
        raise FamilyConfigError(f"{name}: missing scatter sampler")
    target_cfg = cfg.get("target")
    if target_cfg is not None and not isinstance(target_cfg, Mapping):
        raise FamilyConfigError(f"{name}: target sampler must be a mapping")
    try:
        scatter_sampler = make_sampler(scatter_cfg, count, rng)
        target_sampler = make_sampler(target_cfg, count, rng) if target_cfg is not None else None
        placement = None
        placement_cfg = cfg.get("placement")
        if isinstance(placement_cfg, Mapping):
            fallback_cfg = placement_cfg.get("fallback")
            placement = PlacementRule(
                min_distance=_number(placement_cfg.get("minDistance", 0.0), "minimum distance"),
                max_attempts=int(_number(placement_cfg.get("maxAttempts", 50), "max attempts")),
                fallback=make_sampler(fallback_cfg, count, rng) if isinstance(fallback_cfg, Mapping) else None,
            )
        factory = AttributeFactory.from_config(cfg.get("attributes", {}))
        return build_family(name, count, scatter_sampler, target_sampler, factory, rng, placement)
    except FamilyConfigError as exc:
        if str(exc).startswith(f"{name}:"):
            raise
        raise FamilyConfigError(f"{name}: {exc}") from exc


class FamilyRegistry:
    """Owns every built family. Rebuilds are wholesale, never incremental."""

    def __init__(self, seed: Optional[int] = None) -> None:
        self.seed = seed
        self._families: Dict[str, Family] = {}

    def _rng_for(self, name: str) -> random.Random:
        if self.seed is None:
            return random.Random()
        return random.Random(f"{self.seed}:{name}")

    def rebuild(self, configs: Mapping[str, Mapping[str, Any]]) -> Dict[str, Family]:
        """Replace every family with freshly built ones.

        The new families are built before any old one is dropped so a
        configuration error leaves the registry untouched.
        """

        built = {name: build_family_from_config(name, cfg, self._rng_for(name)) for name, cfg in configs.items()}
        self._families = built
        return dict(built)

    def get(self, name: str) -> Family:
        return self._families[name]

    def names(self) -> Tuple[str, ...]:
        return tuple(self._families.keys())

    def __iter__(self) -> Iterator[Family]:
        return iter(self._families.values())

    def __len__(self) -> int:
        return len(self._families)


# ---------------------------------------------------------------------------
# JSON family library


@dataclass
class FamilyDefinition:
    """A family configuration read from a JSON file."""

    name: str
    path: Path
    config: Dict[str, Any]


class FamilyLibrary:
    """Loads family definitions from ``*.json`` files under a directory.

    Each file holds ``{"family": {...}}``; the family name is the ``name``
    key when present, else the file stem.
    """

    def __init__(self, directory: Path | str) -> None:
        self.directory = Path(directory)
        self._definitions: Dict[str, FamilyDefinition] = {}
        self.reload()

    def reload(self) -> None:
        self._definitions.clear()
        if not self.directory.is_dir():
            return
        for path in sorted(self.directory.glob("**/*.json")):
            if not path.is_file():
                continue
            definition = self._load_file(path)
            self._definitions[definition.name] = definition

    def _load_file(self, path: Path) -> FamilyDefinition:
        try:
            raw = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            raise FamilyConfigError(f"cannot read family file {path}: {exc}") from exc
        family = raw.get("family") if isinstance(raw, dict) else None
        if not isinstance(family, dict):
            raise FamilyConfigError(f"family file {path} has no 'family' object")
        config = dict(family)
        name = str(config.pop("name", None) or path.stem)
        return FamilyDefinition(name=name, path=path, config=config)

    def get(self, name: str) -> Optional[FamilyDefinition]:
        return self._definitions.get(name)

    def names(self) -> Tuple[str, ...]:
        return tuple(self._definitions.keys())

    def configs(self) -> Dict[str, Dict[str, Any]]:
        return {name: dict(d.config) for name, d in self._definitions.items()}


def load_family_library(directory: Path | str) -> Dict[str, Dict[str, Any]]:
    """Family configurations found under ``directory``, keyed by name."""

    return FamilyLibrary(directory).configs()
