"""Rejection-sampled placement with a minimum pairwise distance.

Families that must not visibly overlap (rigid gift boxes) draw their points
through :func:`place_batch`. Each point gets at most ``max_attempts`` draws
from the regular sampler; after that a single draw from a looser fallback
sampler is accepted unconditionally and flagged, so construction always ends
after at most ``count * (max_attempts + 1)`` sampler calls.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from .errors import FamilyConfigError
from .topology_generators import ElementSampler, Point3D

__all__ = ["Placement", "PlacementBatch", "SeparationGrid", "place_with_min_separation", "place_batch"]

_NEIGHBOUR_OFFSETS = [(dx, dy, dz) for dx in (-1, 0, 1) for dy in (-1, 0, 1) for dz in (-1, 0, 1)]


@dataclass(frozen=True)
class Placement:
    point: Point3D
    fallback: bool
    attempts: int


@dataclass
class PlacementBatch:
    placements: List[Placement] = field(default_factory=list)
    sampler_calls: int = 0

    @property
    def points(self) -> List[Point3D]:
        return [p.point for p in self.placements]

    @property
    def fallback_count(self) -> int:
        return sum(1 for p in self.placements if p.fallback)


class SeparationGrid:
    """Spatial hash of accepted points, one cell per ``min_distance``."""

    def __init__(self, min_distance: float) -> None:
        if not math.isfinite(min_distance) or min_distance < 0:
            raise FamilyConfigError(f"minimum distance must be >= 0, got {min_distance}")
        self.min_distance = float(min_distance)
        self._cell = self.min_distance if self.min_distance > 0 else 1.0
        self._grid: Dict[Tuple[int, int, int], List[Point3D]] = {}
        self._count = 0

    def __len__(self) -> int:
        return self._count

    def _key(self, point: Point3D) -> Tuple[int, int, int]:
        return (
            int(math.floor(point.x / self._cell)),
            int(math.floor(point.y / self._cell)),
            int(math.floor(point.z / self._cell)),
        )

    def is_clear(self, point: Point3D) -> bool:
        if self.min_distance <= 0:
            return True
        ix, iy, iz = self._key(point)
        min_sq = self.min_distance * self.min_distance
        for dx, dy, dz in _NEIGHBOUR_OFFSETS:
            bucket = self._grid.get((ix + dx, iy + dy, iz + dz))
            if not bucket:
                continue
            for other in bucket:
                ox = point.x - other.x
                oy = point.y - other.y
                oz = point.z - other.z
                if ox * ox + oy * oy + oz * oz < min_sq:
                    return False
        return True

    def add(self, point: Point3D) -> None:
        self._grid.setdefault(self._key(point), []).append(point)
        self._count += 1


def place_with_min_separation(
    sampler: ElementSampler,
    grid: SeparationGrid,
    max_attempts: int,
    fallback: Optional[ElementSampler] = None,
    index: int = 0,
) -> Placement:
    """Draw one point at least ``grid.min_distance`` away from accepted ones."""

    if max_attempts < 1:
        raise FamilyConfigError(f"max attempts must be >= 1, got {max_attempts}")
    for attempt in range(1, max_attempts + 1):
        candidate = sampler(index)
        if grid.is_clear(candidate):
            grid.add(candidate)
            return Placement(candidate, False, attempt)
    point = (fallback or sampler)(index)
    grid.add(point)
    return Placement(point, True, max_attempts + 1)


def place_batch(
    count: int,
    sampler: ElementSampler,
    min_distance: float,
    max_attempts: int,
    fallback: Optional[ElementSampler] = None,
) -> PlacementBatch:
    if count < 0:
        raise FamilyConfigError(f"placement count must be >= 0, got {count}")
    grid = SeparationGrid(min_distance)
    batch = PlacementBatch()
    for index in range(count):
        placement = place_with_min_separation(sampler, grid, max_attempts, fallback, index)
        batch.placements.append(placement)
        batch.sampler_calls += placement.attempts
    return batch
