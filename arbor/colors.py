"""Colour parsing, gradients and weighted palettes."""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import List, Mapping, Optional, Sequence, Tuple

import numpy as np

from .errors import FamilyConfigError
from .topology_generators import RandomSource

__all__ = [
    "RGB",
    "parse_color",
    "rgb_to_hex",
    "parse_gradient_stops",
    "sample_gradient",
    "PaletteEntry",
    "WeightedPalette",
]

RGB = Tuple[float, float, float]


def _hex_to_rgb(value: str) -> Tuple[int, int, int]:
    value = value.strip().lstrip("#")
    if len(value) == 3:
        value = "".join(ch * 2 for ch in value)
    if len(value) != 6:
        raise FamilyConfigError(f"invalid hex colour {value!r}")
    try:
        number = int(value, 16)
    except ValueError:
        raise FamilyConfigError(f"invalid hex colour {value!r}") from None
    return (number >> 16) & 255, (number >> 8) & 255, number & 255


def parse_color(value: object) -> RGB:
    """Return linear ``(r, g, b)`` floats from ``"#RRGGBB"`` or a float triple.

    Float triples may exceed 1.0 (emissive garland bulbs).
    """

    if isinstance(value, str):
        r, g, b = _hex_to_rgb(value)
        return (r / 255.0, g / 255.0, b / 255.0)
    if isinstance(value, Sequence) and len(value) == 3:
        out = []
        for channel in value:
            try:
                number = float(channel)
            except (TypeError, ValueError):
                raise FamilyConfigError(f"invalid colour channel {channel!r}") from None
            if not math.isfinite(number) or number < 0:
                raise FamilyConfigError(f"colour channels must be finite and >= 0, got {value!r}")
            out.append(number)
        return (out[0], out[1], out[2])
    raise FamilyConfigError(f"unsupported colour value {value!r}")


def rgb_to_hex(rgb: Sequence[float]) -> str:
    r, g, b = (int(round(min(1.0, max(0.0, c)) * 255)) for c in rgb)
    return f"#{r:02X}{g:02X}{b:02X}"


def parse_gradient_stops(value: Optional[str]) -> List[Tuple[RGB, float]]:
    """Parse ``"#010503@0,#05260F@1"`` into sorted ``(rgb, position)`` stops."""

    if not value:
        raise FamilyConfigError("gradient needs at least one colour stop")
    parts = [part.strip() for part in value.split(",") if part.strip()]
    raw: List[Tuple[str, Optional[float]]] = []
    for part in parts:
        if "@" in part:
            color, pos = part.split("@", 1)
            try:
                t: Optional[float] = float(pos)
            except ValueError:
                raise FamilyConfigError(f"invalid gradient stop position in {part!r}") from None
            raw.append((color.strip(), t))
        else:
            raw.append((part, None))
    unspecified = [idx for idx, item in enumerate(raw) if item[1] is None]
    for order, idx in enumerate(unspecified):
        raw[idx] = (raw[idx][0], order / max(1, len(unspecified) - 1))
    stops = [(parse_color(color), min(1.0, max(0.0, float(pos)))) for color, pos in raw]  # type: ignore[arg-type]
    stops.sort(key=lambda entry: entry[1])
    if stops[0][1] > 0:
        stops.insert(0, (stops[0][0], 0.0))
    if stops[-1][1] < 1:
        stops.append((stops[-1][0], 1.0))
    return stops


def sample_gradient(stops: Sequence[Tuple[RGB, float]], t: np.ndarray) -> np.ndarray:
    """Vectorised linear-RGB gradient lookup, returns ``(N, 3)``."""

    t = np.clip(np.asarray(t, dtype=np.float64), 0.0, 1.0)
    positions = np.array([pos for _, pos in stops], dtype=np.float64)
    colors = np.array([rgb for rgb, _ in stops], dtype=np.float64)
    return np.stack([np.interp(t, positions, colors[:, channel]) for channel in range(3)], axis=-1)


@dataclass(frozen=True)
class PaletteEntry:
    color: RGB
    weight: float
    accent: Optional[RGB] = None
    name: str = ""


class WeightedPalette:
    """Colour palette picked by cumulative selection weights."""

    def __init__(self, entries: Sequence[PaletteEntry]) -> None:
        if not entries:
            raise FamilyConfigError("palette must contain at least one colour")
        for entry in entries:
            if not math.isfinite(entry.weight) or entry.weight < 0:
                raise FamilyConfigError(f"palette weight must be >= 0, got {entry.weight}")
        total = sum(entry.weight for entry in entries)
        if total <= 0:
            raise FamilyConfigError("palette weights must not all be zero")
        self.entries = list(entries)
        self._cumulative: List[float] = []
        acc = 0.0
        for entry in self.entries:
            acc += entry.weight / total
            self._cumulative.append(acc)

    @classmethod
    def from_config(cls, raw: object) -> "WeightedPalette":
        """Accept a single colour or a list of ``{color, weight, accent, name}``."""

        if isinstance(raw, (str, Mapping)) or (isinstance(raw, Sequence) and raw and not isinstance(raw[0], (Mapping, str, Sequence))):
            raw = [raw]
        if not isinstance(raw, Sequence):
            raise FamilyConfigError(f"unsupported palette {raw!r}")
        entries: List[PaletteEntry] = []
        for item in raw:
            if isinstance(item, Mapping):
                accent = item.get("accent")
                entries.append(
                    PaletteEntry(
                        color=parse_color(item.get("color")),
                        weight=float(item.get("weight", 1.0)),
                        accent=parse_color(accent) if accent is not None else None,
                        name=str(item.get("name", "")),
                    )
                )
            else:
                entries.append(PaletteEntry(color=parse_color(item), weight=1.0))
        return cls(entries)

    def pick(self, rng: RandomSource) -> PaletteEntry:
        r = rng.random()
        for entry, bound in zip(self.entries, self._cumulative):
            if r <= bound:
                return entry
        return self.entries[-1]
