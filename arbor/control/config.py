from __future__ import annotations

import copy
import json
import math
from pathlib import Path
from typing import Any, Dict, Mapping

from ..blend import STRATEGIES
from ..errors import FamilyConfigError
from ..topology_generators import BUILTIN_SAMPLERS

__all__ = [
    "DEFAULTS",
    "TOOLTIPS",
    "merge_config",
    "load_config",
    "validate_family_config",
    "family_configs",
]

_PI = math.pi

_ORNAMENT_TARGET = dict(
    kind="cone", height=11.0, baseRadius=4.8, yOffset=-1.0, bias=1.5,
    heightCap=0.85, turns=3.5, angleJitter=0.6, radial=[0.95, 1.1],
)
_GARLAND_SPIRAL = dict(yStart=-5.0, yEnd=5.0, turns=3.5, baseRadius=5.5, minRadius=0.6, steps=150)
_TUMBLE = dict(spin=[-0.6, 0.6], randomRotation=True)

DEFAULTS = dict(
    engine=dict(seed=None, maxDelta=None, fps=60, initialTarget="scattered"),
    families=dict(
        foliage=dict(
            strategy="phase", count=15000, tau=1.5,
            scatter=dict(kind="sphere", radius=18.0),
            target=dict(kind="cone", height=12.0, baseRadius=4.5, yOffset=-1.0, bias=6.0, radial=[0.8, 1.1]),
            attributes=dict(sizes=[[0.8, 0.5, 0.8], [0.2, 1.0, 1.5]], palette="#05260F"),
            blend=dict(
                stretch=1.2, spread=0.2, breath=0.03, sway=0.2,
                colorMode="sparkle", gradient="#010503@0,#05260F@1", heightRange=[-5.0, 5.0],
                highlight=[1.0, 0.95, 0.8], alphaBase=0.7, alphaFlicker=0.15, alphaFloor=0.6, sparkleAlpha=0.8,
            ),
        ),
        garland_wire=dict(
            strategy="phase", count=3500, tau=1.2,
            scatter=dict(kind="sphere", radius=18.0),
            target=dict(kind="curve", spiral=dict(_GARLAND_SPIRAL)),
            attributes=dict(sizes=0.3, palette=[1.3, 0.95, 0.4]),
            blend=dict(stretch=1.5, spread=0.5, bob=0.1, alphaBase=1.0, alphaFloor=0.4),
        ),
        garland_bulbs=dict(
            strategy="phase", count=600, tau=1.2,
            scatter=dict(kind="sphere", radius=20.0),
            target=dict(kind="near_curve", jitter=0.35, spiral=dict(_GARLAND_SPIRAL)),
            attributes=dict(sizes=[0.5, 0.9], palette=[2.0, 1.7, 0.8]),
            blend=dict(stretch=1.5, spread=0.5, bob=0.1, alphaBase=1.0, alphaFloor=0.4),
        ),
        ornaments_pearl=dict(
            strategy="lag", count=70, tau=1.5,
            scatter=dict(kind="sphere", radius=20.0),
            target=dict(_ORNAMENT_TARGET, phase=0.0),
            attributes=dict(_TUMBLE, palette="#F3E5AB", weight=0.2, scale=[0.6, 1.0], scaleMultiplier=0.9),
            blend=dict(rate=2.0, offset=0.5, settleSpin=0.1, bob=0.1),
        ),
        ornaments_crimson=dict(
            strategy="lag", count=40, tau=1.5,
            scatter=dict(kind="sphere", radius=20.0),
            target=dict(_ORNAMENT_TARGET, phase=_PI),
            attributes=dict(_TUMBLE, palette="#4A0404", weight=0.3, scale=[0.6, 1.0], scaleMultiplier=1.0),
            blend=dict(rate=2.0, offset=0.5, settleSpin=0.1, bob=0.1),
        ),
        ornaments_diamond=dict(
            strategy="lag", count=30, tau=1.5,
            scatter=dict(kind="sphere", radius=20.0),
            target=dict(_ORNAMENT_TARGET, phase=_PI / 2),
            attributes=dict(_TUMBLE, palette="#E5E4E2", weight=0.15, scale=[0.6, 1.0], scaleMultiplier=0.8),
            blend=dict(rate=2.0, offset=0.5, settleSpin=0.1, bob=0.1),
        ),
        tiny_baubles=dict(
            strategy="lag", count=50, tau=1.5,
            scatter=dict(kind="sphere", radius=20.0),
            target=dict(kind="cone", height=11.0, baseRadius=4.6, yOffset=-1.0, bias=2.5, heightCap=0.9, radial=[0.9, 1.05]),
            attributes=dict(
                scale=0.5, spin=0.0, randomRotation=True,
                palette=[dict(color="#F0F0F0", weight=0.4), dict(color="#FFE4B5", weight=0.6)],
            ),
            blend=dict(rate=1.5, tumble=False, settleSpin=0.0, bob=0.1),
        ),
        gift_boxes=dict(
            strategy="lag", count=72, tau=1.5,
            scatter=dict(kind="sphere", radius=18.0),
            placement=dict(minDistance=2.0, maxAttempts=50, fallback=dict(kind="sphere", radius=22.0)),
            target=dict(kind="cone", height=12.0, baseRadius=5.5, yOffset=-1.0, bias=2.8, heightCap=0.6, radial=[0.5, 1.2]),
            attributes=dict(
                _TUMBLE, scale=[0.6, 1.0],
                palette=[
                    dict(name="burgundy", color="#7A1F1F", weight=0.31, accent="#D4AF37"),
                    dict(name="cream", color="#F2E8D5", weight=0.31, accent="#7A1F1F"),
                    dict(name="emerald", color="#0F3B26", weight=0.32, accent="#D4AF37"),
                    dict(name="gold", color="#D4AF37", weight=0.06, accent="#7A1F1F"),
                ],
            ),
            blend=dict(rate=1.2, settleSpin=0.1, bob=0.15),
        ),
        star=dict(
            strategy="lag", count=1, tau=1.5,
            scatter=dict(kind="sphere", radius=15.0),
            target=dict(kind="point", position=[0.0, 5.6, 0.0]),
            attributes=dict(palette="#FFD966", spin=1.0),
            blend=dict(rate=1.5, pulse=0.05, pulseRate=2.0, settleSpin=0.2),
        ),
        snow=dict(
            strategy="drift", count=300, tau=2.0,
            scatter=dict(kind="box", halfExtents=[12.5, 12.5, 12.5]),
            attributes=dict(sizes=[0.5, 1.5], palette="#FFFFFF"),
            blend=dict(
                fallSpeed=1.5, fallHeight=25.0, driftAmp=[0.5, 0.0, 0.5], driftFreq=[0.5, 0.0, 0.3],
                driftPhase=[10.0, 0.0, 10.0], driftWave="sin,cos,cos", maxOpacity=0.4,
            ),
        ),
        sparkles=dict(
            strategy="drift", count=400, tau=1.0, invert=True,
            scatter=dict(kind="shell", innerRadius=8.0, thickness=15.0),
            attributes=dict(sizes=[0.5, 1.2], palette=[1.0, 0.85, 0.4]),
            blend=dict(
                driftAmp=[1.0, 0.5, 1.0], driftFreq=[0.2, 0.16, 0.1], driftPhase=[100.0, 50.0, 20.0],
                driftWave="sin,cos,sin", maxOpacity=0.8,
            ),
        ),
    ),
)

TOOLTIPS = {
    "families.foliage": "Nuage d’aiguilles qui forme le cône du sapin.",
    "families.garland_wire": "Fil lumineux enroulé en spirale autour de l’arbre.",
    "families.garland_bulbs": "Ampoules réparties le long de la guirlande.",
    "families.ornaments_pearl": "Boules nacrées, légères, qui arrivent tôt.",
    "families.ornaments_crimson": "Boules pourpres, les plus lourdes, qui arrivent en dernier.",
    "families.ornaments_diamond": "Boules argentées, les plus légères, qui arrivent les premières.",
    "families.tiny_baubles": "Petites boules posées près de la surface du sapin.",
    "families.gift_boxes": "Paquets cadeaux empilés au pied de l’arbre, sans se chevaucher.",
    "families.star": "Étoile au sommet, qui pulse doucement.",
    "families.snow": "Flocons qui tombent en boucle dans une boîte autour de la scène.",
    "families.sparkles": "Poussière dorée visible surtout quand l’arbre est dispersé.",
    "engine.seed": "Graine aléatoire : même graine, même scène.",
    "engine.maxDelta": "Plafond facultatif du pas de temps par image (secondes).",
    "engine.fps": "Cadence de la boucle d’animation.",
    "engine.initialTarget": "État demandé au démarrage (scattered ou assembled).",
}


def merge_config(base: Mapping[str, Any], overrides: Mapping[str, Any]) -> Dict[str, Any]:
    """Deep merge ``overrides`` into a copy of ``base``; mappings merge, values replace."""

    merged: Dict[str, Any] = copy.deepcopy(dict(base))
    for key, value in overrides.items():
        current = merged.get(key)
        if isinstance(current, Mapping) and isinstance(value, Mapping):
            merged[key] = merge_config(current, value)
        else:
            merged[key] = copy.deepcopy(value)
    return merged


def load_config(path: Path | str, base: Mapping[str, Any] = DEFAULTS) -> Dict[str, Any]:
    """Read JSON overrides from ``path`` and merge them on top of ``base``."""

    try:
        raw = json.loads(Path(path).read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        raise FamilyConfigError(f"cannot read configuration {path}: {exc}") from exc
    if not isinstance(raw, dict):
        raise FamilyConfigError(f"configuration {path} must contain a JSON object")
    return merge_config(base, raw)


def _sampler_kind(name: str, role: str, cfg: object) -> None:
    if not isinstance(cfg, Mapping):
        raise FamilyConfigError(f"{name}: {role} sampler must be a mapping")
    if cfg.get("kind") not in BUILTIN_SAMPLERS:
        known = ", ".join(sorted(BUILTIN_SAMPLERS))
        raise FamilyConfigError(f"{name}: unknown {role} sampler {cfg.get('kind')!r} (expected one of: {known})")


def validate_family_config(name: str, cfg: Mapping[str, Any]) -> None:
    """Structural checks run before a family is built."""

    if not isinstance(cfg, Mapping):
        raise FamilyConfigError(f"{name}: family configuration must be a mapping")
    strategy = cfg.get("strategy")
    if strategy not in STRATEGIES:
        known = ", ".join(sorted(STRATEGIES))
        raise FamilyConfigError(f"{name}: unknown blend strategy {strategy!r} (expected one of: {known})")
    count = cfg.get("count", 0)
    if (
        isinstance(count, bool)
        or not isinstance(count, (int, float))
        or not math.isfinite(count)
        or count != int(count)
        or count < 0
    ):
        raise FamilyConfigError(f"{name}: element count must be a non-negative integer, got {count!r}")
    tau = cfg.get("tau", 1.0)
    if isinstance(tau, bool) or not isinstance(tau, (int, float)) or not math.isfinite(tau) or tau <= 0:
        raise FamilyConfigError(f"{name}: time constant must be > 0, got {tau!r}")
    _sampler_kind(name, "scatter", cfg.get("scatter"))
    target = cfg.get("target")
    if strategy == "drift":
        if target is not None:
            raise FamilyConfigError(f"{name}: drifting families have no target sampler")
    else:
        _sampler_kind(name, "target", target)
    placement = cfg.get("placement")
    if placement is not None:
        if not isinstance(placement, Mapping):
            raise FamilyConfigError(f"{name}: placement must be a mapping")
        if placement.get("fallback") is not None:
            _sampler_kind(name, "fallback", placement.get("fallback"))
    for key in ("attributes", "blend"):
        if not isinstance(cfg.get(key, {}), Mapping):
            raise FamilyConfigError(f"{name}: {key} must be a mapping")


def family_configs(config: Mapping[str, Any]) -> Dict[str, Dict[str, Any]]:
    """Enabled family configurations of a full configuration, validated."""

    families = config.get("families", {})
    if not isinstance(families, Mapping):
        raise FamilyConfigError("'families' must be a mapping")
    out: Dict[str, Dict[str, Any]] = {}
    for name, cfg in families.items():
        if isinstance(cfg, Mapping) and not cfg.get("enabled", True):
            continue
        validate_family_config(name, cfg)
        out[name] = dict(cfg)
    return out
