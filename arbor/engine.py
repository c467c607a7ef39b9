"""Per-frame orchestration of every family."""

from __future__ import annotations

import math
from typing import TYPE_CHECKING, Any, Dict, Mapping, Optional, Union

from .blend import BlendStrategy, FrameBatch, strategy_from_config
from .control.config import DEFAULTS, family_configs
from .errors import FamilyConfigError
from .progress import FamilyState, ProgressController, TargetState
from .topology_registry import Family, FamilyRegistry

if TYPE_CHECKING:
    from .view.sink import TransformSink

__all__ = ["MorphEngine", "TargetSpec"]

TargetSpec = Union[TargetState, Mapping[str, TargetState]]


class MorphEngine:
    """Owns the registry, one progress controller and one strategy per family.

    ``advance`` is called once per frame with the elapsed time, the time since
    the previous frame and the requested state (a single :class:`TargetState`
    or a mapping family name -> state). Families missing from a mapping keep
    their previous target.
    """

    def __init__(
        self,
        config: Optional[Mapping[str, Any]] = None,
        sink: Optional[TransformSink] = None,
        seed: Optional[int] = None,
        max_delta: Optional[float] = None,
    ) -> None:
        self.config: Dict[str, Any] = dict(DEFAULTS if config is None else config)
        engine_cfg = self.config.get("engine", {}) or {}
        if seed is None:
            seed = engine_cfg.get("seed")
        if max_delta is None:
            max_delta = engine_cfg.get("maxDelta")
        if max_delta is not None and not (float(max_delta) > 0.0):
            raise FamilyConfigError(f"max delta must be > 0, got {max_delta}")
        self.seed = seed
        self.max_delta = None if max_delta is None else float(max_delta)
        self.sink = sink
        self.target = TargetState.coerce(engine_cfg.get("initialTarget", "scattered"))
        self.elapsed = 0.0
        self.registry = FamilyRegistry(seed)
        self.controllers: Dict[str, ProgressController] = {}
        self.strategies: Dict[str, BlendStrategy] = {}
        self._targets: Dict[str, TargetState] = {}
        self._last_counts: Dict[str, int] = {}
        self.rebuild(self.config)

    # ------------------------------------------------------------------ helpers
    def _debug(self, message: str) -> None:
        print(f"[Arbor][DEBUG] {message}", flush=True)

    @property
    def families(self) -> Dict[str, Family]:
        return {family.name: family for family in self.registry}

    @property
    def settled(self) -> bool:
        return all(controller.settled for controller in self.controllers.values())

    # ------------------------------------------------------------------ build
    def rebuild(self, config: Optional[Mapping[str, Any]] = None) -> None:
        """Rebuild every family from ``config``.

        Progress of families that survive the rebuild is kept and their new
        elements start at rest for that progress; everything else (elements,
        strategies, transient arrays) is replaced.
        """

        full = self.config if config is None else dict(config)
        configs = family_configs(full)
        strategies = {name: strategy_from_config(cfg["strategy"], cfg.get("blend")) for name, cfg in configs.items()}
        controllers: Dict[str, ProgressController] = {}
        for name, cfg in configs.items():
            previous = self.controllers.get(name)
            initial = None
            if previous is not None:
                initial = FamilyState(previous.progress, previous.state.target, previous.tau)
            controllers[name] = ProgressController(cfg.get("tau", 1.0), initial, bool(cfg.get("invert", False)))
        families = self.registry.rebuild(configs)
        for name, family in families.items():
            if name in self.controllers:
                family.reset(controllers[name].progress)

        self.config = full
        self.strategies = strategies
        self.controllers = controllers
        self._targets = {name: self._targets.get(name, self.target) for name in configs}
        for name, family in families.items():
            count = len(family)
            if self._last_counts.get(name) != count:
                note = f" ({family.fallback_count} fallback placements)" if family.fallback_count else ""
                self._debug(f"family {name}: {count} elements, {configs[name]['strategy']}{note}")
            self._last_counts[name] = count
        for name in list(self._last_counts):
            if name not in families:
                del self._last_counts[name]
                self._debug(f"family {name}: removed")

    # ------------------------------------------------------------------ frames
    def set_target(self, target: TargetSpec) -> None:
        if isinstance(target, Mapping):
            for name, value in target.items():
                if name not in self.controllers:
                    raise KeyError(name)
                self._targets[name] = TargetState.coerce(value)
            return
        self.target = TargetState.coerce(target)
        self._targets = {name: self.target for name in self.controllers}

    def toggle(self) -> TargetState:
        self.set_target(self.target.opposite)
        return self.target

    def _sanitize_delta(self, delta: float) -> float:
        try:
            delta = float(delta)
        except (TypeError, ValueError):
            return 0.0
        if math.isnan(delta) or delta < 0.0:
            return 0.0
        if self.max_delta is not None:
            delta = min(delta, self.max_delta)
        return delta

    def advance(self, elapsed: float, delta: float, target: Optional[TargetSpec] = None) -> Dict[str, FrameBatch]:
        """Update every controller, then evaluate and push every family."""

        if target is not None:
            self.set_target(target)
        delta = self._sanitize_delta(delta)
        self.elapsed = float(elapsed)
        progress = {
            name: controller.update(self._targets[name], delta) for name, controller in self.controllers.items()
        }
        batches: Dict[str, FrameBatch] = {}
        for family in self.registry:
            batch = self.strategies[family.name].evaluate(family, progress[family.name], self.elapsed, delta)
            batches[family.name] = batch
            if self.sink is not None:
                self.sink.push(batch)
        return batches

    def state(self) -> Dict[str, Any]:
        return {
            "target": self.target.name.lower(),
            "elapsed": self.elapsed,
            "settled": self.settled,
            "families": {
                name: {
                    "progress": controller.progress,
                    "target": self._targets[name].name.lower(),
                    "tau": controller.tau,
                    "count": len(self.registry.get(name)),
                    "settled": controller.settled,
                }
                for name, controller in self.controllers.items()
            },
        }
