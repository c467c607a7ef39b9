"""
Tests for the blend strategies.
"""

import math
import random

import numpy as np
import pytest

from arbor.blend import (
    WEIGHT_EPSILON,
    AmbientDriftBlend,
    PhaseStaggerBlend,
    WeightedLagBlend,
    strategy_from_config,
)
from arbor.errors import FamilyConfigError
from arbor.topology_generators import Point3D, sample_scatter
from arbor.topology_registry import AttributeFactory, build_family


def _family(count=16, weight=None, spin=0.0, target=True, seed=0, scale=1.0):
    rng = random.Random(seed)
    cfg = {"spin": spin, "scale": scale}
    if weight is not None:
        cfg["weight"] = weight
    target_sampler = (lambda i: Point3D(1.0, float(i), -1.0)) if target else None
    return build_family(
        "fam",
        count,
        lambda i: sample_scatter(15.0, rng),
        target_sampler,
        AttributeFactory.from_config(cfg),
        rng,
    )


class TestPhaseStagger:
    def test_endpoints(self):
        family = _family()
        blend = PhaseStaggerBlend(breath=0.03, sway=0.2, bob=0.1)

        assert np.allclose(blend.evaluate(family, 1.0, 12.3, 0.016).positions, family.target)
        plain = PhaseStaggerBlend()
        assert np.allclose(plain.evaluate(family, 0.0, 12.3, 0.016).positions, family.scatter)

    def test_late_phases_lag_behind(self):
        family = _family(count=64)
        delayed = PhaseStaggerBlend().delayed(family, 0.5)
        order = np.argsort(family.phase)

        assert np.all(np.diff(delayed[order]) <= 1e-12)
        assert np.all((delayed >= 0.0) & (delayed <= 1.0))

    def test_writes_current(self):
        family = _family()
        batch = PhaseStaggerBlend(sway=0.2).evaluate(family, 0.4, 3.0, 0.016)

        assert np.array_equal(family.current, batch.positions)

    def test_idle_overlay_moves_points_while_scattered(self):
        family = _family()
        still = PhaseStaggerBlend().evaluate(family, 0.0, 2.0, 0.016).positions
        swaying = PhaseStaggerBlend(sway=0.2).evaluate(family, 0.0, 2.0, 0.016).positions

        assert not np.allclose(still, swaying)

    def test_breath_at_origin_stays_finite(self):
        rng = random.Random(0)
        family = build_family(
            "origin", 3, lambda i: Point3D(0, 0, 0), lambda i: Point3D(0, 0, 0), AttributeFactory.from_config({}), rng
        )
        batch = PhaseStaggerBlend(breath=0.03).evaluate(family, 0.0, 1.0, 0.016)

        assert np.all(np.isfinite(batch.positions))

    def test_sparkle_colours_and_alpha(self):
        family = _family()
        blend = PhaseStaggerBlend(
            color_mode="sparkle", gradient="#010503@0,#05260F@1", alpha_base=0.7, alpha_flicker=0.15, alpha_floor=0.6
        )
        batch = blend.evaluate(family, 0.5, 4.0, 0.016)

        assert batch.colors.shape == (16, 3)
        assert batch.alpha.shape == (16,)
        assert np.all((batch.alpha >= 0.0) & (batch.alpha <= 1.0))

    @pytest.mark.parametrize("stretch,spread", [(1.2, 0.3), (1.0, 0.1), (0.0, 0.0)])
    def test_arrival_rule_enforced(self, stretch, spread):
        with pytest.raises(FamilyConfigError):
            PhaseStaggerBlend(stretch=stretch, spread=spread)

    def test_sparkle_mode_needs_gradient(self):
        with pytest.raises(FamilyConfigError):
            PhaseStaggerBlend(color_mode="sparkle")

    @pytest.mark.parametrize("height", [["low", 5.0], [0.0], [0.0, float("inf")]])
    def test_bad_height_range_is_a_config_error(self, height):
        with pytest.raises(FamilyConfigError, match="heightRange"):
            PhaseStaggerBlend.from_config({"heightRange": height})


class TestWeightedLag:
    def test_large_step_reaches_target(self):
        family = _family(weight=0.3)
        batch = WeightedLagBlend(bob=0.1).evaluate(family, 1.0, 5.0, 10.0)

        assert np.allclose(batch.positions, family.target)

    def test_converges_over_many_frames(self):
        family = _family(weight=[0.15, 0.3])
        blend = WeightedLagBlend()
        for _ in range(600):
            batch = blend.evaluate(family, 1.0, 0.0, 1 / 60)

        assert np.allclose(batch.positions, family.target, atol=1e-6)

    def test_heavier_elements_trail(self):
        light = _family(count=1, weight=0.15, seed=3)
        heavy = _family(count=1, weight=0.9, seed=3)
        blend = WeightedLagBlend()
        blend.evaluate(light, 1.0, 0.0, 0.05)
        blend.evaluate(heavy, 1.0, 0.0, 0.05)

        light_gap = np.linalg.norm(light.current - light.target)
        heavy_gap = np.linalg.norm(heavy.current - heavy.target)
        assert light_gap < heavy_gap

    def test_zero_weight_is_clamped(self):
        family = _family(count=2, weight=0.0)
        factors = WeightedLagBlend(base_rate=2.0, offset=0.0).factors(family, 1e-4)

        assert np.all(np.isfinite(factors))
        assert factors.tolist() == pytest.approx([1e-4 * 2.0 / WEIGHT_EPSILON] * 2)

    def test_unweighted_family_uses_base_rate(self):
        family = _family(count=3)
        factors = WeightedLagBlend(base_rate=1.5).factors(family, 0.1)

        assert factors.tolist() == pytest.approx([0.15] * 3)

    def test_tumble_only_while_scattered(self):
        family = _family(count=2, spin=0.6)
        blend = WeightedLagBlend(settle_spin=0.0)
        blend.evaluate(family, 0.0, 0.0, 0.5)
        assert family.rotation[:, 0].tolist() == pytest.approx([0.3, 0.3])

        blend.evaluate(family, 1.0, 0.0, 0.5)
        assert family.rotation[:, 0].tolist() == pytest.approx([0.3, 0.3])

    def test_settled_spin_turns_yaw(self):
        family = _family(count=1, spin=0.6)
        WeightedLagBlend(settle_spin=0.1).evaluate(family, 1.0, 0.0, 1.0)

        assert family.rotation[0].tolist() == pytest.approx([0.0, 0.06, 0.0])

    def test_scale_pulse(self):
        family = _family(count=1, scale=1.0)
        batch = WeightedLagBlend(pulse=0.05, pulse_rate=2.0).evaluate(family, 1.0, 0.7, 0.0)

        assert batch.scales[0] == pytest.approx(1.0 + 0.05 * math.sin(1.4))

    def test_invalid_parameters(self):
        with pytest.raises(FamilyConfigError):
            WeightedLagBlend(base_rate=0.0)
        with pytest.raises(FamilyConfigError):
            WeightedLagBlend(offset=-0.5)


class TestAmbientDrift:
    def test_alpha_follows_progress(self):
        family = _family(target=False)
        batch = AmbientDriftBlend(max_opacity=0.4).evaluate(family, 0.5, 1.0, 0.016)

        assert batch.alpha.tolist() == pytest.approx([0.2] * 16)

    def test_snow_wraps_inside_box(self):
        rng = random.Random(1)
        family = build_family(
            "snow",
            50,
            lambda i: Point3D(rng.random() * 25 - 12.5, rng.random() * 25 - 12.5, 0.0),
            None,
            AttributeFactory.from_config({}),
            rng,
        )
        blend = AmbientDriftBlend(fall_speed=1.5, fall_height=25.0)
        for elapsed in (0.0, 3.0, 40.0, 1000.0):
            y = blend.evaluate(family, 1.0, elapsed, 0.016).positions[:, 1]
            assert np.all((y >= -12.5) & (y <= 12.5))

    def test_drift_amplitude(self):
        family = _family(target=False)
        blend = AmbientDriftBlend(amplitude=(1.0, 0.5, 1.0), frequency=(0.2, 0.16, 0.1), phase_scale=(100, 50, 20))
        batch = blend.evaluate(family, 1.0, 7.0, 0.016)
        offset = batch.positions - family.scatter

        assert np.all(np.abs(offset) <= np.array([1.0, 0.5, 1.0]) + 1e-12)

    def test_invalid_waves(self):
        with pytest.raises(FamilyConfigError):
            AmbientDriftBlend(waves=("sin", "tan", "sin"))


class TestStrategies:
    @pytest.mark.parametrize("name", ["phase", "lag", "drift"])
    def test_empty_family_is_a_noop(self, name):
        family = _family(count=0)
        batch = strategy_from_config(name, {}).evaluate(family, 0.5, 1.0, 0.016)

        assert len(batch) == 0
        assert batch.positions.shape == (0, 3)

    @pytest.mark.parametrize("name", ["phase", "lag"])
    def test_both_strategies_converge_to_target(self, name):
        family = _family(count=10, weight=0.5)
        batch = strategy_from_config(name, {}).evaluate(family, 1.0, 3.0, 100.0)

        assert np.allclose(batch.positions, family.target)

    def test_unknown_strategy(self):
        with pytest.raises(FamilyConfigError):
            strategy_from_config("spring")


class TestFamilyReset:
    def test_reset_rests_at_progress(self):
        family = _family(count=4)
        family.reset(0.25)

        expected = family.scatter + (family.target - family.scatter) * 0.25
        assert np.allclose(family.current, expected)

    def test_lag_at_rest_does_not_move(self):
        family = _family(count=4, weight=0.3)
        family.reset(1.0)
        batch = WeightedLagBlend().evaluate(family, 1.0, 0.0, 0.016)

        assert np.allclose(batch.positions, family.target)
