"""
Tests for configuration defaults, merging and validation.
"""

import copy
import json

import numpy as np
import pytest

from arbor.control.config import (
    DEFAULTS,
    TOOLTIPS,
    family_configs,
    load_config,
    merge_config,
    validate_family_config,
)
from arbor.engine import MorphEngine
from arbor.errors import FamilyConfigError
from arbor.progress import TargetState


def _family(**overrides):
    cfg = copy.deepcopy(DEFAULTS["families"]["star"])
    cfg.update(overrides)
    return cfg


class TestDefaults:
    def test_every_default_family_validates(self):
        configs = family_configs(DEFAULTS)

        assert set(configs) == {
            "foliage",
            "garland_wire",
            "garland_bulbs",
            "ornaments_pearl",
            "ornaments_crimson",
            "ornaments_diamond",
            "tiny_baubles",
            "gift_boxes",
            "star",
            "snow",
            "sparkles",
        }

    def test_every_family_has_a_tooltip(self):
        for name in DEFAULTS["families"]:
            assert f"families.{name}" in TOOLTIPS

    def test_gift_palette_weights(self):
        palette = DEFAULTS["families"]["gift_boxes"]["attributes"]["palette"]

        assert sum(entry["weight"] for entry in palette) == pytest.approx(1.0)
        assert all("accent" in entry for entry in palette)

    def test_star_settles_into_a_slow_yaw(self):
        star = DEFAULTS["families"]["star"]

        assert star["attributes"]["spin"] * star["blend"]["settleSpin"] == pytest.approx(0.2)

    def test_tiny_baubles_hold_their_orientation(self, small_config):
        engine = MorphEngine(small_config, seed=1)
        baubles = engine.families["tiny_baubles"]
        engine.advance(0.5, 0.5, TargetState.SCATTERED)
        engine.advance(1.0, 0.5, TargetState.ASSEMBLED)

        assert np.array_equal(baubles.rotation, baubles.initial_rotation)

    @pytest.mark.parametrize("name,low,high", [("snow", 0.5, 1.5), ("sparkles", 0.5, 1.2)])
    def test_ambient_sizes(self, name, low, high):
        assert DEFAULTS["families"][name]["attributes"]["sizes"] == [low, high]


class TestMergeConfig:
    def test_deep_merge_keeps_siblings(self):
        merged = merge_config(DEFAULTS, {"families": {"foliage": {"count": 10, "blend": {"sway": 0.0}}}})
        foliage = merged["families"]["foliage"]

        assert foliage["count"] == 10
        assert foliage["blend"]["sway"] == 0.0
        assert foliage["blend"]["breath"] == 0.03
        assert merged["families"]["star"] == DEFAULTS["families"]["star"]

    def test_base_is_not_mutated(self):
        snapshot = copy.deepcopy(DEFAULTS)
        merged = merge_config(DEFAULTS, {"engine": {"seed": 4}})
        merged["families"]["star"]["count"] = 99

        assert DEFAULTS == snapshot

    def test_load_config_from_json(self, tmp_path):
        path = tmp_path / "scene.json"
        path.write_text(json.dumps({"engine": {"fps": 30}, "families": {"snow": {"count": 5}}}), encoding="utf-8")
        config = load_config(path)

        assert config["engine"]["fps"] == 30
        assert config["families"]["snow"]["count"] == 5
        assert config["families"]["snow"]["tau"] == 2.0

    @pytest.mark.parametrize("content", ["[1, 2]", "{oops"])
    def test_load_config_rejects_bad_files(self, tmp_path, content):
        path = tmp_path / "bad.json"
        path.write_text(content, encoding="utf-8")

        with pytest.raises(FamilyConfigError):
            load_config(path)


class TestValidation:
    @pytest.mark.parametrize(
        "overrides",
        [
            {"strategy": "spring"},
            {"count": -1},
            {"count": 2.5},
            {"count": True},
            {"tau": 0.0},
            {"tau": -2.0},
            {"scatter": None},
            {"scatter": {"kind": "torus"}},
            {"target": None},
            {"placement": {"fallback": {"kind": "nowhere"}}},
            {"blend": [1, 2]},
        ],
    )
    def test_rejected(self, overrides):
        with pytest.raises(FamilyConfigError, match="^star:"):
            validate_family_config("star", _family(**overrides))

    def test_drift_families_take_no_target(self):
        cfg = copy.deepcopy(DEFAULTS["families"]["snow"])
        cfg["target"] = {"kind": "point", "position": [0, 0, 0]}

        with pytest.raises(FamilyConfigError):
            validate_family_config("snow", cfg)

    def test_disabled_families_are_dropped(self):
        config = merge_config(DEFAULTS, {"families": {"snow": {"enabled": False}}})

        assert "snow" not in family_configs(config)
