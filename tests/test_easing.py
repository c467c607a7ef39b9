"""
Tests for easing curves and colour helpers.
"""

import random

import numpy as np
import pytest

from arbor.colors import WeightedPalette, parse_color, parse_gradient_stops, rgb_to_hex, sample_gradient
from arbor.easing import EASINGS, ease_in_out_cubic, get_easing, smoothstep
from arbor.errors import FamilyConfigError


class TestEasing:
    @pytest.mark.parametrize("name", sorted(EASINGS))
    def test_fixed_points(self, name):
        ease = get_easing(name)

        assert ease(0.0) == pytest.approx(0.0)
        assert ease(0.5) == pytest.approx(0.5)
        assert ease(1.0) == pytest.approx(1.0)

    @pytest.mark.parametrize("name", sorted(EASINGS))
    def test_monotonic(self, name):
        values = get_easing(name)(np.linspace(0.0, 1.0, 501))

        assert np.all(np.diff(values) >= 0.0)

    def test_cubic_shape(self):
        assert ease_in_out_cubic(0.25) == pytest.approx(0.0625)
        assert ease_in_out_cubic(0.75) == pytest.approx(0.9375)

    def test_array_matches_scalar(self):
        ts = [0.1, 0.4, 0.6, 0.9]

        assert ease_in_out_cubic(np.array(ts)).tolist() == pytest.approx([ease_in_out_cubic(t) for t in ts])

    def test_unknown_easing(self):
        with pytest.raises(FamilyConfigError):
            get_easing("bounce")

    def test_smoothstep_edges(self):
        out = smoothstep(0.992, 1.0, np.array([0.5, 0.992, 0.996, 1.0]))

        assert out.tolist() == pytest.approx([0.0, 0.0, 0.5, 1.0])


class TestColors:
    def test_parse_hex_and_triples(self):
        assert parse_color("#FF0000") == (1.0, 0.0, 0.0)
        assert parse_color("#fff") == (1.0, 1.0, 1.0)
        assert parse_color([2.0, 1.7, 0.8]) == (2.0, 1.7, 0.8)
        assert rgb_to_hex((1.0, 0.5, 0.0)) == "#FF8000"

    @pytest.mark.parametrize("value", ["#12345", "#GGGGGG", [1.0, -0.1, 0.0], 42])
    def test_invalid_colors(self, value):
        with pytest.raises(FamilyConfigError):
            parse_color(value)

    def test_gradient_interpolates_by_position(self):
        stops = parse_gradient_stops("#000000@0,#FFFFFF@1")
        out = sample_gradient(stops, np.array([0.0, 0.5, 1.0, 2.0]))

        assert out[:, 0].tolist() == pytest.approx([0.0, 0.5, 1.0, 1.0])

    def test_gradient_pads_missing_ends(self):
        stops = parse_gradient_stops("#FF0000@0.25,#0000FF@0.75")

        assert stops[0][1] == 0.0 and stops[-1][1] == 1.0
        assert stops[0][0] == (1.0, 0.0, 0.0)

    def test_palette_frequencies(self):
        palette = WeightedPalette.from_config(
            [{"color": "#7A1F1F", "weight": 0.31}, {"color": "#D4AF37", "weight": 0.06}, {"color": "#F2E8D5", "weight": 0.63}]
        )
        rng = random.Random(12)
        picks = [palette.pick(rng).color for _ in range(10000)]
        gold = sum(1 for c in picks if c == parse_color("#D4AF37")) / len(picks)

        assert gold == pytest.approx(0.06, abs=0.01)
