"""Tests for per-pick scoring."""

from __future__ import annotations

import math

import pytest

from flip_core.settlement.scoring import (
    loss_multiplier,
    nerf_factor,
    percent_change,
    round_half_up,
    score_pick,
)


class TestNerfTable:
    @pytest.mark.parametrize("dup,nerf", [(1, 1.0), (2, 0.75), (3, 0.5), (4, 0.25), (5, 0.0), (6, 0.0), (12, 0.0)])
    def test_exact_values(self, dup, nerf):
        assert nerf_factor(dup) == nerf
        assert loss_multiplier(dup) == 2 - nerf

    def test_zero_treated_as_first(self):
        assert nerf_factor(0) == 1.0


class TestRounding:
    @pytest.mark.parametrize("value,expected", [(2.5, 3), (2.4, 2), (-2.5, -2), (-2.6, -3), (0.0, 0)])
    def test_half_up(self, value, expected):
        assert round_half_up(value) == expected


class TestScorePick:
    def test_up_ten_percent(self):
        assert score_pick(1.00, 1.10, "up", 1) == 1000

    def test_down_on_a_rise(self):
        assert score_pick(1.00, 1.10, "down", 1) == -1000

    def test_third_duplicate_win_is_halved(self):
        assert score_pick(1.00, 1.10, "up", 3) == 500

    def test_third_duplicate_loss_is_amplified(self):
        assert score_pick(1.00, 0.90, "up", 3) == -1500

    def test_fifth_duplicate_wins_nothing_but_loses_double(self):
        assert score_pick(1.00, 1.10, "up", 5) == 0
        assert score_pick(1.00, 0.90, "up", 5) == -2000

    def test_clamped_both_ways(self):
        assert score_pick(1.0, 2.0, "up") == 2500
        assert score_pick(1.0, 2.0, "down") == -2500
        assert score_pick(1.0, 0.5, "up", 4) == -2500

    @pytest.mark.parametrize("baseline,current", [
        (0, 1.0), (1.0, 0), (-1.0, 1.0), (None, 1.0), (1.0, None), (math.nan, 1.0), (1.0, math.inf),
    ])
    def test_invalid_prices_score_zero(self, baseline, current):
        assert score_pick(baseline, current, "up") == 0

    def test_boost_levels(self):
        assert score_pick(1.0, 1.10, "up", boost_level=100, boost_active=True) == 2000
        assert score_pick(1.0, 1.10, "up", boost_level=50, boost_active=True) == 1500

    def test_boost_needs_active_flag(self):
        assert score_pick(1.0, 1.10, "up", boost_level=100, boost_active=False) == 1000

    def test_boost_never_applies_to_losses(self):
        assert score_pick(1.0, 0.9, "up", boost_level=100, boost_active=True) == -1000

    def test_boost_applied_after_clamp(self):
        assert score_pick(1.0, 2.0, "up", boost_level=100, boost_active=True) == 5000

    def test_monotonic_within_bracket(self):
        prices = [0.5, 0.8, 0.95, 1.0, 1.01, 1.1, 1.3, 2.0]
        for dup in range(1, 6):
            scores = [score_pick(1.0, p, "up", dup) for p in prices]
            assert scores == sorted(scores)
            assert all(abs(s) <= 2500 for s in scores)

    def test_percent_change(self):
        assert percent_change(2.0, 3.0) == pytest.approx(50.0)
        assert percent_change(0, 3.0) is None
