"""Per-pick scoring — pure functions, no I/O."""

from __future__ import annotations

import math

from flip_core.models.duel import Direction

POINTS_PER_PERCENT = 100
MAX_ABS_POINTS = 2500

# 1-based duplicate index -> share of a winning move that is kept
NERF_TABLE: dict[int, float] = {1: 1.0, 2: 0.75, 3: 0.5, 4: 0.25}

BOOST_MULTIPLIERS: dict[int, float] = {50: 1.5, 100: 2.0}


def nerf_factor(duplicate_index: int) -> float:
    if duplicate_index <= 1:
        return 1.0
    return NERF_TABLE.get(duplicate_index, 0.0)


def loss_multiplier(duplicate_index: int) -> float:
    """Losses on repeated tokens are amplified by ``2 - nerf``."""
    return 2.0 - nerf_factor(duplicate_index)


def boost_multiplier(boost_level: int) -> float:
    return BOOST_MULTIPLIERS.get(boost_level, 1.0)


def round_half_up(value: float) -> int:
    """Round to nearest integer with .5 going toward +inf (-2.5 -> -2)."""
    return int(math.floor(value + 0.5))


def _valid_price(p: float | None) -> bool:
    return p is not None and math.isfinite(p) and p > 0


def percent_change(baseline: float, current: float) -> float | None:
    """Percent move from *baseline* to *current*; None when either price is unusable."""
    if not (_valid_price(baseline) and _valid_price(current)):
        return None
    return (current - baseline) / baseline * 100


def signed_percent(pct: float, direction: Direction) -> float:
    return pct if direction == "up" else -pct


def score_pick(
    baseline: float | None,
    current: float | None,
    direction: Direction,
    duplicate_index: int = 1,
    boost_level: int = 0,
    boost_active: bool = False,
) -> int:
    """Points for one pick.

    Every 1% in the called direction is 100 points. Winning moves on a
    repeated token are scaled down by the nerf table and losing moves
    scaled up by ``2 - nerf``. The result is clamped to +/-2500 before
    the boost, so a boosted win can exceed the clamp. Missing or
    non-positive prices score 0.
    """
    pct = percent_change(baseline, current)
    if pct is None:
        return 0

    raw = signed_percent(pct, direction) * POINTS_PER_PERCENT
    if raw >= 0:
        pts = raw * nerf_factor(duplicate_index)
    else:
        pts = raw * loss_multiplier(duplicate_index)

    pts = max(-MAX_ABS_POINTS, min(MAX_ABS_POINTS, pts))

    if boost_active and boost_level > 0 and pts > 0:
        pts *= boost_multiplier(boost_level)

    return round_half_up(pts)
