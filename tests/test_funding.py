"""
Tests for the funding-rate estimate.
"""

import pytest

from perp_keeper.core.fixed_point import WAD
from perp_keeper.view.funding import CLAMP_BOUND, INTEREST_RATE, clamp, estimate_funding_rate


def test_mark_above_index_clamps_adjustment():
    rate = estimate_funding_rate(101 * WAD, 100 * WAD)
    assert rate == pytest.approx(0.0095)


def test_index_zero_is_zero():
    assert estimate_funding_rate(101 * WAD, 0) == 0.0


def test_mark_equals_index_pays_interest():
    assert estimate_funding_rate(100 * WAD, 100 * WAD) == pytest.approx(INTEREST_RATE)


def test_small_premium_inside_clamp_band():
    # premium 0.0002 -> adjustment -0.0001 (unclamped) -> rate 0.0001
    rate = estimate_funding_rate(100_020 * WAD // 1000, 100 * WAD)
    assert rate == pytest.approx(0.0001)


@pytest.mark.parametrize("mark", [1, 50 * WAD, 99 * WAD, 150 * WAD, 10_000 * WAD])
def test_adjustment_always_clamped(mark):
    index = 100 * WAD
    premium = (mark / WAD - 100) / 100
    adjustment = estimate_funding_rate(mark, index) - premium
    assert -CLAMP_BOUND - 1e-12 <= adjustment <= CLAMP_BOUND + 1e-12


def test_pure_for_equal_inputs():
    a = estimate_funding_rate(123456789 * 10**12, 123 * WAD)
    b = estimate_funding_rate(123456789 * 10**12, 123 * WAD)
    assert a == b


def test_clamp():
    assert clamp(0.1, 0.0005) == 0.0005
    assert clamp(-0.1, 0.0005) == -0.0005
    assert clamp(0.0001, 0.0005) == 0.0001
