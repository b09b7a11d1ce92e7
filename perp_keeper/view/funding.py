"""
Funding-rate estimate from mark/index divergence (clamped interest-premium model).
"""

from __future__ import annotations

from perp_keeper.core.fixed_point import to_float

INTEREST_RATE = 0.0001  # 0.01% per hour
CLAMP_BOUND = 0.0005    # 0.05%


def clamp(value: float, bound: float) -> float:
    if value > bound:
        return bound
    if value < -bound:
        return -bound
    return value


def estimate_funding_rate(
    mark_price: int,
    index_price: int,
    interest_rate: float = INTEREST_RATE,
    clamp_bound: float = CLAMP_BOUND,
) -> float:
    """
    Hourly funding estimate: premium + clamp(interest - premium, ±clamp_bound).

    Pure; both prices are 18-decimal fixed-point integers. index == 0 yields 0.
    """
    if index_price == 0:
        return 0.0
    mark = to_float(mark_price)
    index = to_float(index_price)
    premium = (mark - index) / index
    adjustment = clamp(interest_rate - premium, clamp_bound)
    return premium + adjustment
