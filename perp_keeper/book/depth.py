"""
DepthAggregator: price-bucketed, cumulative-depth view of one book side.
"""

from __future__ import annotations

import time
from typing import Dict, Iterable, List, Tuple

from perp_keeper.core.fixed_point import to_float
from perp_keeper.core.models import BookLevel, BookSnapshot, LiveOrder

PRICE_DECIMALS = 6


def _round_half_up_pct(part: int, whole: int) -> int:
    """round(part / whole * 100) with halves rounded up, in exact integer math."""
    if whole <= 0:
        return 0
    pct = (part * 200 + whole) // (2 * whole)
    return max(0, min(100, pct))


class DepthAggregator:
    """
    Groups live orders by display price, sorts the side (bids descending, asks
    ascending), and attaches running cumulative size and depth percent scaled
    against the side's total.
    """

    def __init__(self, price_decimals: int = PRICE_DECIMALS) -> None:
        self.price_decimals = price_decimals

    def aggregate(self, orders: Iterable[LiveOrder], is_buy: bool) -> Tuple[BookLevel, ...]:
        buckets: Dict[float, int] = {}
        for o in orders:
            if o.is_buy != is_buy or o.remaining_amount <= 0:
                continue
            price = round(to_float(o.price), self.price_decimals)
            buckets[price] = buckets.get(price, 0) + o.remaining_amount

        rows: List[Tuple[float, int]] = sorted(buckets.items(), key=lambda kv: kv[0], reverse=is_buy)

        cumulative: List[int] = []
        running = 0
        for _, size in rows:
            running += size
            cumulative.append(running)
        total = cumulative[-1] if cumulative else 0

        return tuple(
            BookLevel(
                price=price,
                size=to_float(size),
                cumulative_size=to_float(cum),
                depth_percent=_round_half_up_pct(cum, total),
            )
            for (price, size), cum in zip(rows, cumulative)
        )

    def snapshot(
        self,
        bids: Iterable[LiveOrder],
        asks: Iterable[LiveOrder],
        bid_head: int = 0,
        ask_head: int = 0,
    ) -> BookSnapshot:
        bids = list(bids)
        asks = list(asks)
        return BookSnapshot(
            bids=self.aggregate(bids, is_buy=True),
            asks=self.aggregate(asks, is_buy=False),
            order_count=len(bids) + len(asks),
            bid_head=bid_head,
            ask_head=ask_head,
            taken_at=time.time(),
        )
