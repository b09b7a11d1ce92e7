"""
Domain records reconstructed from ledger and indexer reads.

Everything here is immutable. Views are rebuilt every cycle and published by
swapping a single reference, so readers never see a half-updated snapshot.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Optional, Tuple


@dataclass(frozen=True)
class LiveOrder:
    """One slot of the contract's order arena."""
    id: int
    trader: str
    is_buy: bool
    price: int
    remaining_amount: int
    initial_amount: int
    timestamp: int
    next_id: int

    @property
    def is_live(self) -> bool:
        return self.remaining_amount > 0

    @property
    def side(self) -> str:
        return "bid" if self.is_buy else "ask"


@dataclass(frozen=True)
class BookLevel:
    price: float
    size: float
    cumulative_size: float
    depth_percent: int


@dataclass(frozen=True)
class BookSnapshot:
    bids: Tuple[BookLevel, ...] = ()
    asks: Tuple[BookLevel, ...] = ()
    order_count: int = 0
    bid_head: int = 0
    ask_head: int = 0
    taken_at: float = field(default_factory=time.time)

    @property
    def best_bid(self) -> Optional[float]:
        return self.bids[0].price if self.bids else None

    @property
    def best_ask(self) -> Optional[float]:
        return self.asks[0].price if self.asks else None

    def to_dict(self) -> dict:
        return {
            "bids": [level.__dict__ for level in self.bids],
            "asks": [level.__dict__ for level in self.asks],
            "order_count": self.order_count,
            "bid_head": self.bid_head,
            "ask_head": self.ask_head,
            "taken_at": self.taken_at,
        }


@dataclass(frozen=True)
class FundingSnapshot:
    mark_price: int
    index_price: int
    estimated_hourly_rate: float
    initial_margin_bps: int = 100
    taken_at: float = field(default_factory=time.time)

    def to_dict(self) -> dict:
        return {
            "mark_price": str(self.mark_price),
            "index_price": str(self.index_price),
            "estimated_hourly_rate": self.estimated_hourly_rate,
            "initial_margin_bps": self.initial_margin_bps,
            "taken_at": self.taken_at,
        }


@dataclass(frozen=True)
class Position:
    size: int
    entry_price: int

    @property
    def is_flat(self) -> bool:
        return self.size == 0

    @property
    def side(self) -> str:
        if self.size > 0:
            return "long"
        if self.size < 0:
            return "short"
        return "flat"


@dataclass(frozen=True)
class VIPState:
    level: int
    cumulative_volume: int
    volume_to_next_tier: int
    fee_rate_bps: int
    fallback: bool = False

    @property
    def level_name(self) -> str:
        return f"VIP {self.level}"

    @property
    def fee_rate_percent(self) -> float:
        return self.fee_rate_bps / 100.0


@dataclass(frozen=True)
class TradeRecord:
    id: str
    price: int
    amount: int
    side: str
    timestamp: Optional[int] = None
    block_number: Optional[int] = None
    buyer: Optional[str] = None
    seller: Optional[str] = None
    tx_hash: Optional[str] = None


@dataclass(frozen=True)
class Candle:
    timestamp: int
    open: int
    high: int
    low: int
    close: int
    volume: int = 0


@dataclass(frozen=True)
class OpenOrder:
    id: int
    trader: str
    is_buy: bool
    price: int
    amount: int
    initial_amount: int
    timestamp: int


@dataclass(frozen=True)
class AccountSnapshot:
    account: str
    margin: int = 0
    position: Optional[Position] = None
    vip: Optional[VIPState] = None
    referrer: Optional[str] = None
    open_orders: Tuple[OpenOrder, ...] = ()
    trades: Tuple[TradeRecord, ...] = ()
    taken_at: float = field(default_factory=time.time)
