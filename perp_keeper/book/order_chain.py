"""
OrderChainReconstructor: rebuild the live order set from the contract's order arena.

The contract keeps each side of the book as a singly-linked list of order ids
(bestBuyId / bestSellId heads, `next` pointers). Those pointers are not trusted:
a walk is bounded in hops, stops at the first repeated id, and is cross-checked by
a brute-force read of the low order-id slots. All three sources are merged into one
id-keyed arena (last read wins) and filtered down to live orders.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Protocol

from perp_keeper.core.models import LiveOrder
from perp_keeper.infra.logging_cfg import log_event

log = logging.getLogger("keeper")

MAX_CHAIN_HOPS = 128
SCAN_LIMIT = 20


class OrderReader(Protocol):
    async def get_order(self, order_id: int) -> LiveOrder: ...


@dataclass
class ChainWalk:
    """Orders reachable from one head pointer and why the walk stopped."""
    head_id: int
    orders: List[LiveOrder] = field(default_factory=list)
    # empty | end | sentinel | cycle | hop_limit | error
    terminated_by: str = "empty"
    error: Optional[str] = None

    @property
    def hops(self) -> int:
        return len(self.orders)


@dataclass
class Reconstruction:
    bids: List[LiveOrder]
    asks: List[LiveOrder]
    arena: Dict[int, LiveOrder]
    bid_walk: ChainWalk
    ask_walk: ChainWalk
    scanned: int = 0
    scan_error: Optional[str] = None

    @property
    def live_count(self) -> int:
        return len(self.bids) + len(self.asks)


class OrderChainReconstructor:
    """
    Usage:
        recon = await OrderChainReconstructor(ledger).reconstruct(bid_head, ask_head)
        recon.bids, recon.asks   # live orders only, split by side
    """

    def __init__(self, reader: OrderReader, max_hops: int = MAX_CHAIN_HOPS, scan_limit: int = SCAN_LIMIT) -> None:
        self.reader = reader
        self.max_hops = max_hops
        self.scan_limit = scan_limit

    async def walk(self, head_id: Optional[int]) -> ChainWalk:
        """
        Follow `next_id` from head_id. Terminates at id 0, an empty-slot sentinel,
        the first repeated id, or after max_hops reads. Read failures propagate.
        """
        walk = ChainWalk(head_id=int(head_id or 0))
        if not head_id:
            return walk
        visited: set[int] = set()
        current = int(head_id)
        for _ in range(self.max_hops):
            if current == 0:
                walk.terminated_by = "end"
                return walk
            if current in visited:
                walk.terminated_by = "cycle"
                log_event(log, "order_chain_cycle", logging.WARNING, head=walk.head_id, repeated_id=current, hops=walk.hops)
                return walk
            visited.add(current)
            order = await self.reader.get_order(current)
            if order.id == 0:
                walk.terminated_by = "sentinel"
                return walk
            walk.orders.append(order)
            current = order.next_id
        walk.terminated_by = "end" if current == 0 else "hop_limit"
        if walk.terminated_by == "hop_limit":
            log_event(log, "order_chain_hop_limit", logging.WARNING, head=walk.head_id, hops=walk.hops)
        return walk

    async def _safe_walk(self, head_id: Optional[int], side: str) -> ChainWalk:
        try:
            return await self.walk(head_id)
        except Exception as exc:
            log_event(log, "order_chain_error", logging.ERROR, side=side, head=head_id, err=str(exc))
            return ChainWalk(head_id=int(head_id or 0), terminated_by="error", error=str(exc))

    async def scan_slots(self) -> tuple[List[LiveOrder], Optional[str]]:
        """
        Read slots 1..scan_limit directly. The first failing slot is logged and
        ends the scan; whatever was read before it is kept.
        """
        found: List[LiveOrder] = []
        for slot in range(1, self.scan_limit + 1):
            try:
                order = await self.reader.get_order(slot)
            except Exception as exc:
                log_event(log, "order_scan_error", logging.WARNING, slot=slot, err=str(exc))
                return found, str(exc)
            log_event(log, "order_scan_slot", logging.DEBUG, slot=slot, id=order.id, amount=str(order.remaining_amount))
            if order.id != 0:
                found.append(order)
        return found, None

    async def reconstruct(self, bid_head: Optional[int], ask_head: Optional[int]) -> Reconstruction:
        bid_walk, ask_walk = await asyncio.gather(
            self._safe_walk(bid_head, "bid"),
            self._safe_walk(ask_head, "ask"),
        )
        scanned, scan_error = await self.scan_slots()

        arena: Dict[int, LiveOrder] = {}
        for order in [*bid_walk.orders, *ask_walk.orders, *scanned]:
            if order.id:
                arena[order.id] = order

        live = [o for o in arena.values() if o.is_live]
        bids = [o for o in live if o.is_buy]
        asks = [o for o in live if not o.is_buy]
        log_event(
            log,
            "order_book_reconstructed",
            logging.DEBUG,
            bid_head=bid_walk.head_id,
            ask_head=ask_walk.head_id,
            bid_chain=bid_walk.hops,
            ask_chain=ask_walk.hops,
            scanned=len(scanned),
            arena=len(arena),
            bids=len(bids),
            asks=len(asks),
        )
        return Reconstruction(
            bids=bids,
            asks=asks,
            arena=arena,
            bid_walk=bid_walk,
            ask_walk=ask_walk,
            scanned=len(scanned),
            scan_error=scan_error,
        )
