"""
ActiveTraderTracker: working set of traders eligible for liquidation checks.

Membership grows from OrderPlaced (trader) and TradeExecuted (buyer, seller)
events and shrinks only when the liquidation monitor confirms a liquidation.
Event callbacks may arrive from any thread; a lock guards every mutation and
snapshot() hands consumers a copy so producers are never blocked by a cycle.
"""

from __future__ import annotations

import logging
import threading
from typing import Any, Iterable, Set

from perp_keeper.core.fixed_point import is_zero_address, normalize_address
from perp_keeper.ledger.decoding import event_trader_addresses
from perp_keeper.infra.logging_cfg import log_event

log = logging.getLogger("keeper")


class ActiveTraderTracker:
    def __init__(self, seed: Iterable[str] = ()) -> None:
        self._members: Set[str] = set()
        self._lock = threading.Lock()
        for addr in seed:
            self.add(addr)

    def __len__(self) -> int:
        with self._lock:
            return len(self._members)

    def __contains__(self, trader: str) -> bool:
        with self._lock:
            return normalize_address(trader) in self._members

    def add(self, trader: str) -> bool:
        """Add a trader; returns True if it was not yet tracked."""
        if is_zero_address(trader):
            return False
        key = normalize_address(trader)
        with self._lock:
            if key in self._members:
                return False
            self._members.add(key)
        log_event(log, "trader_tracked", logging.DEBUG, trader=key)
        return True

    def remove(self, trader: str) -> bool:
        """Drop a trader after a confirmed liquidation. Idempotent."""
        key = normalize_address(trader)
        with self._lock:
            if key not in self._members:
                return False
            self._members.discard(key)
        log_event(log, "trader_untracked", trader=key)
        return True

    def snapshot(self) -> Set[str]:
        with self._lock:
            return set(self._members)

    def on_event(self, event_name: str, args: Any) -> int:
        """Event-feed callback. Returns the number of newly tracked traders."""
        added = 0
        for addr in event_trader_addresses(event_name, args):
            if self.add(addr):
                added += 1
        return added
