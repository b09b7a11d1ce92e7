"""
Minimal async GraphQL client for the exchange indexer (derived read replica).

All trader-keyed queries use lower-cased addresses; the indexer stores them that way.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional, Tuple

import httpx

from perp_keeper.core.errors import IndexerError
from perp_keeper.core.fixed_point import normalize_address, to_int_safe
from perp_keeper.core.models import Candle, OpenOrder, TradeRecord
from perp_keeper.ledger.decoding import decode_candle, decode_indexer_trade, decode_open_order

GET_CANDLES = """
query Candles($resolution: String!, $limit: Int!) {
  Candle(where: {resolution: {_eq: $resolution}}, order_by: {timestamp: desc}, limit: $limit) {
    id timestamp openPrice highPrice lowPrice closePrice volume
  }
}
"""

GET_RECENT_TRADES = """
query RecentTrades($limit: Int!) {
  Trade(order_by: {timestamp: desc}, limit: $limit) {
    id price amount timestamp buyer seller buyOrderId sellOrderId txHash
  }
}
"""

GET_OPEN_ORDERS = """
query OpenOrders($trader: String!) {
  Order(where: {trader: {_eq: $trader}, status: {_eq: "OPEN"}, amount: {_gt: "0"}}, order_by: {timestamp: desc}) {
    id trader isBuy price amount initialAmount status timestamp
  }
}
"""

GET_MY_TRADES = """
query MyTrades($trader: String!, $limit: Int!) {
  Trade(where: {_or: [{buyer: {_eq: $trader}}, {seller: {_eq: $trader}}]}, order_by: {timestamp: desc}, limit: $limit) {
    id price amount timestamp buyer seller buyOrderId sellOrderId txHash
  }
}
"""

GET_USER_VOLUMES = """
query UserVolumes {
  UserVolume(where: {volume30Days: {_gt: "0"}}) {
    trader volume30Days
  }
}
"""

GET_USER_VOLUME = """
query UserVolume($trader: String!) {
  UserVolume(where: {trader: {_eq: $trader}}) {
    trader volume30Days
  }
}
"""


class IndexerClient:
    def __init__(self, url: str, timeout: float = 5.0, client: Optional[httpx.AsyncClient] = None) -> None:
        self.url = url
        # A shared client passed in is not closed by close(); otherwise we own it.
        if client is not None:
            self.client = client
            self._owns_client = False
        else:
            self.client = httpx.AsyncClient(http2=True, timeout=timeout)
            self._owns_client = True

    async def close(self) -> None:
        if self._owns_client:
            await self.client.aclose()

    async def query(self, query: str, variables: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        try:
            resp = await self.client.post(self.url, json={"query": query, "variables": variables or {}})
            resp.raise_for_status()
            payload = resp.json()
        except httpx.HTTPError as exc:
            raise IndexerError(f"indexer request failed: {exc}") from exc
        except ValueError as exc:
            raise IndexerError(f"indexer returned invalid JSON: {exc}") from exc
        if not isinstance(payload, dict):
            raise IndexerError("indexer returned a non-object payload")
        if payload.get("errors"):
            first = payload["errors"][0]
            msg = first.get("message") if isinstance(first, dict) else str(first)
            raise IndexerError(f"indexer query error: {msg}")
        data = payload.get("data")
        if not isinstance(data, dict):
            raise IndexerError("indexer response has no data")
        return data

    async def recent_candles(self, resolution: str = "1m", limit: int = 100) -> List[Candle]:
        data = await self.query(GET_CANDLES, {"resolution": resolution, "limit": limit})
        rows = data.get("Candle") or []
        candles = [decode_candle(r) for r in rows]
        # chart order: oldest first
        candles.sort(key=lambda c: c.timestamp)
        return candles

    async def recent_trades(self, limit: int = 50) -> List[TradeRecord]:
        data = await self.query(GET_RECENT_TRADES, {"limit": limit})
        return [decode_indexer_trade(r) for r in data.get("Trade") or []]

    async def open_orders(self, trader: str) -> List[OpenOrder]:
        key = normalize_address(trader)
        data = await self.query(GET_OPEN_ORDERS, {"trader": key})
        return [decode_open_order(r, key) for r in data.get("Order") or []]

    async def trader_trades(self, trader: str, limit: int = 50) -> List[TradeRecord]:
        key = normalize_address(trader)
        data = await self.query(GET_MY_TRADES, {"trader": key, "limit": limit})
        return [decode_indexer_trade(r, account=key) for r in data.get("Trade") or []]

    async def user_volumes(self) -> List[Tuple[str, int]]:
        """Every trader with non-zero rolling volume, as (address, volume)."""
        data = await self.query(GET_USER_VOLUMES)
        out = []
        for row in data.get("UserVolume") or []:
            trader = row.get("trader")
            if not trader:
                continue
            out.append((normalize_address(trader), to_int_safe(row.get("volume30Days"))))
        return out

    async def user_volume(self, trader: str) -> int:
        data = await self.query(GET_USER_VOLUME, {"trader": normalize_address(trader)})
        rows = data.get("UserVolume") or []
        if not rows:
            return 0
        return to_int_safe(rows[0].get("volume30Days"))
