"""
MarketView: the public market refresh loop.

Each cycle reads prices and head pointers, derives the funding snapshot,
reconstructs the order book and refreshes recent trades and candles. Every
published attribute is an immutable value swapped in by a single assignment, so
readers see either the previous cycle or the new one, never a mix. A failed
cycle leaves the previous snapshots in place.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Dict, List, Optional, Tuple

from perp_keeper.book.depth import DepthAggregator
from perp_keeper.book.order_chain import OrderChainReconstructor
from perp_keeper.core.errors import IndexerError, LedgerError
from perp_keeper.core.fixed_point import to_float
from perp_keeper.core.models import BookSnapshot, Candle, FundingSnapshot, TradeRecord
from perp_keeper.core.result import CycleResult
from perp_keeper.ledger.decoding import decode_trade_log
from perp_keeper.view.funding import estimate_funding_rate
from perp_keeper.infra.logging_cfg import log_event

log = logging.getLogger("keeper")

RECENT_TRADES_LIMIT = 50
DEFAULT_INITIAL_MARGIN_BPS = 100


def _log_position(entry: Any) -> Tuple[int, int]:
    if isinstance(entry, dict):
        return int(entry.get("blockNumber") or 0), int(entry.get("logIndex") or 0)
    return int(getattr(entry, "blockNumber", 0) or 0), int(getattr(entry, "logIndex", 0) or 0)


class MarketView:
    """
    Usage:
        view = MarketView(ledger, health, indexer=indexer, deploy_block=cfg.deploy_block)
        await view.refresh_once()
        view.book.bids, view.funding.estimated_hourly_rate
    """

    def __init__(
        self,
        ledger,
        health,
        indexer=None,
        reconstructor: Optional[OrderChainReconstructor] = None,
        aggregator: Optional[DepthAggregator] = None,
        interval: float = 2.0,
        deploy_block: int = 0,
        metrics=None,
        status_board=None,
    ) -> None:
        self.ledger = ledger
        self.health = health
        self.indexer = indexer
        self.reconstructor = reconstructor or OrderChainReconstructor(ledger)
        self.aggregator = aggregator or DepthAggregator()
        self.interval = interval
        self.deploy_block = deploy_block
        self.metrics = metrics
        self.status_board = status_board
        self.funding: Optional[FundingSnapshot] = None
        self.book: Optional[BookSnapshot] = None
        self.trades: Tuple[TradeRecord, ...] = ()
        self.candles: Tuple[Candle, ...] = ()
        self.trades_source: str = "none"
        self.last_result: Optional[CycleResult] = None
        self._initial_margin_bps = DEFAULT_INITIAL_MARGIN_BPS
        self._stop = asyncio.Event()

    async def _read_initial_margin_bps(self) -> int:
        try:
            self._initial_margin_bps = await self.ledger.initial_margin_bps()
        except LedgerError as exc:
            log_event(log, "initial_margin_read_error", logging.DEBUG, err=str(exc))
        return self._initial_margin_bps

    async def refresh_once(self) -> CycleResult:
        started = time.time()
        if not await self.health.ensure():
            result = CycleResult(success=False, loop="market", error="ledger invalid", details={"skipped": True})
            self.last_result = result
            return result

        try:
            mark, index, bid_head, ask_head = await asyncio.gather(
                self.ledger.mark_price(),
                self.ledger.index_price(),
                self.ledger.best_bid_id(),
                self.ledger.best_ask_id(),
            )
        except LedgerError as exc:
            self.health.record_error("market_refresh", exc)
            log_event(log, "market_refresh_error", logging.WARNING, where=exc.where, err=str(exc))
            return self._finish(started, CycleResult(success=False, loop="market", error=str(exc)))
        self.health.record_success()

        im_bps = await self._read_initial_margin_bps()
        self.funding = FundingSnapshot(
            mark_price=mark,
            index_price=index,
            estimated_hourly_rate=estimate_funding_rate(mark, index),
            initial_margin_bps=im_bps,
        )

        recon = await self.reconstructor.reconstruct(bid_head, ask_head)
        self.book = self.aggregator.snapshot(recon.bids, recon.asks, bid_head=bid_head, ask_head=ask_head)

        trades = await self._load_trades()
        if trades is not None:
            self.trades = tuple(trades)
        self.candles = tuple(await self._load_candles())

        details = {
            "bids": len(self.book.bids),
            "asks": len(self.book.asks),
            "orders": recon.live_count,
            "scan_error": recon.scan_error,
            "trades_source": self.trades_source,
        }
        return self._finish(started, CycleResult(success=True, loop="market", details=details))

    async def _load_trades(self) -> Optional[List[TradeRecord]]:
        """Indexer first, then the ledger event log. None keeps the previous list."""
        if self.indexer is not None:
            try:
                trades = await self.indexer.recent_trades(RECENT_TRADES_LIMIT)
                self.trades_source = "indexer"
                return trades
            except IndexerError as exc:
                log_event(log, "indexer_unavailable", logging.WARNING, where="recent_trades", err=str(exc))
        try:
            entries = await self.ledger.get_logs("TradeExecuted", self.deploy_block)
        except LedgerError as exc:
            log_event(log, "trade_log_error", logging.WARNING, err=str(exc))
            return None
        newest = sorted(entries, key=_log_position, reverse=True)[:RECENT_TRADES_LIMIT]
        self.trades_source = "event_log"
        return [decode_trade_log(e) for e in newest]

    async def _load_candles(self) -> List[Candle]:
        if self.indexer is None:
            return []
        try:
            return await self.indexer.recent_candles()
        except IndexerError as exc:
            log_event(log, "indexer_unavailable", logging.WARNING, where="candles", err=str(exc))
            return []

    def _finish(self, started: float, result: CycleResult) -> CycleResult:
        result.duration_ms = (time.time() - started) * 1000
        self.last_result = result
        if self.metrics is not None:
            self.metrics.loop_duration.labels(loop="market").observe(result.duration_ms / 1000)
            if not result.success:
                self.metrics.loop_failures.labels(loop="market").inc()
            if self.funding is not None:
                self.metrics.funding_rate.set(self.funding.estimated_hourly_rate)
                self.metrics.mark_price.set(to_float(self.funding.mark_price))
            if self.book is not None:
                self.metrics.book_levels.labels(side="bid").set(len(self.book.bids))
                self.metrics.book_levels.labels(side="ask").set(len(self.book.asks))
        return result

    def snapshot(self) -> Dict[str, Any]:
        return {
            "funding": self.funding.to_dict() if self.funding else None,
            "book": self.book.to_dict() if self.book else None,
            "trades": len(self.trades),
            "trades_source": self.trades_source,
            "candles": len(self.candles),
            "last_cycle_ok": self.last_result.success if self.last_result else None,
        }

    async def run(self) -> None:
        log_event(log, "market_view_start", interval=self.interval)
        while not self._stop.is_set():
            try:
                result = await self.refresh_once()
                if self.status_board is not None:
                    await self.status_board.update("market", self.snapshot())
                if not result.success and not result.details.get("skipped"):
                    log_event(log, "market_cycle_failed", logging.DEBUG, err=result.error)
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                log_event(log, "market_cycle_error", logging.ERROR, err=str(exc))
                if self.metrics is not None:
                    self.metrics.loop_failures.labels(loop="market").inc()
            try:
                await asyncio.wait_for(self._stop.wait(), timeout=self.interval)
            except asyncio.TimeoutError:
                pass

    async def stop(self) -> None:
        self._stop.set()
