"""
Wiring and supervision for the keeper loops.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import List, Optional

from perp_keeper.book.depth import DepthAggregator
from perp_keeper.book.order_chain import OrderChainReconstructor
from perp_keeper.config.config import Settings
from perp_keeper.config.watchlist import load_watchlist
from perp_keeper.infra.indexer import IndexerClient
from perp_keeper.infra.ledger import LedgerClient
from perp_keeper.infra.signer_locks import SignerLocks
from perp_keeper.keeper.active_traders import ActiveTraderTracker
from perp_keeper.keeper.event_feed import LedgerEventFeed
from perp_keeper.keeper.liquidator import LiquidationMonitor
from perp_keeper.keeper.vip_keeper import VIPTierReconciler
from perp_keeper.risk.ledger_health import LedgerHealth, LedgerHealthConfig
from perp_keeper.view.account_view import AccountView
from perp_keeper.view.market_view import MarketView
from perp_keeper.view.vip_loader import VIPInfoLoader
from perp_keeper.infra.logging_cfg import log_event

log = logging.getLogger("keeper")


@dataclass
class Keeper:
    ledger: LedgerClient
    health: LedgerHealth
    tracker: ActiveTraderTracker
    feed: LedgerEventFeed
    indexer: Optional[IndexerClient] = None
    market_view: Optional[MarketView] = None
    account_view: Optional[AccountView] = None
    liquidator: Optional[LiquidationMonitor] = None
    vip_keeper: Optional[VIPTierReconciler] = None
    loops: List[tuple] = field(default_factory=list)

    async def close(self) -> None:
        if self.indexer is not None:
            await self.indexer.close()
        await self.ledger.close(wait=False)


async def build_keeper(cfg: Settings, metrics=None, status_board=None, health_checker=None, signer_locks=None) -> Keeper:
    signer = cfg.resolve_signer() if cfg.can_sign else None
    ledger = LedgerClient.from_settings(cfg, signer=signer, metrics=metrics)
    if signer is not None:
        if signer_locks is None:
            signer_locks = SignerLocks()
        signer_locks.bind(ledger, signer)

    indexer = IndexerClient(cfg.indexer_url, timeout=cfg.indexer_timeout) if cfg.indexer_url else None

    def _ledger_state(valid: bool) -> None:
        if metrics is not None:
            metrics.ledger_valid.set(1 if valid else 0)
        if health_checker is not None:
            health_checker.set_component_health("ledger", valid, None if valid else "exchange contract invalid")

    health = LedgerHealth(
        LedgerHealthConfig(error_threshold=cfg.ledger_error_threshold, probe_cooldown_sec=cfg.probe_cooldown_sec),
        probe=ledger.has_code,
        on_trip=lambda: _ledger_state(False),
        on_reset=lambda: _ledger_state(True),
    )
    _ledger_state(True)

    tracker = ActiveTraderTracker(load_watchlist(cfg.watchlist_path))

    def _feed_state(stale: bool) -> None:
        if health_checker is not None:
            health_checker.set_component_health("event_feed", not stale, "no events polled" if stale else None)

    feed = LedgerEventFeed(
        ledger,
        handlers=[tracker.on_event],
        poll_interval=cfg.event_poll_interval,
        max_block_range=cfg.event_max_block_range,
        stale_after=cfg.event_stale_after,
        start_block=cfg.deploy_block or None,
        on_stale=_feed_state,
        metrics=metrics,
    )
    keeper = Keeper(ledger=ledger, health=health, tracker=tracker, feed=feed, indexer=indexer)
    keeper.loops.append(("event_feed", feed))

    if cfg.enable_market_view:
        keeper.market_view = MarketView(
            ledger,
            health,
            indexer=indexer,
            reconstructor=OrderChainReconstructor(ledger, max_hops=cfg.max_chain_hops, scan_limit=cfg.scan_limit),
            aggregator=DepthAggregator(),
            interval=cfg.market_interval,
            deploy_block=cfg.deploy_block,
            metrics=metrics,
            status_board=status_board,
        )
        keeper.loops.append(("market", keeper.market_view))

    account = cfg.resolve_account()
    if account:
        loader = VIPInfoLoader(ledger, health=health, timeout=cfg.vip_info_timeout, debounce_sec=cfg.vip_info_debounce_sec)
        keeper.account_view = AccountView(
            ledger,
            account,
            loader,
            indexer=indexer,
            market_view=keeper.market_view,
            interval=cfg.market_interval,
            status_board=status_board,
        )
        keeper.loops.append(("account", keeper.account_view))

    if cfg.enable_liquidator and signer is not None:
        keeper.liquidator = LiquidationMonitor(
            ledger, tracker, interval=cfg.liquidation_interval, health=health, metrics=metrics, status_board=status_board
        )
        keeper.loops.append(("liquidation", keeper.liquidator))

    if cfg.enable_vip_keeper and signer is not None and indexer is not None:
        keeper.vip_keeper = VIPTierReconciler(
            ledger, indexer, interval=cfg.vip_interval, health=health, metrics=metrics, status_board=status_board
        )
        keeper.loops.append(("vip", keeper.vip_keeper))

    log_event(log, "keeper_built", loops=[name for name, _ in keeper.loops], tracked=len(tracker), signer=signer is not None)
    return keeper


class LoopRunner:
    def __init__(self, name: str, loop) -> None:
        self.name = name
        self.loop = loop
        self.task: asyncio.Task | None = None
        self.error: Exception | None = None

    def start(self) -> None:
        self.task = asyncio.create_task(self.loop.run(), name=self.name)

    async def stop(self) -> None:
        await self.loop.stop()
        if self.task:
            self.task.cancel()
            await asyncio.gather(self.task, return_exceptions=True)


async def run_all(keeper: Keeper, health_checker=None) -> None:
    """Run every loop concurrently; one loop crashing stops the others."""
    runners = [LoopRunner(name, loop) for name, loop in keeper.loops]
    for r in runners:
        r.start()
    if health_checker is not None:
        health_checker.set_ready(True)

    try:
        async with asyncio.TaskGroup() as tg:
            for r in runners:
                tg.create_task(_watch_loop(r, runners))
    finally:
        if health_checker is not None:
            health_checker.set_ready(False)
        for r in runners:
            await r.stop()


async def _watch_loop(runner: LoopRunner, runners: List[LoopRunner]) -> None:
    try:
        if runner.task:
            await runner.task
    except asyncio.CancelledError:
        raise
    except Exception as exc:
        runner.error = exc
        log_event(log, "loop_crashed", logging.ERROR, loop=runner.name, err=str(exc))
        for r in runners:
            if r is not runner and r.task:
                r.task.cancel()
        raise
