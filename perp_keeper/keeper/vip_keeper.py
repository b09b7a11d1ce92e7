"""
VIPTierReconciler: keep on-ledger VIP tiers in line with rolling volume.

Volume comes from the indexer (the ledger does not expose a rolling window).
For each trader the theoretical tier is looked up in the tier table and compared
with getVIPLevel; a mismatch is corrected with the privileged setVIPLevel call.

The reconciler remembers the last level it confirmed per trader. If the ledger
still reports the old level on the next cycle (read replica lag behind the
write), the trader is skipped once instead of being corrected a second time.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from perp_keeper.core.errors import IndexerError, LedgerError, TransactionFailed
from perp_keeper.keeper.vip_tiers import DEFAULT_TIERS, TierTable
from perp_keeper.infra.logging_cfg import log_event

log = logging.getLogger("keeper")


@dataclass
class VIPCheck:
    trader: str
    volume: int
    on_ledger: Optional[int] = None
    theoretical: Optional[int] = None
    # in_sync | corrected | pending | failed
    outcome: str = "in_sync"
    error: Optional[str] = None
    tx_hash: Optional[str] = None


@dataclass
class VIPCycleReport:
    started_at: float
    checks: List[VIPCheck] = field(default_factory=list)
    indexer_error: Optional[str] = None
    duration_ms: float = 0.0

    def count(self, outcome: str) -> int:
        return sum(1 for c in self.checks if c.outcome == outcome)

    @property
    def corrections(self) -> List[VIPCheck]:
        return [c for c in self.checks if c.outcome == "corrected"]


class VIPTierReconciler:
    """
    Usage:
        keeper = VIPTierReconciler(ledger, indexer)
        report = await keeper.reconcile_once()
    """

    def __init__(
        self,
        ledger,
        indexer,
        tiers: TierTable = DEFAULT_TIERS,
        interval: float = 3600.0,
        health=None,
        metrics=None,
        status_board=None,
    ) -> None:
        self.ledger = ledger
        self.indexer = indexer
        self.tiers = tiers
        self.interval = interval
        self.health = health
        self.metrics = metrics
        self.status_board = status_board
        self._synced: Dict[str, int] = {}
        self.last_report: Optional[VIPCycleReport] = None
        self._stop = asyncio.Event()

    def theoretical_tier(self, volume: int) -> int:
        return self.tiers.tier_for_volume(volume)

    async def reconcile_trader(self, trader: str, volume: int) -> VIPCheck:
        check = VIPCheck(trader=trader, volume=volume, theoretical=self.theoretical_tier(volume))
        check.on_ledger = await self.ledger.vip_level(trader)

        if check.on_ledger == check.theoretical:
            # only a confirmed write arms the pending guard
            self._synced.pop(trader, None)
            return check

        if self._synced.get(trader) == check.theoretical:
            # confirmed last cycle but not visible yet; re-check next cycle
            self._synced.pop(trader, None)
            log_event(
                log,
                "vip_correction_not_observed",
                logging.WARNING,
                trader=trader,
                on_ledger=check.on_ledger,
                expected=check.theoretical,
            )
            check.outcome = "pending"
            return check

        log_event(
            log,
            "vip_correction_submit",
            trader=trader,
            from_tier=check.on_ledger,
            to_tier=check.theoretical,
            volume=str(volume),
        )
        receipt = await self.ledger.set_vip_level(trader, check.theoretical)
        self._synced[trader] = check.theoretical
        check.outcome = "corrected"
        check.tx_hash = receipt.tx_hash
        log_event(log, "vip_correction_confirmed", trader=trader, tier=check.theoretical, tx=receipt.tx_hash)
        return check

    async def reconcile_once(self) -> VIPCycleReport:
        report = VIPCycleReport(started_at=time.time())
        try:
            volumes = await self.indexer.user_volumes()
        except IndexerError as exc:
            report.indexer_error = str(exc)
            log_event(log, "indexer_unavailable", logging.WARNING, where="vip_reconcile", err=str(exc))
            self.last_report = report
            if self.status_board is not None:
                await self.status_board.publish_vip(report)
            return report

        if self.health is not None and not await self.health.ensure():
            log_event(log, "vip_reconcile_skipped", logging.WARNING, reason="ledger_invalid")
            self.last_report = report
            return report

        for trader, volume in volumes:
            try:
                check = await self.reconcile_trader(trader, volume)
            except TransactionFailed as exc:
                log_event(log, "vip_correction_failed", logging.ERROR, trader=trader, err=str(exc), tx=exc.tx_hash)
                check = VIPCheck(trader=trader, volume=volume, theoretical=self.theoretical_tier(volume), outcome="failed", error=str(exc), tx_hash=exc.tx_hash)
            except LedgerError as exc:
                if self.health is not None:
                    self.health.record_error("vip_reconcile", exc)
                log_event(log, "vip_check_error", logging.WARNING, trader=trader, err=str(exc))
                check = VIPCheck(trader=trader, volume=volume, outcome="failed", error=str(exc))
            except Exception as exc:
                log_event(log, "vip_check_error", logging.ERROR, trader=trader, err=str(exc), type=type(exc).__name__)
                check = VIPCheck(trader=trader, volume=volume, outcome="failed", error=str(exc))
            else:
                if self.health is not None:
                    self.health.record_success()
            report.checks.append(check)
            if self.metrics is not None and check.outcome in ("corrected", "failed"):
                self.metrics.vip_corrections.labels(outcome=check.outcome).inc()

        report.duration_ms = (time.time() - report.started_at) * 1000
        self.last_report = report
        log_event(
            log,
            "vip_reconcile_cycle",
            traders=len(report.checks),
            corrected=report.count("corrected"),
            failed=report.count("failed"),
            pending=report.count("pending"),
            duration_ms=round(report.duration_ms, 1),
        )
        if self.metrics is not None:
            self.metrics.loop_duration.labels(loop="vip").observe(report.duration_ms / 1000)
        if self.status_board is not None:
            await self.status_board.publish_vip(report)
        return report

    async def run(self) -> None:
        log_event(log, "vip_keeper_start", interval=self.interval)
        while not self._stop.is_set():
            try:
                await self.reconcile_once()
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                log_event(log, "vip_cycle_error", logging.ERROR, err=str(exc))
                if self.metrics is not None:
                    self.metrics.loop_failures.labels(loop="vip").inc()
            try:
                await asyncio.wait_for(self._stop.wait(), timeout=self.interval)
            except asyncio.TimeoutError:
                pass

    async def stop(self) -> None:
        self._stop.set()
