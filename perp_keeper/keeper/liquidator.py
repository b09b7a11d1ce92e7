"""
LiquidationMonitor: periodic solvency sweep over the active trader set.

Per trader and per cycle the check is strictly sequential:

    skip         position size is zero, nothing to do
    healthy      position open, ledger says not liquidatable
    liquidating  liquidate(trader, 0) submitted, waiting for the receipt
    liquidated   receipt succeeded, trader removed from the tracker
    failed       a read or the transaction failed; trader stays tracked

A failed or reverted liquidation is never retried inside the cycle. The next
scheduled cycle re-evaluates the trader from a fresh read.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional

from perp_keeper.core.errors import LedgerError, TransactionFailed
from perp_keeper.infra.ledger import LIQUIDATE_ALL
from perp_keeper.infra.logging_cfg import log_event

log = logging.getLogger("keeper")


class LiquidationState(str, Enum):
    SKIP = "skip"
    HEALTHY = "healthy"
    LIQUIDATING = "liquidating"
    LIQUIDATED = "liquidated"
    FAILED = "failed"


@dataclass
class TraderCheck:
    trader: str
    state: LiquidationState
    error: Optional[str] = None
    tx_hash: Optional[str] = None


@dataclass
class LiquidationCycleReport:
    started_at: float
    checks: List[TraderCheck] = field(default_factory=list)
    duration_ms: float = 0.0
    skipped_reason: Optional[str] = None

    def count(self, state: LiquidationState) -> int:
        return sum(1 for c in self.checks if c.state == state)

    @property
    def liquidated(self) -> List[str]:
        return [c.trader for c in self.checks if c.state == LiquidationState.LIQUIDATED]

    @property
    def failed(self) -> List[str]:
        return [c.trader for c in self.checks if c.state == LiquidationState.FAILED]

    def summary(self) -> Dict[str, int]:
        return {s.value: self.count(s) for s in LiquidationState}


class LiquidationMonitor:
    """
    Usage:
        monitor = LiquidationMonitor(ledger, tracker, interval=5.0)
        report = await monitor.check_once()
        asyncio.create_task(monitor.run())
    """

    def __init__(self, ledger, tracker, interval: float = 5.0, health=None, metrics=None, status_board=None) -> None:
        self.ledger = ledger
        self.tracker = tracker
        self.interval = interval
        self.health = health
        self.metrics = metrics
        self.status_board = status_board
        self.last_report: Optional[LiquidationCycleReport] = None
        self._stop = asyncio.Event()

    async def check_trader(self, trader: str) -> TraderCheck:
        position = await self.ledger.position(trader)
        if position.is_flat:
            return TraderCheck(trader, LiquidationState.SKIP)

        if not await self.ledger.can_liquidate(trader):
            return TraderCheck(trader, LiquidationState.HEALTHY)

        log_event(log, "liquidation_submit", trader=trader, size=str(position.size))
        try:
            receipt = await self.ledger.liquidate(trader, LIQUIDATE_ALL)
        except TransactionFailed as exc:
            log_event(log, "liquidation_failed", logging.ERROR, trader=trader, err=str(exc), tx=exc.tx_hash, status=exc.status)
            return TraderCheck(trader, LiquidationState.FAILED, error=str(exc), tx_hash=exc.tx_hash)

        self.tracker.remove(trader)
        log_event(log, "liquidation_confirmed", trader=trader, tx=receipt.tx_hash, block=receipt.block_number)
        return TraderCheck(trader, LiquidationState.LIQUIDATED, tx_hash=receipt.tx_hash)

    async def check_once(self) -> LiquidationCycleReport:
        report = LiquidationCycleReport(started_at=time.time())
        if self.health is not None and not await self.health.ensure():
            report.skipped_reason = "ledger_invalid"
            self.last_report = report
            return report

        traders = sorted(self.tracker.snapshot())
        for trader in traders:
            try:
                check = await self.check_trader(trader)
            except LedgerError as exc:
                if self.health is not None:
                    self.health.record_error("liquidation_check", exc)
                log_event(log, "liquidation_check_error", logging.WARNING, trader=trader, err=str(exc))
                check = TraderCheck(trader, LiquidationState.FAILED, error=str(exc))
            except Exception as exc:
                log_event(log, "liquidation_check_error", logging.ERROR, trader=trader, err=str(exc), type=type(exc).__name__)
                check = TraderCheck(trader, LiquidationState.FAILED, error=str(exc))
            else:
                if self.health is not None:
                    self.health.record_success()
            report.checks.append(check)
            if self.metrics is not None and check.state in (LiquidationState.LIQUIDATED, LiquidationState.FAILED):
                self.metrics.liquidations.labels(outcome=check.state.value).inc()

        report.duration_ms = (time.time() - report.started_at) * 1000
        self.last_report = report
        await self._publish(report)
        if report.liquidated or report.failed:
            log_event(log, "liquidation_cycle", **report.summary(), duration_ms=round(report.duration_ms, 1))
        return report

    async def _publish(self, report: LiquidationCycleReport) -> None:
        if self.metrics is not None:
            self.metrics.active_traders.set(len(self.tracker))
            self.metrics.loop_duration.labels(loop="liquidation").observe(report.duration_ms / 1000)
        if self.status_board is not None:
            await self.status_board.publish_liquidation(report, tracked=len(self.tracker))

    async def run(self) -> None:
        log_event(log, "liquidation_monitor_start", interval=self.interval, tracked=len(self.tracker))
        while not self._stop.is_set():
            try:
                await self.check_once()
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                log_event(log, "liquidation_cycle_error", logging.ERROR, err=str(exc))
                if self.metrics is not None:
                    self.metrics.loop_failures.labels(loop="liquidation").inc()
            try:
                await asyncio.wait_for(self._stop.wait(), timeout=self.interval)
            except asyncio.TimeoutError:
                pass

    async def stop(self) -> None:
        self._stop.set()
