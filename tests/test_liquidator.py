"""
Tests for LiquidationMonitor: per-trader state machine and cycle isolation.
"""

from unittest.mock import AsyncMock

import pytest

from perp_keeper.core.errors import LedgerReadError, LedgerReverted, TransactionFailed
from perp_keeper.core.fixed_point import WAD
from perp_keeper.core.models import Position
from perp_keeper.keeper.active_traders import ActiveTraderTracker
from perp_keeper.keeper.liquidator import LiquidationMonitor, LiquidationState
from perp_keeper.risk.ledger_health import LedgerHealth, LedgerHealthConfig

from conftest import TRADER_A, TRADER_B, TRADER_C


def _positions(ledger, sizes):
    async def _read(trader):
        size = sizes[trader]
        if isinstance(size, Exception):
            raise size
        return Position(size=size, entry_price=100 * WAD)
    ledger.position = AsyncMock(side_effect=_read)


class TestStateMachine:
    @pytest.mark.asyncio
    async def test_zero_position_is_skipped_and_never_liquidated(self, ledger):
        tracker = ActiveTraderTracker([TRADER_A])
        _positions(ledger, {TRADER_A: 0})
        ledger.can_liquidate = AsyncMock(return_value=True)

        report = await LiquidationMonitor(ledger, tracker).check_once()

        assert report.checks[0].state == LiquidationState.SKIP
        ledger.can_liquidate.assert_not_awaited()
        ledger.liquidate.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_healthy_position_untouched(self, ledger):
        tracker = ActiveTraderTracker([TRADER_A])
        _positions(ledger, {TRADER_A: 2 * WAD})
        report = await LiquidationMonitor(ledger, tracker).check_once()
        assert report.checks[0].state == LiquidationState.HEALTHY
        ledger.liquidate.assert_not_awaited()
        assert TRADER_A in tracker

    @pytest.mark.asyncio
    async def test_liquidatable_short_is_liquidated_and_removed(self, ledger, receipt):
        tracker = ActiveTraderTracker([TRADER_A])
        _positions(ledger, {TRADER_A: -3 * WAD})
        ledger.can_liquidate = AsyncMock(return_value=True)
        ledger.liquidate = AsyncMock(return_value=receipt("0x11"))

        report = await LiquidationMonitor(ledger, tracker).check_once()

        ledger.liquidate.assert_awaited_once_with(TRADER_A, 0)
        assert report.liquidated == [TRADER_A]
        assert report.checks[0].tx_hash == "0x11"
        assert TRADER_A not in tracker

    @pytest.mark.asyncio
    async def test_reverted_liquidation_keeps_trader(self, ledger):
        tracker = ActiveTraderTracker([TRADER_A])
        _positions(ledger, {TRADER_A: 1 * WAD})
        ledger.can_liquidate = AsyncMock(return_value=True)
        ledger.liquidate = AsyncMock(side_effect=TransactionFailed("liquidate: transaction failed", where="liquidate", tx_hash="0xdead", status=0))
        monitor = LiquidationMonitor(ledger, tracker)

        report = await monitor.check_once()

        assert report.failed == [TRADER_A]
        assert ledger.liquidate.await_count == 1
        assert TRADER_A in tracker

        await monitor.check_once()
        assert ledger.liquidate.await_count == 2


class TestCycle:
    @pytest.mark.asyncio
    async def test_one_trader_read_failure_does_not_abort_cycle(self, ledger, receipt):
        tracker = ActiveTraderTracker([TRADER_A, TRADER_B, TRADER_C])
        _positions(ledger, {
            TRADER_A: LedgerReadError("rpc down", where="getPosition"),
            TRADER_B: 5 * WAD,
            TRADER_C: 0,
        })
        ledger.can_liquidate = AsyncMock(return_value=True)

        report = await LiquidationMonitor(ledger, tracker).check_once()

        summary = report.summary()
        assert summary["failed"] == 1
        assert summary["liquidated"] == 1
        assert summary["skip"] == 1
        assert TRADER_A in tracker
        assert TRADER_B not in tracker

    @pytest.mark.asyncio
    async def test_empty_tracker(self, ledger):
        report = await LiquidationMonitor(ledger, ActiveTraderTracker()).check_once()
        assert report.checks == []
        ledger.position.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_invalid_ledger_skips_cycle(self, ledger):
        tracker = ActiveTraderTracker([TRADER_A])
        health = LedgerHealth(LedgerHealthConfig(), probe=AsyncMock(return_value=True))
        health.force_invalid("test")
        report = await LiquidationMonitor(ledger, tracker, health=health).check_once()
        assert report.skipped_reason == "ledger_invalid"
        ledger.position.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_successful_check_resets_error_streak(self, ledger):
        tracker = ActiveTraderTracker([TRADER_A, TRADER_B, TRADER_C])
        _positions(ledger, {
            TRADER_A: LedgerReverted("getPosition reverted", where="getPosition"),
            TRADER_B: 2 * WAD,
            TRADER_C: LedgerReverted("getPosition reverted", where="getPosition"),
        })
        health = LedgerHealth(LedgerHealthConfig(error_threshold=2), probe=AsyncMock(return_value=True))

        report = await LiquidationMonitor(ledger, tracker, health=health).check_once()

        assert report.summary()["failed"] == 2
        assert health.error_streak == 1
        assert health.is_valid

    @pytest.mark.asyncio
    async def test_traders_added_during_cycle_wait_for_next(self, ledger):
        tracker = ActiveTraderTracker([TRADER_A])

        async def _read(trader):
            tracker.add(TRADER_B)
            return Position(size=0, entry_price=0)

        ledger.position = AsyncMock(side_effect=_read)
        monitor = LiquidationMonitor(ledger, tracker)
        first = await monitor.check_once()
        assert [c.trader for c in first.checks] == [TRADER_A]
        second = await monitor.check_once()
        assert sorted(c.trader for c in second.checks) == [TRADER_A, TRADER_B]
