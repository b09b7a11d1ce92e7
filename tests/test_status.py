"""
Tests for the keeper status board and the loops that publish to it.
"""

from unittest.mock import AsyncMock

import pytest

from perp_keeper.core.errors import IndexerError
from perp_keeper.core.fixed_point import WAD
from perp_keeper.core.models import Position
from perp_keeper.keeper.active_traders import ActiveTraderTracker
from perp_keeper.keeper.liquidator import LiquidationMonitor
from perp_keeper.keeper.vip_keeper import VIPTierReconciler
from perp_keeper.monitoring.status import StatusBoard

from conftest import TRADER_A, TRADER_B


class Clock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


class TestBoard:
    @pytest.mark.asyncio
    async def test_unknown_section_rejected(self):
        board = StatusBoard()
        with pytest.raises(ValueError):
            await board.update("orders", {})
        with pytest.raises(ValueError):
            StatusBoard(intervals={"orders": 1.0})

    def test_intervals_follow_settings(self, settings):
        board = StatusBoard.from_settings(settings(market_interval=2.0, liquidation_interval=5.0, vip_interval=60.0))
        assert board.intervals == {"market": 2.0, "account": 2.0, "liquidation": 5.0, "vip": 60.0}

    @pytest.mark.asyncio
    async def test_section_goes_stale_after_missed_cycles(self):
        clock = Clock()
        board = StatusBoard(intervals={"liquidation": 5.0, "vip": 3600.0}, clock=clock)
        await board.update("liquidation", {"tracked": 1})
        await board.update("vip", {"traders": 0})

        clock.now += 15.0
        assert await board.stale_sections() == []
        clock.now += 0.5
        snap = await board.snapshot()
        assert snap["stale"] == ["liquidation"]
        assert snap["sections"]["liquidation"]["age_sec"] == 15.5

        await board.update("liquidation", {"tracked": 2})
        assert await board.stale_sections() == []

    @pytest.mark.asyncio
    async def test_snapshot_payload_is_a_copy(self):
        board = StatusBoard()
        payload = {"tracked": 1}
        await board.update("liquidation", payload)
        payload["tracked"] = 99
        snap = await board.snapshot()
        assert snap["sections"]["liquidation"]["tracked"] == 1


class TestPublishers:
    @pytest.mark.asyncio
    async def test_liquidation_cycle_publishes_section(self, ledger, receipt):
        tracker = ActiveTraderTracker([TRADER_A, TRADER_B])

        async def _read(trader):
            return Position(size=-1 * WAD if trader == TRADER_A else 0, entry_price=100 * WAD)

        ledger.position = AsyncMock(side_effect=_read)
        ledger.can_liquidate = AsyncMock(return_value=True)
        ledger.liquidate = AsyncMock(return_value=receipt("0x11"))
        board = StatusBoard()

        await LiquidationMonitor(ledger, tracker, status_board=board).check_once()

        section = (await board.snapshot())["sections"]["liquidation"]
        assert section["tracked"] == 1
        assert section["liquidated"] == [TRADER_A]
        assert section["last_cycle"]["liquidated"] == 1
        assert section["last_cycle"]["skip"] == 1

    @pytest.mark.asyncio
    async def test_vip_cycle_publishes_section(self, ledger, indexer):
        ledger.vip_level = AsyncMock(return_value=1)
        indexer.user_volumes.return_value = [(TRADER_A, 1500 * WAD)]
        board = StatusBoard()

        await VIPTierReconciler(ledger, indexer, status_board=board).reconcile_once()

        section = (await board.snapshot())["sections"]["vip"]
        assert section["traders"] == 1
        assert section["in_sync"] == 1
        assert section["indexer_error"] is None

    @pytest.mark.asyncio
    async def test_vip_indexer_outage_is_published(self, ledger, indexer):
        indexer.user_volumes = AsyncMock(side_effect=IndexerError("down"))
        board = StatusBoard()

        await VIPTierReconciler(ledger, indexer, status_board=board).reconcile_once()

        section = (await board.snapshot())["sections"]["vip"]
        assert section["traders"] == 0
        assert section["indexer_error"] == "down"
