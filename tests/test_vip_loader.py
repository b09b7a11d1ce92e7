"""
Tests for VIPInfoLoader guard state: debounce, in-flight skip, deadline.
"""

import asyncio
from unittest.mock import AsyncMock

import pytest

from perp_keeper.core.errors import LedgerInvalid
from perp_keeper.core.fixed_point import WAD
from perp_keeper.risk.ledger_health import LedgerHealth, LedgerHealthConfig
from perp_keeper.view.vip_loader import VIPInfoLoader

from conftest import TRADER_A


class TestLoad:
    @pytest.mark.asyncio
    async def test_success_decodes_state(self, ledger):
        ledger.vip_level.return_value = 2
        ledger.cumulative_volume.return_value = 2500 * WAD
        ledger.volume_to_next_vip.return_value = 2500 * WAD
        ledger.fee_rate_bps.return_value = 8
        loader = VIPInfoLoader(ledger, debounce_sec=0)

        result = await loader.load(TRADER_A)

        assert result.success
        assert result.value.level == 2
        assert result.value.fee_rate_bps == 8
        assert result.value.fallback is False
        ledger.fee_rate_bps.assert_awaited_with(TRADER_A, False)
        assert loader.last_result is result

    @pytest.mark.asyncio
    async def test_out_of_range_level_fails(self, ledger):
        ledger.vip_level.return_value = 9
        result = await VIPInfoLoader(ledger).load(TRADER_A)
        assert not result.success
        assert "out of range" in result.error

    @pytest.mark.asyncio
    async def test_ledger_error_is_a_health_strike(self, ledger):
        health = LedgerHealth(LedgerHealthConfig(error_threshold=3), probe=AsyncMock(return_value=True))
        ledger.vip_level.side_effect = LedgerInvalid("no code", where="getVIPLevel")
        loader = VIPInfoLoader(ledger, health=health, debounce_sec=0)

        result = await loader.load(TRADER_A)

        assert not result.success and not result.timed_out
        assert health.error_streak == 1

    @pytest.mark.asyncio
    async def test_invalid_ledger_short_circuits(self, ledger):
        health = LedgerHealth(LedgerHealthConfig(), probe=AsyncMock(return_value=False))
        health.force_invalid()
        result = await VIPInfoLoader(ledger, health=health).load(TRADER_A)
        assert not result.success and not result.skipped
        ledger.vip_level.assert_not_awaited()


class TestGuards:
    @pytest.mark.asyncio
    async def test_second_load_inside_window_is_debounced(self, ledger):
        loader = VIPInfoLoader(ledger, debounce_sec=60)
        assert (await loader.load(TRADER_A)).success
        second = await loader.load(TRADER_A)
        assert second.skipped and second.error == "debounced"
        assert ledger.vip_level.await_count == 1

    @pytest.mark.asyncio
    async def test_force_bypasses_debounce(self, ledger):
        loader = VIPInfoLoader(ledger, debounce_sec=60)
        await loader.load(TRADER_A)
        assert (await loader.load(TRADER_A, force=True)).success
        assert ledger.vip_level.await_count == 2

    @pytest.mark.asyncio
    async def test_load_in_flight_is_skipped(self, ledger):
        gate = asyncio.Event()

        async def slow_level(trader):
            await gate.wait()
            return 1

        ledger.vip_level.side_effect = slow_level
        loader = VIPInfoLoader(ledger, debounce_sec=0)
        task = asyncio.create_task(loader.load(TRADER_A))
        await asyncio.sleep(0)
        assert loader.loading

        concurrent = await loader.load(TRADER_A, force=True)
        assert concurrent.skipped and concurrent.error == "load in progress"

        gate.set()
        first = await task
        assert first.success and first.value.level == 1
        assert not loader.loading

    @pytest.mark.asyncio
    async def test_timeout_fails_and_clears_flag(self, ledger):
        async def hang(trader):
            await asyncio.Event().wait()

        ledger.cumulative_volume.side_effect = hang
        loader = VIPInfoLoader(ledger, timeout=0.05, debounce_sec=0)

        result = await loader.load(TRADER_A)

        assert result.timed_out and not result.success
        assert not loader.loading
