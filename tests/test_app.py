"""
Tests for keeper wiring and loop supervision.
"""

import asyncio

import pytest

from perp_keeper.app import Keeper, build_keeper, run_all
from perp_keeper.infra.signer_locks import SignerLocks
from perp_keeper.monitoring.metrics import HealthChecker, KeeperMetrics

from conftest import TRADER_A

# well-known local development key (anvil/hardhat account #0)
DEV_KEY = "0xac0974bec39a17e36ba4a6b4d238ff944bacb478cbed5efcae784d7bf4f2ff80"
DEV_ADDRESS = "0xf39Fd6e51aad88F6F4ce6aB8827279cffFb92266"


class FakeLoop:
    def __init__(self, fail_after=None):
        self.fail_after = fail_after
        self.cycles = 0
        self.stopped = False
        self.cancelled = False
        self._stop = asyncio.Event()

    async def run(self):
        try:
            while not self._stop.is_set():
                self.cycles += 1
                if self.fail_after is not None and self.cycles > self.fail_after:
                    raise RuntimeError("loop exploded")
                await asyncio.sleep(0.01)
        except asyncio.CancelledError:
            self.cancelled = True
            raise

    async def stop(self):
        self.stopped = True
        self._stop.set()


def _keeper(loops):
    keeper = Keeper(ledger=None, health=None, tracker=None, feed=None)
    keeper.loops = list(loops)
    return keeper


class TestRunAll:
    @pytest.mark.asyncio
    async def test_crash_stops_siblings(self):
        healthy, broken = FakeLoop(), FakeLoop(fail_after=2)
        hc = HealthChecker()
        with pytest.raises(ExceptionGroup) as excinfo:
            await run_all(_keeper([("market", healthy), ("liquidation", broken)]), hc)
        assert excinfo.group_contains(RuntimeError, match="loop exploded")
        assert healthy.cancelled
        assert healthy.stopped and broken.stopped
        assert hc.is_ready() is False

    @pytest.mark.asyncio
    async def test_cancel_stops_every_loop(self):
        loops = [FakeLoop(), FakeLoop()]
        hc = HealthChecker()
        task = asyncio.create_task(run_all(_keeper([("a", loops[0]), ("b", loops[1])]), hc))
        await asyncio.sleep(0.05)
        assert hc.is_ready()
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        assert all(loop.stopped for loop in loops)
        assert hc.is_ready() is False


class TestBuildKeeper:
    @pytest.mark.asyncio
    async def test_read_only_wiring(self, settings):
        hc = HealthChecker()
        metrics = KeeperMetrics()
        keeper = await build_keeper(settings(), metrics=metrics, health_checker=hc)
        try:
            assert [name for name, _ in keeper.loops] == ["event_feed", "market"]
            assert keeper.liquidator is None and keeper.vip_keeper is None
            assert keeper.account_view is None
            assert keeper.indexer is None
            assert hc.get_status().components["ledger"] is True
            assert metrics.registry.get_sample_value("ledger_valid") == 1.0
        finally:
            await keeper.close()

    @pytest.mark.asyncio
    async def test_watch_only_account(self, settings):
        cfg = settings(account_address=TRADER_A, enable_market_view=False, indexer_url="http://indexer.test/graphql")
        keeper = await build_keeper(cfg)
        try:
            assert [name for name, _ in keeper.loops] == ["event_feed", "account"]
            assert keeper.account_view.account == TRADER_A
            # VIP corrections need a signer even with an indexer
            assert keeper.vip_keeper is None
        finally:
            await keeper.close()

    @pytest.mark.asyncio
    async def test_keepers_sharing_a_signer_share_tx_lock(self, settings):
        locks = SignerLocks()
        cfg = settings(private_key=DEV_KEY, enable_market_view=False)
        first = await build_keeper(cfg, signer_locks=locks)
        second = await build_keeper(cfg, signer_locks=locks)
        try:
            assert [name for name, _ in first.loops] == ["event_feed", "account", "liquidation"]
            assert len(locks) == 1
            assert first.ledger._tx_lock is locks.lock_for(DEV_ADDRESS)
            assert second.ledger._tx_lock is first.ledger._tx_lock
        finally:
            await first.close()
            await second.close()

    @pytest.mark.asyncio
    async def test_watchlist_seeds_tracker(self, settings, tmp_path):
        p = tmp_path / "watch.yaml"
        p.write_text(f'traders: ["{TRADER_A}"]\n')
        keeper = await build_keeper(settings(watchlist_path=str(p)))
        try:
            assert TRADER_A in keeper.tracker
        finally:
            await keeper.close()
