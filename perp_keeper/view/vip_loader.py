"""
VIPInfoLoader: debounced, deadline-bounded read of one trader's VIP state.

Owns its own guard state (loading flag, last-load time) instead of sharing
process globals. It never substitutes a default: a failed load comes back as a
failed FetchResult and the caller decides what to show.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Optional

from perp_keeper.core.errors import LedgerError
from perp_keeper.core.models import VIPState
from perp_keeper.core.result import FetchResult
from perp_keeper.ledger.decoding import DecodeError, decode_vip_state
from perp_keeper.infra.logging_cfg import log_event

log = logging.getLogger("keeper")


class VIPInfoLoader:
    def __init__(self, ledger, health=None, timeout: float = 10.0, debounce_sec: float = 5.0) -> None:
        self.ledger = ledger
        self.health = health
        self.timeout = timeout
        self.debounce_sec = debounce_sec
        self._loading = False
        self._last_load_at = 0.0
        self.last_result: Optional[FetchResult[VIPState]] = None

    @property
    def loading(self) -> bool:
        return self._loading

    async def _read(self, trader: str) -> VIPState:
        level, volume, to_next, fee_bps = await asyncio.gather(
            self.ledger.vip_level(trader),
            self.ledger.cumulative_volume(trader),
            self.ledger.volume_to_next_vip(trader),
            self.ledger.fee_rate_bps(trader, False),
        )
        return decode_vip_state(level, volume, to_next, fee_bps)

    async def load(self, trader: str, force: bool = False) -> FetchResult[VIPState]:
        if self._loading:
            return FetchResult.skip("load in progress")
        now = time.time()
        if not force and now - self._last_load_at < self.debounce_sec:
            return FetchResult.skip("debounced")
        if self.health is not None and not await self.health.ensure():
            return FetchResult.fail("ledger invalid")

        self._loading = True
        self._last_load_at = now
        try:
            state = await asyncio.wait_for(self._read(trader), timeout=self.timeout)
        except asyncio.TimeoutError:
            log_event(log, "vip_info_timeout", logging.WARNING, trader=trader, timeout=self.timeout)
            result = FetchResult.fail(f"timed out after {self.timeout}s", timed_out=True)
        except LedgerError as exc:
            if self.health is not None:
                self.health.record_error("vip_info", exc)
            log_event(log, "vip_info_error", logging.WARNING, trader=trader, err=str(exc))
            result = FetchResult.fail(str(exc))
        except DecodeError as exc:
            log_event(log, "vip_info_malformed", logging.WARNING, trader=trader, err=str(exc))
            result = FetchResult.fail(str(exc))
        else:
            if self.health is not None:
                self.health.record_success()
            result = FetchResult.ok(state)
        finally:
            self._loading = False
        self.last_result = result
        return result
