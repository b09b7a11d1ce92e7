"""
LedgerHealth: circuit breaker for an unreachable or misconfigured exchange contract.

Handles:
- Consecutive "ledger invalid" failure tracking (no bytecode, systematic reverts)
- Tripping after a small threshold, which stops optimistic refreshes
- Re-enabling only after an explicit successful bytecode probe
- Probe pacing with exponential backoff while the ledger stays invalid

Transient network failures do not count; they are retried by the next cycle.
State is owned here and starts clean (streak 0, valid) at construction.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional

from perp_keeper.core.errors import LedgerInvalid, counts_against_ledger
from perp_keeper.infra.logging_cfg import log_event

log = logging.getLogger("keeper")


@dataclass
class LedgerHealthConfig:
    """Configuration for ledger health tracking."""
    error_threshold: int = 3  # consecutive invalid-ledger failures to trip
    probe_cooldown_sec: float = 30.0  # wait before the first re-probe after a trip
    backoff_multiplier: float = 2.0  # cooldown growth per failed probe
    max_cooldown_sec: float = 600.0


class LedgerHealth:
    """
    Usage:
        health = LedgerHealth(LedgerHealthConfig(), probe=ledger.has_code)
        if not await health.ensure():
            return  # serve last-known snapshots
        try:
            ...
            health.record_success()
        except LedgerError as exc:
            health.record_error("refresh", exc)
    """

    def __init__(
        self,
        config: LedgerHealthConfig,
        probe: Callable[[], Awaitable[bool]],
        on_trip: Optional[Callable[[], None]] = None,
        on_reset: Optional[Callable[[], None]] = None,
        log_event: Optional[Callable[..., None]] = None,
    ) -> None:
        self.config = config
        self._probe_fn = probe
        self.error_streak: int = 0
        self._valid: bool = True
        self._probed_once: bool = False
        self._next_probe_at: float = 0.0
        self._failed_probes: int = 0
        self._trip_count: int = 0
        self._on_trip = on_trip
        self._on_reset = on_reset
        self._log_event = log_event or self._default_log

    def _default_log(self, event: str, **kwargs: Any) -> None:
        level = logging.WARNING if event in ("ledger_error", "ledger_invalid", "ledger_probe_failed") else logging.INFO
        log_event(log, event, level, **kwargs)

    @property
    def is_valid(self) -> bool:
        return self._valid

    @property
    def probe_due(self) -> bool:
        return not self._valid and time.time() >= self._next_probe_at

    def record_error(self, where: str, error: BaseException) -> bool:
        """
        Count a failure if it points at the contract itself. Returns True if this
        error tripped the breaker.
        """
        if not counts_against_ledger(error):
            return False
        self.error_streak += 1
        self._log_event("ledger_error", where=where, err=str(error), streak=self.error_streak)
        if self._valid and self.error_streak >= self.config.error_threshold:
            return self._trip(where)
        return False

    def record_success(self) -> None:
        if self.error_streak > 0:
            self._log_event("ledger_error_reset", streak=self.error_streak)
            self.error_streak = 0

    def _trip(self, where: str) -> bool:
        self._valid = False
        self._trip_count += 1
        self._failed_probes = 0
        self._next_probe_at = time.time() + self.config.probe_cooldown_sec
        self._log_event(
            "ledger_invalid",
            where=where,
            streak=self.error_streak,
            trip_count=self._trip_count,
            next_probe_sec=self.config.probe_cooldown_sec,
        )
        if self._on_trip:
            try:
                self._on_trip()
            except Exception as exc:
                log_event(log, "ledger_trip_callback_error", logging.WARNING, err=str(exc))
        return True

    def _reset(self) -> None:
        was_invalid = not self._valid
        self._valid = True
        self.error_streak = 0
        self._failed_probes = 0
        self._next_probe_at = 0.0
        if was_invalid:
            self._log_event("ledger_valid", trip_count=self._trip_count)
            if self._on_reset:
                try:
                    self._on_reset()
                except Exception as exc:
                    log_event(log, "ledger_reset_callback_error", logging.WARNING, err=str(exc))

    async def probe(self) -> bool:
        """
        Bytecode-presence probe. Success re-enables a tripped ledger; failure while
        tripped pushes the next probe out with backoff.
        """
        self._probed_once = True
        try:
            ok = await self._probe_fn()
            err: Optional[BaseException] = None if ok else LedgerInvalid("no contract code at exchange address", where="probe")
        except Exception as exc:
            ok = False
            err = exc

        if ok:
            self._reset()
            return True

        if self._valid:
            self._log_event("ledger_probe_failed", err=str(err))
            if err is not None:
                self.record_error("probe", err)
        else:
            self._failed_probes += 1
            cooldown = min(
                self.config.probe_cooldown_sec * (self.config.backoff_multiplier ** self._failed_probes),
                self.config.max_cooldown_sec,
            )
            self._next_probe_at = time.time() + cooldown
            self._log_event("ledger_probe_failed", err=str(err), next_probe_sec=cooldown)
        return False

    async def ensure(self) -> bool:
        """
        Gate for expensive refreshes. Returns False while the ledger is marked
        invalid and no probe is due (or the due probe failed).
        """
        if self._valid:
            if not self._probed_once:
                # a failed first probe only counts as a strike; calls still proceed
                await self.probe()
            return True
        if self.probe_due:
            return await self.probe()
        return False

    def force_invalid(self, reason: str = "manual") -> None:
        self.error_streak = max(self.error_streak, self.config.error_threshold)
        if self._valid:
            self._trip(reason)

    def get_state(self) -> dict:
        return {
            "valid": self._valid,
            "error_streak": self.error_streak,
            "trip_count": self._trip_count,
            "failed_probes": self._failed_probes,
            "next_probe_in": max(0.0, self._next_probe_at - time.time()) if not self._valid else 0.0,
        }
