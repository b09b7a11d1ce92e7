"""
VIP tier table: rolling volume -> tier, tier -> fee rate, progress to next tier.

Thresholds are in the ledger's notional unit (18-decimal fixed point). Both the
keeper (corrections) and the account view (display) read the same table.
"""

from __future__ import annotations

from bisect import bisect_right
from dataclasses import dataclass
from typing import Optional, Sequence

from perp_keeper.core.fixed_point import WAD, to_float
from perp_keeper.core.models import VIPState

MAX_TIER = 4

# volume needed to reach tier 1..4
DEFAULT_THRESHOLDS: tuple[int, ...] = (1000 * WAD, 2000 * WAD, 5000 * WAD, 8000 * WAD)

# fee in basis points for tier 0..4
DEFAULT_FEE_BPS: tuple[int, ...] = (10, 9, 8, 6, 5)


@dataclass(frozen=True)
class TierTable:
    thresholds: Sequence[int] = DEFAULT_THRESHOLDS
    fee_bps: Sequence[int] = DEFAULT_FEE_BPS

    def __post_init__(self) -> None:
        if len(self.fee_bps) != len(self.thresholds) + 1:
            raise ValueError("fee table needs one entry per tier")
        if list(self.thresholds) != sorted(self.thresholds):
            raise ValueError("tier thresholds must be ascending")

    @property
    def max_tier(self) -> int:
        return len(self.thresholds)

    def tier_for_volume(self, volume: int) -> int:
        """Highest tier whose threshold volume has reached; 0 below the first."""
        return bisect_right(list(self.thresholds), int(volume))

    def fee_rate_bps(self, tier: int) -> int:
        tier = max(0, min(int(tier), self.max_tier))
        return self.fee_bps[tier]

    def next_threshold(self, tier: int) -> Optional[int]:
        if tier >= self.max_tier:
            return None
        return self.thresholds[max(0, tier)]

    def volume_to_next_tier(self, tier: int, volume: int) -> int:
        """max(0, next_threshold - volume); zero at the top tier."""
        nxt = self.next_threshold(tier)
        if nxt is None:
            return 0
        return max(0, nxt - int(volume))

    def progress_percent(self, tier: int, volume: int) -> float:
        nxt = self.next_threshold(tier)
        if nxt is None:
            return 100.0
        if nxt <= 0:
            return 100.0
        return min(100.0, to_float(volume) / to_float(nxt) * 100.0)

    def saving_vs_base_percent(self, tier: int) -> float:
        base = self.fee_bps[0]
        if base <= 0:
            return 0.0
        return (base - self.fee_rate_bps(tier)) / base * 100.0

    def derive_state(self, volume: int, level: Optional[int] = None) -> VIPState:
        """Display state computed locally (used when only volume is known)."""
        tier = self.tier_for_volume(volume) if level is None else int(level)
        return VIPState(
            level=tier,
            cumulative_volume=int(volume),
            volume_to_next_tier=self.volume_to_next_tier(tier, volume),
            fee_rate_bps=self.fee_rate_bps(tier),
        )

    def default_state(self) -> VIPState:
        """Tier-0 state substituted by callers when a VIP load fails."""
        return VIPState(
            level=0,
            cumulative_volume=0,
            volume_to_next_tier=0,
            fee_rate_bps=self.fee_bps[0],
            fallback=True,
        )


DEFAULT_TIERS = TierTable()
