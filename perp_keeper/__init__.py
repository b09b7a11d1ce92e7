"""
perp_keeper: off-chain observer and keeper for an on-chain perpetual-futures exchange.

Rebuilds the order book from the contract's linked order lists, estimates funding,
liquidates under-collateralized traders and keeps on-chain VIP tiers in sync with
rolling volume.
"""

__version__ = "0.4.0"
