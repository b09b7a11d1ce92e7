"""
Order book reconstruction package.

Walks the contract's linked order lists and aggregates live orders into depth.
"""

from perp_keeper.book.depth import DepthAggregator
from perp_keeper.book.order_chain import ChainWalk, OrderChainReconstructor, Reconstruction

__all__ = [
    "ChainWalk",
    "DepthAggregator",
    "OrderChainReconstructor",
    "Reconstruction",
]
