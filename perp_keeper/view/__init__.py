"""
Read-side views published for dashboards and the status endpoint.
"""

from perp_keeper.view.account_view import AccountView, market_order_price
from perp_keeper.view.funding import CLAMP_BOUND, INTEREST_RATE, estimate_funding_rate
from perp_keeper.view.market_view import MarketView
from perp_keeper.view.vip_loader import VIPInfoLoader

__all__ = [
    "AccountView",
    "CLAMP_BOUND",
    "INTEREST_RATE",
    "MarketView",
    "VIPInfoLoader",
    "estimate_funding_rate",
    "market_order_price",
]
