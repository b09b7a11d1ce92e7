"""
ABI fragments of the exchange contract that the keeper reads, writes and listens to.
"""

from __future__ import annotations

from typing import Any, Dict, List


def _fn(name: str, inputs: List[tuple], outputs: List[tuple], mutability: str = "view") -> Dict[str, Any]:
    return {
        "type": "function",
        "name": name,
        "stateMutability": mutability,
        "inputs": [{"name": n, "type": t} for n, t in inputs],
        "outputs": [{"name": n, "type": t} for n, t in outputs],
    }


def _event(name: str, inputs: List[tuple]) -> Dict[str, Any]:
    return {
        "type": "event",
        "name": name,
        "anonymous": False,
        "inputs": [{"name": n, "type": t, "indexed": idx} for n, t, idx in inputs],
    }


ORDER_COMPONENTS = [
    ("id", "uint256"),
    ("trader", "address"),
    ("isBuy", "bool"),
    ("price", "uint256"),
    ("amount", "uint256"),
    ("initialAmount", "uint256"),
    ("timestamp", "uint256"),
    ("next", "uint256"),
]

POSITION_ABI = {
    "name": "",
    "type": "tuple",
    "components": [
        {"name": "size", "type": "int256"},
        {"name": "entryPrice", "type": "uint256"},
    ],
}

EXCHANGE_ABI: List[Dict[str, Any]] = [
    # prices and book heads
    _fn("markPrice", [], [("", "uint256")]),
    _fn("indexPrice", [], [("", "uint256")]),
    _fn("bestBuyId", [], [("", "uint256")]),
    _fn("bestSellId", [], [("", "uint256")]),
    _fn("initialMarginBps", [], [("", "uint256")]),
    # order arena (public mapping getter returns the struct fields positionally)
    _fn("orders", [("", "uint256")], ORDER_COMPONENTS),
    # accounts
    _fn("margin", [("", "address")], [("", "uint256")]),
    {
        "type": "function",
        "name": "getPosition",
        "stateMutability": "view",
        "inputs": [{"name": "trader", "type": "address"}],
        "outputs": [POSITION_ABI],
    },
    _fn("canLiquidate", [("trader", "address")], [("", "bool")]),
    # VIP and referral
    _fn("getVIPLevel", [("trader", "address")], [("", "uint8")]),
    _fn("getCumulativeVolume", [("trader", "address")], [("", "uint256")]),
    _fn("getVolumeToNextVIP", [("trader", "address")], [("", "uint256")]),
    _fn("getActualFeeRate", [("trader", "address"), ("isMaker", "bool")], [("", "uint256")]),
    _fn("getReferrer", [("trader", "address")], [("", "address")]),
    # writes
    _fn("deposit", [], [], mutability="payable"),
    _fn("withdraw", [("amount", "uint256")], [], mutability="nonpayable"),
    _fn(
        "placeOrder",
        [("isBuy", "bool"), ("price", "uint256"), ("amount", "uint256"), ("hintId", "uint256")],
        [],
        mutability="nonpayable",
    ),
    _fn("cancelOrder", [("id", "uint256")], [], mutability="nonpayable"),
    _fn("liquidate", [("trader", "address"), ("amount", "uint256")], [], mutability="nonpayable"),
    _fn("checkVIPUpgrade", [], [], mutability="nonpayable"),
    _fn("setVIPLevel", [("trader", "address"), ("level", "uint8")], [], mutability="nonpayable"),
    _fn("registerReferral", [("referrer", "address")], [], mutability="nonpayable"),
    # events
    _event("MarginDeposited", [("trader", "address", True), ("amount", "uint256", False)]),
    _event("MarginWithdrawn", [("trader", "address", True), ("amount", "uint256", False)]),
    _event("OrderPlaced", [
        ("id", "uint256", True),
        ("trader", "address", True),
        ("isBuy", "bool", False),
        ("price", "uint256", False),
        ("amount", "uint256", False),
    ]),
    _event("OrderRemoved", [("id", "uint256", True)]),
    _event("TradeExecuted", [
        ("buyOrderId", "uint256", True),
        ("sellOrderId", "uint256", True),
        ("price", "uint256", False),
        ("amount", "uint256", False),
        ("buyer", "address", False),
        ("seller", "address", False),
    ]),
    _event("PositionUpdated", [
        ("trader", "address", True),
        ("size", "int256", False),
        ("entryPrice", "uint256", False),
    ]),
    _event("FundingUpdated", [("cumulativeFundingRate", "int256", False), ("timestamp", "uint256", False)]),
    _event("FundingPaid", [("trader", "address", True), ("amount", "int256", False)]),
    _event("Liquidated", [
        ("trader", "address", True),
        ("liquidator", "address", True),
        ("amount", "uint256", False),
        ("reward", "uint256", False),
    ]),
    _event("ReferralRegistered", [("trader", "address", True), ("referrer", "address", True)]),
]


def has_function(name: str, abi: List[Dict[str, Any]] = EXCHANGE_ABI) -> bool:
    return any(item.get("type") == "function" and item.get("name") == name for item in abi)
