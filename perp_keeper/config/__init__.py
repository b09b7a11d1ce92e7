"""
Configuration package.

This package contains configuration loading, validation, and the trader watch-list.
"""

from perp_keeper.config.config import Settings
from perp_keeper.config.config_validator import ConfigValidator, validate_and_log
from perp_keeper.config.watchlist import load_watchlist

__all__ = [
    "Settings",
    "ConfigValidator",
    "validate_and_log",
    "load_watchlist",
]
