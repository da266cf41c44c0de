"""
Arbitrage - round-trip opportunity detection.
"""
from .scanner import (
    ArbitrageConfig,
    ArbitrageOpportunity,
    ArbitrageScanner,
    TokenPair,
    gross_profit_pct,
    net_profit_pct,
    rank_opportunities,
)

__all__ = [
    "ArbitrageConfig",
    "ArbitrageOpportunity",
    "ArbitrageScanner",
    "TokenPair",
    "gross_profit_pct",
    "net_profit_pct",
    "rank_opportunities",
]
