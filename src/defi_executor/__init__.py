"""
DeFi Execution Engine.

Reconciles disagreeing price feeds into a single consensus price, decides on
a fixed polling cycle whether pending limit orders or round-trip arbitrage
opportunities have become actionable, and executes each one at most once
through a compare-and-set claim on the shared store.
"""

__version__ = "0.1.0"
