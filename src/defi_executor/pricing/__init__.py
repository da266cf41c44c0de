"""
Pricing - consensus across quote sources with a TTL cache.

Public API:
    PriceConsensusEngine, ConsensusConfig, ConsensusPrice
    compute_consensus - pure reconciliation of collected quotes
    PriceCache
    InsufficientQuorumError, SourceTimeoutError
"""
from .cache import PriceCache
from .consensus import (
    ConsensusConfig,
    ConsensusPrice,
    InsufficientQuorumError,
    PriceConsensusEngine,
    SourceTimeoutError,
    compute_consensus,
)

__all__ = [
    "PriceCache",
    "ConsensusConfig",
    "ConsensusPrice",
    "InsufficientQuorumError",
    "PriceConsensusEngine",
    "SourceTimeoutError",
    "compute_consensus",
]
