"""
Gas cost estimation for swap routes.

Costs are expressed in native-asset units (ETH on mainnet). Converting to
USD is the caller's job, using the consensus price of the native asset.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Optional, Protocol, runtime_checkable

from .models import RouteQuote

WEI_PER_NATIVE = Decimal(10) ** 18


@runtime_checkable
class CostEstimator(Protocol):
    async def estimate_gas_cost(self, route: RouteQuote) -> Decimal:
        ...


class RouteGasEstimator:
    """
    Gas cost from the figures carried on the route quote itself.

    Args:
        gas_multiplier: Safety margin applied to the quoted gas units
        gas_price_override_wei: Use this gas price instead of the quoted one
    """

    def __init__(
        self,
        gas_multiplier: Decimal = Decimal("1"),
        gas_price_override_wei: Optional[int] = None,
    ):
        if gas_multiplier <= 0:
            raise ValueError(f"gas_multiplier must be positive, got {gas_multiplier}")
        self._gas_multiplier = gas_multiplier
        self._gas_price_override_wei = gas_price_override_wei

    async def estimate_gas_cost(self, route: RouteQuote) -> Decimal:
        gas_price = self._gas_price_override_wei or route.gas_price_wei
        wei = Decimal(route.gas_units) * self._gas_multiplier * Decimal(gas_price)
        return wei / WEI_PER_NATIVE
