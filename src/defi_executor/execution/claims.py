"""
Claim protocol for at-most-once execution.

Every actionable item (limit order or arbitrage execution) is executed only
by the process that wins a compare-and-set from pending to claimed. The
winner holds a fresh claim token and is the only party allowed to move the
item to filled or failed. Claims held longer than the claim timeout are
reverted to pending by the stale-claim sweep, which is the only way back.

Correctness rests entirely on the store's conditional update. No in-process
lock is involved, so any number of coordinator instances can share a store.
"""
from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Callable, Optional, Protocol

from defi_executor.storage.models import ItemStatus

logger = logging.getLogger(__name__)

# Recorded error messages are truncated to this length
MAX_ERROR_LENGTH = 500


class ClaimLostError(Exception):
    """The claim token no longer matches: someone else owns the item now."""

    def __init__(self, item_id: str, claim_token: str):
        super().__init__(f"Claim {claim_token} on {item_id} was lost")
        self.item_id = item_id
        self.claim_token = claim_token


class StaleClaimError(Exception):
    """Not enough of the claim lease remains to execute safely."""

    def __init__(self, item_id: str, held_seconds: float, claim_timeout_seconds: float):
        super().__init__(
            f"Claim on {item_id} held for {held_seconds:.1f}s of {claim_timeout_seconds:.0f}s lease"
        )
        self.item_id = item_id
        self.held_seconds = held_seconds
        self.claim_timeout_seconds = claim_timeout_seconds


class ClaimableStore(Protocol):
    """Persistence primitive the claim protocol is built on."""

    async def compare_and_set(
        self,
        item_id: str,
        expected: ItemStatus,
        new: ItemStatus,
        *,
        expected_claim_token: Optional[str] = None,
        **changes: Any,
    ) -> bool:
        ...

    async def release_stale_claims(self, claimed_before: datetime) -> list[str]:
        ...


@dataclass(frozen=True)
class ClaimTicket:
    """Proof of a won claim. Required to resolve the item."""
    item_id: str
    claim_token: str
    claimed_at: datetime

    def held_seconds(self, now: datetime) -> float:
        return (now - self.claimed_at).total_seconds()


class ClaimManager:
    """
    Claims and resolves items in one store.

    Usage:
        claims = ClaimManager(order_store, claim_timeout_seconds=120)
        ticket = await claims.try_claim(order.id)
        if ticket is None:
            return  # another evaluator won

        try:
            ref = await executor.execute(order)
        except Exception as e:
            await claims.mark_failed(ticket, str(e))
        else:
            await claims.mark_filled(ticket, ref)
    """

    def __init__(
        self,
        store: ClaimableStore,
        claim_timeout_seconds: float = 120.0,
        clock: Optional[Callable[[], datetime]] = None,
        name: str = "items",
    ):
        if claim_timeout_seconds <= 0:
            raise ValueError(f"claim_timeout_seconds must be positive, got {claim_timeout_seconds}")
        self._store = store
        self._claim_timeout = claim_timeout_seconds
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self.name = name

    @property
    def claim_timeout_seconds(self) -> float:
        return self._claim_timeout

    async def try_claim(self, item_id: str) -> Optional[ClaimTicket]:
        """
        Attempt the pending -> claimed transition.

        Returns:
            A ClaimTicket if this caller won, None if the item was not pending
        """
        token = uuid.uuid4().hex
        claimed_at = self._clock()
        won = await self._store.compare_and_set(
            item_id,
            ItemStatus.PENDING,
            ItemStatus.CLAIMED,
            claim_token=token,
            claimed_at=claimed_at,
        )
        if not won:
            logger.debug(f"Claim on {self.name} {item_id} lost to another evaluator")
            return None

        logger.debug(f"Claimed {self.name} {item_id} (token {token[:8]})")
        return ClaimTicket(item_id=item_id, claim_token=token, claimed_at=claimed_at)

    def check_lease(self, ticket: ClaimTicket, needed_seconds: float) -> None:
        """
        Ensure the claim will still be valid after `needed_seconds` more work.

        Raises:
            StaleClaimError: If the lease could run out mid-execution. The item
                is left claimed and the sweep returns it to pending.
        """
        held = ticket.held_seconds(self._clock())
        if held + needed_seconds >= self._claim_timeout:
            raise StaleClaimError(ticket.item_id, held, self._claim_timeout)

    async def mark_filled(
        self,
        ticket: ClaimTicket,
        execution_ref: str,
        filled_price: Optional[Decimal] = None,
    ) -> None:
        """
        Resolve a held claim as filled.

        Raises:
            ClaimLostError: If the claim token no longer matches
        """
        changes: dict[str, Any] = {"execution_ref": execution_ref, "error": None}
        if filled_price is not None:
            changes["filled_price"] = filled_price
        await self._resolve(ticket, ItemStatus.FILLED, **changes)
        logger.info(f"{self.name} {ticket.item_id} filled (ref {execution_ref})")

    async def mark_failed(self, ticket: ClaimTicket, error: str) -> None:
        """
        Resolve a held claim as failed. Failed is terminal and never retried.

        Raises:
            ClaimLostError: If the claim token no longer matches
        """
        await self._resolve(ticket, ItemStatus.FAILED, error=error[:MAX_ERROR_LENGTH])
        logger.warning(f"{self.name} {ticket.item_id} failed: {error}")

    async def _resolve(self, ticket: ClaimTicket, new: ItemStatus, **changes: Any) -> None:
        ok = await self._store.compare_and_set(
            ticket.item_id,
            ItemStatus.CLAIMED,
            new,
            expected_claim_token=ticket.claim_token,
            **changes,
        )
        if not ok:
            raise ClaimLostError(ticket.item_id, ticket.claim_token)

    async def sweep_stale(self) -> list[str]:
        """Revert claims older than the claim timeout back to pending."""
        cutoff = self._clock() - timedelta(seconds=self._claim_timeout)
        released = await self._store.release_stale_claims(cutoff)
        if released:
            logger.warning(
                f"Released {len(released)} stale {self.name} claims: {', '.join(released[:10])}"
            )
        return released
