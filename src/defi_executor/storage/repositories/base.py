"""
Base repository class for async PostgreSQL access.
"""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, ClassVar, FrozenSet, Generic, Optional, Type, TypeVar

from pydantic import BaseModel

from defi_executor.storage.database import Database
from defi_executor.storage.models import ItemStatus

T = TypeVar("T", bound=BaseModel)


class BaseRepository(Generic[T]):
    """
    Base class for async repositories.

    Provides common patterns for CRUD operations and the conditional
    status update (compare-and-set) the claim protocol is built on.
    Subclasses define table name, model type and updatable columns.
    """

    table_name: ClassVar[str]
    model_class: ClassVar[Type[BaseModel]]
    updatable_columns: ClassVar[FrozenSet[str]] = frozenset()

    def __init__(self, db: Database) -> None:
        self.db = db

    def _record_to_model(self, record) -> Optional[T]:
        """Convert asyncpg Record to Pydantic model."""
        if record is None:
            return None
        return self.model_class(**dict(record))

    def _records_to_models(self, records) -> list[T]:
        """Convert list of Records to list of models."""
        return [self._record_to_model(r) for r in records]

    async def get_by_id(self, id_value, id_column: str = "id") -> Optional[T]:
        """Get a single record by ID."""
        query = f"SELECT * FROM {self.table_name} WHERE {id_column} = $1"
        record = await self.db.fetchrow(query, id_value)
        return self._record_to_model(record)

    async def count(self) -> int:
        """Count all records in table."""
        query = f"SELECT COUNT(*) FROM {self.table_name}"
        return await self.db.fetchval(query)

    async def compare_and_set(
        self,
        item_id: str,
        expected: ItemStatus,
        new: ItemStatus,
        *,
        expected_claim_token: Optional[str] = None,
        **changes: Any,
    ) -> bool:
        """
        Atomically move an item from `expected` to `new` status.

        The update only applies when the row is still in the expected status
        (and, when given, still held under `expected_claim_token`). Extra
        keyword arguments set additional columns in the same statement.

        Returns:
            True if this caller performed the transition
        """
        unknown = set(changes) - self.updatable_columns
        if unknown:
            raise ValueError(f"Columns not updatable on {self.table_name}: {sorted(unknown)}")

        now = datetime.now(timezone.utc)
        args: list[Any] = [item_id, expected.value, new.value, now]
        assignments = ["status = $3", "updated_at = $4"]

        for column, value in changes.items():
            args.append(value)
            assignments.append(f"{column} = ${len(args)}")

        conditions = ["id = $1", "status = $2"]
        if expected_claim_token is not None:
            args.append(expected_claim_token)
            conditions.append(f"claim_token = ${len(args)}")

        query = f"""
            UPDATE {self.table_name}
            SET {", ".join(assignments)}
            WHERE {" AND ".join(conditions)}
            RETURNING id
        """
        result = await self.db.fetchval(query, *args)
        return result is not None

    async def release_stale_claims(self, claimed_before: datetime) -> list[str]:
        """
        Revert claims older than `claimed_before` back to pending.

        This is the only path from claimed back to pending.

        Returns:
            IDs of the released items
        """
        query = f"""
            UPDATE {self.table_name}
            SET status = 'pending',
                claim_token = NULL,
                claimed_at = NULL,
                updated_at = $2
            WHERE status = 'claimed' AND claimed_at < $1
            RETURNING id
        """
        records = await self.db.fetch(query, claimed_before, datetime.now(timezone.utc))
        return [r["id"] for r in records]
