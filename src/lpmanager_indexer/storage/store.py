"""Append-only snapshot store."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from lpmanager_indexer.errors import IndexerError
from lpmanager_indexer.storage.database import DatabaseManager
from lpmanager_indexer.storage.repos import PriceHistoryRepository

if TYPE_CHECKING:
    from lpmanager_indexer.config import IngestionConfig
    from lpmanager_indexer.snapshot.models import Snapshot

logger = logging.getLogger(__name__)


class StoreError(IndexerError):
    """Raised when the database rejects or fails a write.

    Transport and permanent (schema, authentication) failures are not
    distinguished.
    """

    retryable = True


class DuplicateSnapshotError(StoreError):
    """Raised when a row for the same contract, chain and block already exists."""

    retryable = False


@dataclass(frozen=True)
class StoreReceipt:
    """Proof that one snapshot row was committed."""

    row_id: int
    contract_address: str
    chain_id: int
    block_number: int
    stored_at: datetime


class SnapshotStore:
    """Appends snapshots to the price history, one transaction per call.

    There is no update or delete operation and no internal retry.

    Example:
        ```python
        store = SnapshotStore(DatabaseManager("postgresql+asyncpg://..."))
        receipt = await store.append(snapshot)
        await store.aclose()
        ```
    """

    def __init__(self, db: DatabaseManager, *, owns_db: bool = True) -> None:
        """Initialize the store.

        Args:
            db: Database manager providing sessions.
            owns_db: Dispose the database connections on ``aclose()``.
        """
        self._db = db
        self._owns_db = owns_db

    @classmethod
    def from_config(cls, config: IngestionConfig) -> SnapshotStore:
        assert config.database_url
        return cls(DatabaseManager(config.database_url, password=config.database_password))

    async def append(self, snapshot: Snapshot) -> StoreReceipt:
        """Insert exactly one row for ``snapshot``.

        Raises:
            DuplicateSnapshotError: If the (contract, chain, block) key is
                already recorded.
            StoreError: If the database rejects the write or is unreachable.
        """
        key = f"{snapshot.contract_address}@{snapshot.chain_id}#{snapshot.block_number}"
        try:
            async with self._db.get_async_session() as session:
                model = await PriceHistoryRepository(session).insert(snapshot)
                row_id = model.id
        except IntegrityError as e:
            raise DuplicateSnapshotError(f"Snapshot {key} rejected by constraint: {e.orig}") from e
        except (SQLAlchemyError, OSError) as e:
            raise StoreError(f"Failed to store snapshot {key}: {e}") from e

        logger.info("Stored snapshot %s (row id=%d)", key, row_id)
        return StoreReceipt(
            row_id=row_id,
            contract_address=snapshot.contract_address,
            chain_id=snapshot.chain_id,
            block_number=snapshot.block_number,
            stored_at=datetime.now(UTC),
        )

    async def aclose(self) -> None:
        if self._owns_db:
            await self._db.dispose_async()

    async def __aenter__(self) -> SnapshotStore:
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.aclose()
