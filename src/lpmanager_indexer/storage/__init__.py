"""Storage layer - price history schema, sessions and the append-only store."""

from lpmanager_indexer.storage.database import (
    DatabaseManager,
    build_database_url,
    create_async_db_engine,
    create_async_session_factory,
    init_async_db,
)
from lpmanager_indexer.storage.models import Base, PriceHistoryModel
from lpmanager_indexer.storage.repos import PriceHistoryRepository
from lpmanager_indexer.storage.store import (
    DuplicateSnapshotError,
    SnapshotStore,
    StoreError,
    StoreReceipt,
)

__all__ = [
    "Base",
    "DatabaseManager",
    "DuplicateSnapshotError",
    "PriceHistoryModel",
    "PriceHistoryRepository",
    "SnapshotStore",
    "StoreError",
    "StoreReceipt",
    "build_database_url",
    "create_async_db_engine",
    "create_async_session_factory",
    "init_async_db",
]
