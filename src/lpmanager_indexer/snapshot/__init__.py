"""Snapshot models and the paired spot/oracle snapshot builder."""

from lpmanager_indexer.snapshot.builder import SnapshotBuildError, SnapshotBuilder
from lpmanager_indexer.snapshot.models import Snapshot, TokenPair, ValuationTarget

__all__ = [
    "Snapshot",
    "SnapshotBuildError",
    "SnapshotBuilder",
    "TokenPair",
    "ValuationTarget",
]
