"""Snapshot storage backends."""

from .base import SnapshotStore, prepare_snapshot
from .factory import build_snapshot_store
from .memory import InMemorySnapshotStore
from .sql import SqlSnapshotStore

__all__ = [
    "SnapshotStore",
    "prepare_snapshot",
    "build_snapshot_store",
    "InMemorySnapshotStore",
    "SqlSnapshotStore",
]
