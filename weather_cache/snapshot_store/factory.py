"""Factory helpers for choosing a snapshot store backend at startup."""

from __future__ import annotations

from weather_cache import config
from weather_cache.snapshot_store.base import SnapshotStore
from weather_cache.snapshot_store.memory import InMemorySnapshotStore
from utils.logging_utils import get_tagged_logger, mask_db_url

logger = get_tagged_logger(__name__, tag="snapshot_store/factory")


DEFAULT_BACKEND = "memory"


def build_snapshot_store(settings: config.Settings | None = None) -> SnapshotStore:
    """Instantiate the configured snapshot store."""
    settings = settings or config.settings
    backend = (settings.store_backend or DEFAULT_BACKEND).lower()

    if backend == "memory":
        logger.info("Using in-memory snapshot store")
        return InMemorySnapshotStore(
            cache_key_interval_seconds=settings.cache_key_interval_seconds,
            expiry_hours=settings.default_expiry_hours,
            linear_scan_threshold=settings.linear_scan_threshold,
        )

    if backend == "sql":
        from .sql import SqlSnapshotStore

        db_url = settings.database_url
        if not db_url:
            raise ValueError("database_url must be set for the SQL snapshot store")
        logger.info("Using SQL snapshot store", extra={"db_url": mask_db_url(db_url)})
        return SqlSnapshotStore.from_url(
            db_url,
            cache_key_interval_seconds=settings.cache_key_interval_seconds,
            expiry_hours=settings.default_expiry_hours,
        )

    raise ValueError(f"Unknown snapshot store backend '{backend}'")
