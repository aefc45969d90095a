"""Storage module: call logs and captured leads."""

import structlog

from callrelay.storage.base import CallStorage, InMemoryStorage, StorageError
from callrelay.storage.database import DatabaseStorage

logger = structlog.get_logger("storage")


def get_storage(database_url: str = "") -> CallStorage:
    """Database-backed storage when a URL is configured, in-memory otherwise."""
    if database_url:
        return DatabaseStorage(database_url)
    logger.info("database_url_not_set", fallback="memory")
    return InMemoryStorage()


__all__ = [
    "CallStorage",
    "DatabaseStorage",
    "InMemoryStorage",
    "StorageError",
    "get_storage",
]
