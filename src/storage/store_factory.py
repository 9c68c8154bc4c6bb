# src/storage/store_factory.py — v1
"""Factory for store instantiation from settings."""

from __future__ import annotations

from regtruth.config.settings import Settings
from regtruth.storage.base_store import BaseStore


def create_store(settings: Settings | None = None) -> BaseStore:
    """Instantiate the configured storage backend.

    Args:
        settings: Application settings. Defaults to the in-memory backend.

    Returns:
        Configured BaseStore implementation.

    Raises:
        ValueError: If the backend is not supported.
    """
    if settings is None or settings.store_backend == "memory":
        from regtruth.storage.memory_store import MemoryStore
        return MemoryStore()

    if settings.store_backend == "sqlite":
        from regtruth.storage.sqlite_store import SqliteStore
        return SqliteStore(db_path=settings.store_path)

    raise ValueError(f"Unsupported store backend: {settings.store_backend!r}")
