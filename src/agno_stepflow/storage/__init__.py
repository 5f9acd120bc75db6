"""Storage module for execution snapshots.

This module provides:
- Abstract storage interface
- In-memory, SQLite and PostgreSQL backends
- A factory selecting the backend from configuration
"""

from typing import Optional

from ..config import EngineConfig
from .base import StorageBackend
from .memory import InMemoryStorage
from .postgres import PostgresStorage
from .sqlite import SQLiteStorage


def create_storage_backend(backend_type: Optional[str] = None) -> StorageBackend:
    """Create a storage backend based on configuration.

    Args:
        backend_type: Type of backend ("memory", "sqlite", "postgres", or None
            for the configured default)

    Returns:
        Configured storage backend (not yet initialized)

    Environment Variables:
        STORAGE_BACKEND: Backend type (memory, sqlite, postgres)
        SQLITE_DB_PATH: Database file for the sqlite backend
        POSTGRES_DSN: PostgreSQL connection string (for the postgres backend)
    """
    if backend_type is None:
        backend_type = EngineConfig.storage_backend()
    backend_type = backend_type.lower()

    if backend_type == "memory":
        return InMemoryStorage()

    elif backend_type == "sqlite":
        return SQLiteStorage(db_path=EngineConfig.sqlite_path())

    elif backend_type == "postgres":
        postgres_dsn = EngineConfig.postgres_dsn()
        if not postgres_dsn:
            raise ValueError(
                "POSTGRES_DSN environment variable is required for PostgreSQL backend"
            )

        return PostgresStorage(dsn=postgres_dsn)

    else:
        raise ValueError(
            f"Unknown backend type: {backend_type}. "
            f"Supported types: memory, sqlite, postgres"
        )


__all__ = [
    "StorageBackend",
    "InMemoryStorage",
    "SQLiteStorage",
    "PostgresStorage",
    "create_storage_backend",
]
