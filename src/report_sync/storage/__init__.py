"""Storage backends behind the narrow sync DAO interface."""

from ..config.settings import StorageConfig
from ..errors import ConfigurationError
from .base import SyncDAO
from .memory import MemoryDAO
from .postgres import PostgresDAO


def create_dao(config: StorageConfig) -> SyncDAO:
    """Create the DAO selected by the storage configuration."""
    if config.storage_type == "memory":
        return MemoryDAO()
    if config.storage_type == "postgres":
        return PostgresDAO(config)

    raise ConfigurationError(f"Unknown storage type: {config.storage_type}")


__all__ = ["SyncDAO", "MemoryDAO", "PostgresDAO", "create_dao"]
