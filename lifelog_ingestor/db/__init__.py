from lifelog_ingestor.utils.config import Settings, settings as default_settings
from lifelog_ingestor.utils.errors import StorageError
from lifelog_ingestor.utils.logger import logger

from .base import LifelogStore
from .memory_store import InMemoryLifelogStore
from .sqlite_store import SqliteLifelogStore


def get_store(settings: Settings | None = None) -> LifelogStore:
    """Build the backend selected by DB_TYPE."""
    settings = settings or default_settings
    db_type = settings.db_type.lower()
    logger.info("database_adapter", db_type=db_type)
    if db_type == "sqlite":
        return SqliteLifelogStore(settings.db_path)
    if db_type == "memory":
        return InMemoryLifelogStore()
    raise StorageError(f"Unsupported database type: {settings.db_type}")


def init_store(settings: Settings | None = None) -> LifelogStore:
    """Build the store and create its tables. Raises StorageError if either step fails."""
    store = get_store(settings)
    store.create_tables()
    return store


__all__ = [
    "LifelogStore",
    "SqliteLifelogStore",
    "InMemoryLifelogStore",
    "get_store",
    "init_store",
]
