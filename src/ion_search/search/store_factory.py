"""Store factory for choosing between the memory and SQLite backends."""

from pathlib import Path

from ion_search.config import Settings
from ion_search.search.sqlite_store import SqliteStore
from ion_search.search.store import MemoryStore, Store


def create_store(settings: Settings) -> Store:
    """Create the backing store selected by ``settings.store_backend``."""
    if settings.store_backend == "sqlite":
        return SqliteStore(Path(settings.store_path))
    return MemoryStore()
