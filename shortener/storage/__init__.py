"""Storage backends for short URL mappings.

Functions:
    create_storage():  Builds the backend selected by ``STORAGE_BACKEND``.
"""

import logging

from shortener.config import Settings
from shortener.database import create_engine
from shortener.enums import StorageBackend
from shortener.storage.base import BatchItem, SavedURL, URLRepository
from shortener.storage.database import DatabaseStorage
from shortener.storage.memory import InMemoryStorage

__all__ = [
    "BatchItem",
    "SavedURL",
    "URLRepository",
    "DatabaseStorage",
    "InMemoryStorage",
    "create_storage",
]


def create_storage(settings: Settings, logger: logging.Logger | None = None) -> URLRepository:
    if settings.STORAGE_BACKEND is StorageBackend.DATABASE:
        engine = create_engine(
            settings.DATABASE_URL,
            pool_size=settings.DATABASE_POOL_SIZE,
            max_overflow=settings.DATABASE_MAX_OVERFLOW,
        )
        return DatabaseStorage(engine, logger=logger)
    return InMemoryStorage(settings.FILE_STORAGE_PATH, logger=logger)
