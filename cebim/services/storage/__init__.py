"""
Storage Services Package

Provides abstract interfaces and concrete implementations for data storage.
Google Sheets is the persistent backend; the in-memory store backs tests
and unconfigured installs.
"""

from cebim.services.storage.interface import (
    AuditStorageInterface,
    NotFoundError,
    PersistenceError,
    RecordStorageInterface,
    StorageConnectionError,
    StorageError,
)
from cebim.services.storage.memory import (
    InMemoryAuditStorage,
    InMemoryRecordStorage,
)
from cebim.services.storage.google_sheets import (
    GoogleSheetsAuditStorage,
    GoogleSheetsClient,
    GoogleSheetsRecordStorage,
)

__all__ = [
    # Interfaces
    "AuditStorageInterface",
    "RecordStorageInterface",
    # Exceptions
    "NotFoundError",
    "PersistenceError",
    "StorageConnectionError",
    "StorageError",
    # In-memory implementation
    "InMemoryAuditStorage",
    "InMemoryRecordStorage",
    # Google Sheets implementation
    "GoogleSheetsAuditStorage",
    "GoogleSheetsClient",
    "GoogleSheetsRecordStorage",
]
