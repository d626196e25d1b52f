"""Services package."""

from cebim.services.market import (
    FxTableSource,
    InstrumentPriceSource,
    MarketPriceResolver,
    MidasClient,
    PriceFetchError,
    TefasClient,
)
from cebim.services.storage import (
    AuditStorageInterface,
    GoogleSheetsAuditStorage,
    GoogleSheetsClient,
    GoogleSheetsRecordStorage,
    InMemoryAuditStorage,
    InMemoryRecordStorage,
    NotFoundError,
    PersistenceError,
    RecordStorageInterface,
    StorageConnectionError,
    StorageError,
)

__all__ = [
    # Market services
    "FxTableSource",
    "InstrumentPriceSource",
    "MarketPriceResolver",
    "MidasClient",
    "PriceFetchError",
    "TefasClient",
    # Storage services
    "AuditStorageInterface",
    "GoogleSheetsAuditStorage",
    "GoogleSheetsClient",
    "GoogleSheetsRecordStorage",
    "InMemoryAuditStorage",
    "InMemoryRecordStorage",
    "NotFoundError",
    "PersistenceError",
    "RecordStorageInterface",
    "StorageConnectionError",
    "StorageError",
]
