"""
Data Models Package

This package contains all Pydantic models used by Cebim.
Asset records read from or written to storage must conform to these schemas.
"""

from cebim.models.portfolio import (
    ASSET_NAME_MAX_LENGTH,
    CATEGORY_CONFIG,
    QUANTITY_EPSILON,
    SCHEMA_VERSION,
    Asset,
    AssetType,
    AssetValuation,
    Lot,
    Period,
    PeriodMerge,
    PriceSource,
    Sale,
)
from cebim.models.market import MarketSnapshot
from cebim.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)

__all__ = [
    # Portfolio models
    "ASSET_NAME_MAX_LENGTH",
    "CATEGORY_CONFIG",
    "QUANTITY_EPSILON",
    "SCHEMA_VERSION",
    "Asset",
    "AssetType",
    "AssetValuation",
    "Lot",
    "Period",
    "PeriodMerge",
    "PriceSource",
    "Sale",
    # Market models
    "MarketSnapshot",
    # Audit models
    "AuditEvent",
    "AuditEventBuilder",
    "AuditEventType",
    "AuditSeverity",
]
