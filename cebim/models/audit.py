"""
Audit Models for Cebim

Every ledger mutation and every degraded condition (failed price fetch,
failed store write, period repair) is recorded as an audit event.
This provides:
1. A history of what the user did to each asset
2. Debugging information when a price source or the store misbehaves
3. Visibility into repairs that should never happen in normal use

DESIGN DECISION: Audit logs are append-only. We never delete or modify them.
"""

import json
from datetime import datetime
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field

from cebim.models.portfolio import utc_now


class AuditEventType(str, Enum):
    """Types of events we audit."""
    # Assets
    ASSET_CREATED = "asset_created"
    ASSET_DELETED = "asset_deleted"

    # Lots
    LOT_ADDED = "lot_added"
    LOT_EDITED = "lot_edited"
    LOT_DELETED = "lot_deleted"

    # Sales
    SALE_RECORDED = "sale_recorded"
    SALE_EDITED = "sale_edited"
    SALE_DELETED = "sale_deleted"

    # Periods
    PERIOD_OPENED = "period_opened"
    PERIOD_CLOSED = "period_closed"
    PERIOD_REOPENED = "period_reopened"
    PERIODS_MERGED = "periods_merged"

    # Validation
    MUTATION_REJECTED = "mutation_rejected"

    # Market data
    PRICES_REFRESHED = "prices_refreshed"
    PRICE_FETCH_FAILED = "price_fetch_failed"

    # Persistence
    PERSISTENCE_FAILED = "persistence_failed"

    # System events
    SYSTEM_ERROR = "system_error"


class AuditSeverity(str, Enum):
    """Severity level for audit events."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class AuditEvent(BaseModel):
    """
    A single audit event.

    This is the core unit of our audit trail.
    """

    # Identity
    event_id: UUID = Field(
        default_factory=uuid4,
        description="Unique event identifier"
    )
    timestamp: datetime = Field(
        default_factory=utc_now,
        description="When the event occurred (UTC)"
    )

    # Event classification
    event_type: AuditEventType = Field(
        ...,
        description="Type of event"
    )
    severity: AuditSeverity = Field(
        default=AuditSeverity.INFO,
        description="Event severity"
    )

    # Context - which user and entity is this about?
    user_id: Optional[str] = Field(
        default=None,
        description="Owner of the affected records"
    )
    entity_type: Optional[str] = Field(
        default=None,
        description="Type of entity (e.g., 'asset', 'lot', 'sale')"
    )
    entity_id: Optional[str] = Field(
        default=None,
        description="ID of the entity this event relates to"
    )

    # Correlation - for tracking related events of one user action
    correlation_id: Optional[UUID] = Field(
        default=None,
        description="ID to correlate related events"
    )

    description: str = Field(
        ...,
        max_length=500,
        description="Human-readable description of what happened"
    )
    details: dict[str, Any] = Field(
        default_factory=dict,
        description="Additional event-specific data"
    )

    # Error information (if applicable)
    error_code: Optional[str] = None
    error_message: Optional[str] = None

    is_user_action: bool = Field(
        default=False,
        description="Was this triggered by a user action?"
    )

    def to_log_dict(self) -> dict:
        """Convert to a dictionary suitable for structured logging."""
        return {
            "event_id": str(self.event_id),
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type.value,
            "severity": self.severity.value,
            "user_id": self.user_id,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "correlation_id": str(self.correlation_id) if self.correlation_id else None,
            "description": self.description,
            "details": self.details,
            "error_code": self.error_code,
            "error_message": self.error_message,
            "is_user_action": self.is_user_action,
        }

    def to_sheets_row(self) -> list:
        """
        Convert to a row suitable for Google Sheets storage.

        Returns columns in order:
        [event_id, timestamp, event_type, severity, user_id, entity_type,
         entity_id, correlation_id, description, details_json,
         error_message, is_user_action]
        """
        return [
            str(self.event_id),
            self.timestamp.isoformat(),
            self.event_type.value,
            self.severity.value,
            self.user_id or "",
            self.entity_type or "",
            self.entity_id or "",
            str(self.correlation_id) if self.correlation_id else "",
            self.description,
            json.dumps(self.details, default=str) if self.details else "",
            self.error_message or "",
            str(self.is_user_action),
        ]


class AuditEventBuilder:
    """
    Helper class to build audit events with common patterns.

    Usage:
        event = AuditEventBuilder.lot_added(user_id, asset_id, lot_id, ...)
        event = AuditEventBuilder.periods_merged(user_id, asset_id, ids, ...)
    """

    @staticmethod
    def asset_created(
        user_id: str,
        asset_id: str,
        name: str,
        asset_type: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.ASSET_CREATED,
            user_id=user_id,
            entity_type="asset",
            entity_id=asset_id,
            correlation_id=correlation_id,
            description=f"Asset created: {name} ({asset_type})",
            details={"name": name, "type": asset_type},
            is_user_action=True,
        )

    @staticmethod
    def asset_deleted(
        user_id: str,
        asset_id: str,
        name: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.ASSET_DELETED,
            user_id=user_id,
            entity_type="asset",
            entity_id=asset_id,
            correlation_id=correlation_id,
            description=f"Asset deleted: {name}",
            details={"name": name},
            is_user_action=True,
        )

    @staticmethod
    def lot_changed(
        event_type: AuditEventType,
        user_id: str,
        asset_id: str,
        lot_id: str,
        amount: Optional[float] = None,
        cost: Optional[float] = None,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        verb = event_type.value.split("_", 1)[1]
        return AuditEvent(
            event_type=event_type,
            user_id=user_id,
            entity_type="lot",
            entity_id=lot_id,
            correlation_id=correlation_id,
            description=f"Lot {verb}: {lot_id}",
            details={"asset_id": asset_id, "amount": amount, "cost": cost},
            is_user_action=True,
        )

    @staticmethod
    def sale_changed(
        event_type: AuditEventType,
        user_id: str,
        asset_id: str,
        sale_id: str,
        amount: Optional[float] = None,
        sale_price: Optional[float] = None,
        profit: Optional[float] = None,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        verb = event_type.value.split("_", 1)[1]
        return AuditEvent(
            event_type=event_type,
            user_id=user_id,
            entity_type="sale",
            entity_id=sale_id,
            correlation_id=correlation_id,
            description=f"Sale {verb}: {sale_id}",
            details={
                "asset_id": asset_id,
                "amount": amount,
                "sale_price": sale_price,
                "profit": profit,
            },
            is_user_action=True,
        )

    @staticmethod
    def period_changed(
        event_type: AuditEventType,
        user_id: str,
        asset_id: str,
        period_id: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        verb = event_type.value.split("_", 1)[1]
        return AuditEvent(
            event_type=event_type,
            user_id=user_id,
            entity_type="period",
            entity_id=period_id,
            correlation_id=correlation_id,
            description=f"Period {verb}: {period_id}",
            details={"asset_id": asset_id},
        )

    @staticmethod
    def periods_merged(
        user_id: str,
        asset_id: str,
        merged_period_ids: list[str],
        new_period_id: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.PERIODS_MERGED,
            severity=AuditSeverity.WARNING,
            user_id=user_id,
            entity_type="asset",
            entity_id=asset_id,
            correlation_id=correlation_id,
            description=(
                f"Merged {len(merged_period_ids)} open periods into {new_period_id}"
            ),
            details={
                "merged_period_ids": merged_period_ids,
                "new_period_id": new_period_id,
            },
        )

    @staticmethod
    def mutation_rejected(
        user_id: str,
        asset_id: Optional[str],
        operation: str,
        reason: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.MUTATION_REJECTED,
            severity=AuditSeverity.WARNING,
            user_id=user_id,
            entity_type="asset",
            entity_id=asset_id,
            correlation_id=correlation_id,
            description=f"{operation} rejected",
            error_message=reason,
            details={"operation": operation},
            is_user_action=True,
        )

    @staticmethod
    def prices_refreshed(
        user_id: str,
        priced_count: int,
        failed_symbols: list[str],
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.PRICES_REFRESHED,
            user_id=user_id,
            correlation_id=correlation_id,
            description=f"Prices refreshed for {priced_count} instruments",
            details={
                "priced_count": priced_count,
                "failed_symbols": failed_symbols,
            },
        )

    @staticmethod
    def price_fetch_failed(
        source: str,
        symbol: Optional[str],
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.PRICE_FETCH_FAILED,
            severity=AuditSeverity.WARNING,
            entity_type="instrument",
            entity_id=symbol,
            correlation_id=correlation_id,
            description=f"Price fetch failed: {source} {symbol or ''}".strip(),
            error_message=error_message,
            details={"source": source},
        )

    @staticmethod
    def persistence_failed(
        user_id: str,
        kind: str,
        record_id: str,
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.PERSISTENCE_FAILED,
            severity=AuditSeverity.ERROR,
            user_id=user_id,
            entity_type=kind,
            entity_id=record_id,
            correlation_id=correlation_id,
            description=f"Failed to persist {kind} record {record_id}",
            error_message=error_message,
        )

    @staticmethod
    def system_error(
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SYSTEM_ERROR,
            severity=AuditSeverity.ERROR,
            description=f"System error: {error_type}",
            error_message=error_message,
            details=details or {},
            correlation_id=correlation_id,
        )
