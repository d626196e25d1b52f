"""
Audit Logger

DESIGN DECISION: Every ledger mutation is recorded, and so is every
degraded condition the user would otherwise never see:
1. A price source failing for one instrument
2. A store write failing after the in-memory ledger already changed
3. The open-period repair running

The audit logger:
- Is async to not block main flow
- Gracefully handles failures (a failed audit write never fails a mutation)
- Supports correlation IDs to trace the events of one user action
"""

import logging
from typing import Optional
from uuid import UUID, uuid4

import structlog

from cebim.models.audit import AuditEvent, AuditEventBuilder, AuditEventType
from cebim.models.portfolio import PeriodMerge
from cebim.services.storage import AuditStorageInterface


def configure_logging(level: str = "INFO") -> None:
    """
    Configure structlog for local JSON logging.

    Safe to call more than once; the last call wins.
    """
    logging.basicConfig(format="%(message)s", level=getattr(logging, level.upper(), logging.INFO))
    logging.getLogger().setLevel(getattr(logging, level.upper(), logging.INFO))

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            structlog.processors.JSONRenderer()
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


class AuditLogger:
    """
    Central audit logging service.

    Logs events both to:
    1. Structured local log (for debugging)
    2. The audit store (Google Sheets or memory) for persistence
    """

    def __init__(
        self,
        storage: Optional[AuditStorageInterface] = None,
        user_id: Optional[str] = None,
    ):
        """
        Initialize audit logger.

        Args:
            storage: Storage backend for persistence.
                    If None, only logs locally.
            user_id: Owner stamped on ledger events.
        """
        self._storage = storage
        self._user_id = user_id
        self._logger = structlog.get_logger("cebim.audit")

    async def log(self, event: AuditEvent) -> bool:
        """
        Log an audit event.

        Always logs locally. Persists to storage if available.

        Returns True if storage write succeeded (or no storage configured).
        """
        if event.user_id is None and self._user_id is not None:
            event.user_id = self._user_id

        log_dict = event.to_log_dict()

        if event.severity.value in ("error", "critical"):
            self._logger.error("audit_event", **log_dict)
        elif event.severity.value == "warning":
            self._logger.warning("audit_event", **log_dict)
        else:
            self._logger.info("audit_event", **log_dict)

        if self._storage:
            try:
                return await self._storage.append_event(event)
            except Exception as e:
                self._logger.error(
                    "audit_storage_failed",
                    error=str(e),
                    event_id=str(event.event_id),
                )
                return False

        return True

    async def log_asset_created(
        self,
        asset_id: str,
        name: str,
        asset_type: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        event = AuditEventBuilder.asset_created(
            user_id=self._user_id,
            asset_id=asset_id,
            name=name,
            asset_type=asset_type,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_asset_deleted(
        self,
        asset_id: str,
        name: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        event = AuditEventBuilder.asset_deleted(
            user_id=self._user_id,
            asset_id=asset_id,
            name=name,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_lot_change(
        self,
        event_type: AuditEventType,
        asset_id: str,
        lot_id: str,
        amount: Optional[float] = None,
        cost: Optional[float] = None,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log a lot being added, edited or deleted."""
        event = AuditEventBuilder.lot_changed(
            event_type=event_type,
            user_id=self._user_id,
            asset_id=asset_id,
            lot_id=lot_id,
            amount=amount,
            cost=cost,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_sale_change(
        self,
        event_type: AuditEventType,
        asset_id: str,
        sale_id: str,
        amount: Optional[float] = None,
        sale_price: Optional[float] = None,
        profit: Optional[float] = None,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log a sale being recorded, edited or deleted."""
        event = AuditEventBuilder.sale_changed(
            event_type=event_type,
            user_id=self._user_id,
            asset_id=asset_id,
            sale_id=sale_id,
            amount=amount,
            sale_price=sale_price,
            profit=profit,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_period_change(
        self,
        event_type: AuditEventType,
        asset_id: str,
        period_id: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        event = AuditEventBuilder.period_changed(
            event_type=event_type,
            user_id=self._user_id,
            asset_id=asset_id,
            period_id=period_id,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_periods_merged(
        self,
        merge: PeriodMerge,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log the open-period repair."""
        event = AuditEventBuilder.periods_merged(
            user_id=self._user_id,
            asset_id=merge.asset_id,
            merged_period_ids=merge.merged_period_ids,
            new_period_id=merge.new_period_id,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_mutation_rejected(
        self,
        asset_id: Optional[str],
        operation: str,
        reason: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        event = AuditEventBuilder.mutation_rejected(
            user_id=self._user_id,
            asset_id=asset_id,
            operation=operation,
            reason=reason,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_prices_refreshed(
        self,
        priced_count: int,
        failed_symbols: list[str],
        correlation_id: Optional[UUID] = None,
    ) -> None:
        event = AuditEventBuilder.prices_refreshed(
            user_id=self._user_id,
            priced_count=priced_count,
            failed_symbols=failed_symbols,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_price_fetch_failed(
        self,
        source: str,
        symbol: Optional[str],
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        event = AuditEventBuilder.price_fetch_failed(
            source=source,
            symbol=symbol,
            error_message=error_message,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_persistence_failed(
        self,
        kind: str,
        record_id: str,
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        event = AuditEventBuilder.persistence_failed(
            user_id=self._user_id,
            kind=kind,
            record_id=record_id,
            error_message=error_message,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_error(
        self,
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log an error."""
        event = AuditEventBuilder.system_error(
            error_type=error_type,
            error_message=error_message,
            details=details,
            correlation_id=correlation_id,
        )
        await self.log(event)


def create_correlation_id() -> UUID:
    """
    Create a new correlation ID for tracking related events.

    Use this at the start of a new user action (e.g., a sale).
    Pass it through all subsequent operations.
    """
    return uuid4()
