"""
Main Orchestrator for Cebim

This module ties together all the components and defines the
end-to-end flows for:
1. Loading (stored records -> migration -> in-memory assets)
2. Mutations (validate -> apply on the in-memory asset -> audit -> persist)
3. Price refresh (market sources -> snapshot -> stored lot prices)

DESIGN DECISION: The orchestrator enforces the boundaries:
- The ledger is pure and synchronous; only this module talks to the store
- Every mutation, rejection and degraded condition is audited
- A failed store write never undoes an in-memory mutation; the result
  reports persisted=False instead

There are no module-level singletons: everything a flow needs travels in
a PortfolioContext.
"""

import asyncio
from datetime import datetime
from typing import Callable, Optional
from uuid import UUID

import structlog
from pydantic import BaseModel, Field

from cebim.audit import AuditLogger, configure_logging, create_correlation_id
from cebim.config import get_settings
from cebim.models.audit import AuditEventType
from cebim.models.market import MarketSnapshot
from cebim.models.portfolio import Asset, AssetType, AssetValuation
from cebim.portfolio import ledger
from cebim.portfolio.aggregation import compute_aggregated_values
from cebim.portfolio.ledger import LedgerError, LedgerOutcome, RecordNotFoundError
from cebim.portfolio.migration import MigrationError, upgrade
from cebim.portfolio.periods import get_active_period
from cebim.portfolio.reports import (
    CategoryAllocation,
    PortfolioSummary,
    Transaction,
    TransactionKind,
    allocation_by_category,
    summarize_portfolio,
    transaction_history,
)
from cebim.services.market import MarketPriceResolver, MidasClient, TefasClient
from cebim.services.storage import (
    AuditStorageInterface,
    GoogleSheetsAuditStorage,
    GoogleSheetsClient,
    GoogleSheetsRecordStorage,
    InMemoryAuditStorage,
    InMemoryRecordStorage,
    RecordStorageInterface,
    StorageError,
)


logger = structlog.get_logger(__name__)

ASSETS_KIND = "assets"


class PortfolioContext:
    """
    Explicit handles for one user's session.

    Passed into PortfolioService instead of reaching for globals.
    """

    def __init__(
        self,
        user_id: str,
        storage: RecordStorageInterface,
        price_resolver: MarketPriceResolver,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self.user_id = user_id
        self.storage = storage
        self.price_resolver = price_resolver
        self.audit_logger = audit_logger or AuditLogger(user_id=user_id)


class MutationResult(BaseModel):
    """What a service-level mutation did, including its persistence status."""

    asset: Optional[Asset] = None
    outcome: Optional[LedgerOutcome] = None
    asset_deleted: bool = False
    persisted: bool = True
    correlation_id: UUID = Field(default_factory=create_correlation_id)


class PortfolioService:
    """
    Load -> mutate -> persist flows over one user's assets.

    Assets are held in memory after load_assets(); every mutation is
    applied to the in-memory asset first and written to the store after.
    """

    def __init__(self, context: PortfolioContext):
        self._context = context
        self._assets: dict[str, Asset] = {}
        self._snapshot: Optional[MarketSnapshot] = None

    @property
    def context(self) -> PortfolioContext:
        return self._context

    @property
    def assets(self) -> list[Asset]:
        return list(self._assets.values())

    @property
    def snapshot(self) -> Optional[MarketSnapshot]:
        return self._snapshot

    @property
    def _audit(self) -> AuditLogger:
        return self._context.audit_logger

    # =========================================================================
    # LOADING
    # =========================================================================

    async def load_assets(self) -> list[Asset]:
        """
        Read every asset record of the user, upgrading old shapes on the way.

        Records that cannot be read as an asset are skipped and audited;
        they stay untouched in the store.
        """
        records = await self._context.storage.list_records(self._context.user_id, ASSETS_KIND)

        assets: dict[str, Asset] = {}
        for record in records:
            try:
                asset = upgrade(record)
            except MigrationError as e:
                logger.warning(
                    "asset_record_skipped",
                    user_id=self._context.user_id,
                    record_id=record.get("id"),
                    error=str(e),
                )
                await self._audit.log_error(
                    error_type="MigrationError",
                    error_message=str(e),
                    details={"record_id": str(record.get("id"))},
                )
                continue
            assets[asset.id] = asset

        self._assets = assets
        logger.info("assets_loaded", user_id=self._context.user_id, count=len(assets))
        return self.assets

    def get_asset(self, asset_id: str) -> Asset:
        try:
            return self._assets[str(asset_id)]
        except KeyError:
            raise RecordNotFoundError(f"Asset not found: {asset_id}")

    def find_asset(self, name: str, asset_type: AssetType) -> Optional[Asset]:
        """Asset with this name and type, if the user already holds one."""
        wanted = name.strip().upper()
        for asset in self._assets.values():
            if asset.name == wanted and asset.type == AssetType(asset_type):
                return asset
        return None

    # =========================================================================
    # MUTATIONS
    # =========================================================================

    async def buy(
        self,
        name: str,
        asset_type: AssetType,
        amount: float,
        cost: float,
        price: Optional[float] = None,
        date: Optional[datetime] = None,
    ) -> MutationResult:
        """
        Record a purchase, creating the asset on its first purchase.

        When no price is given, the live market price is used if one is
        available; otherwise the lot's price defaults to its cost.
        """
        correlation_id = create_correlation_id()
        try:
            name, asset_type = ledger.validate_asset_identity(name, asset_type)
        except LedgerError as e:
            await self._reject(None, "buy", e, correlation_id)
            raise
        existing = self.find_asset(name, asset_type)

        if existing is not None:
            if price is None:
                price = self.live_price(existing)
            return await self._apply(
                "add_lot",
                existing,
                lambda: ledger.add_lot(existing, amount, cost, price=price, date=date),
                AuditEventType.LOT_ADDED,
                correlation_id,
            )

        if price is None:
            price = await self._initial_price(name, asset_type)
        try:
            asset, outcome = ledger.create_asset(
                name, asset_type, amount, cost, price=price, date=date
            )
        except LedgerError as e:
            await self._reject(None, "create_asset", e, correlation_id)
            raise

        self._assets[asset.id] = asset
        await self._audit.log_asset_created(
            asset_id=asset.id,
            name=asset.name,
            asset_type=asset.type.value,
            correlation_id=correlation_id,
        )
        return await self._after_mutation(asset, outcome, AuditEventType.LOT_ADDED, correlation_id)

    async def edit_lot(
        self,
        asset_id: str,
        lot_id: str,
        new_amount: float,
        new_cost: float,
        new_date: Optional[datetime] = None,
    ) -> MutationResult:
        asset = self.get_asset(asset_id)
        return await self._apply(
            "edit_lot",
            asset,
            lambda: ledger.edit_lot(asset, lot_id, new_amount, new_cost, new_date=new_date),
            AuditEventType.LOT_EDITED,
        )

    async def delete_lot(self, asset_id: str, lot_id: str) -> MutationResult:
        """Delete a lot; deleting the last lot deletes the asset."""
        asset = self.get_asset(asset_id)
        return await self._apply(
            "delete_lot",
            asset,
            lambda: ledger.delete_lot(asset, lot_id),
            AuditEventType.LOT_DELETED,
        )

    async def sell(
        self,
        asset_id: str,
        amount: float,
        sale_price: Optional[float] = None,
        date: Optional[datetime] = None,
    ) -> MutationResult:
        """Record a sale; an omitted price defaults to the current price."""
        asset = self.get_asset(asset_id)
        live_price = self.live_price(asset)
        return await self._apply(
            "record_sale",
            asset,
            lambda: ledger.record_sale(
                asset, amount, sale_price=sale_price, date=date, live_price=live_price
            ),
            AuditEventType.SALE_RECORDED,
        )

    async def delete_sale(self, asset_id: str, sale_id: str) -> MutationResult:
        asset = self.get_asset(asset_id)
        return await self._apply(
            "delete_sale",
            asset,
            lambda: ledger.delete_sale(asset, sale_id),
            AuditEventType.SALE_DELETED,
        )

    async def edit_sale(
        self,
        asset_id: str,
        sale_id: str,
        new_amount: float,
        new_sale_price: float,
    ) -> MutationResult:
        asset = self.get_asset(asset_id)
        return await self._apply(
            "edit_sale",
            asset,
            lambda: ledger.edit_sale(asset, sale_id, new_amount, new_sale_price),
            AuditEventType.SALE_EDITED,
        )

    async def delete_asset(self, asset_id: str) -> MutationResult:
        """Remove an asset with its whole history."""
        asset = self.get_asset(asset_id)
        correlation_id = create_correlation_id()
        persisted = await self._remove(asset, correlation_id)
        return MutationResult(
            asset=asset,
            asset_deleted=True,
            persisted=persisted,
            correlation_id=correlation_id,
        )

    async def _apply(
        self,
        operation: str,
        asset: Asset,
        mutate: Callable[[], LedgerOutcome],
        event_type: AuditEventType,
        correlation_id: Optional[UUID] = None,
    ) -> MutationResult:
        correlation_id = correlation_id or create_correlation_id()
        try:
            outcome = mutate()
        except LedgerError as e:
            # The ledger validates before it mutates: nothing changed
            await self._reject(asset.id, operation, e, correlation_id)
            raise
        return await self._after_mutation(asset, outcome, event_type, correlation_id)

    async def _reject(
        self,
        asset_id: Optional[str],
        operation: str,
        error: LedgerError,
        correlation_id: UUID,
    ) -> None:
        await self._audit.log_mutation_rejected(
            asset_id=asset_id,
            operation=operation,
            reason=str(error),
            correlation_id=correlation_id,
        )

    async def _after_mutation(
        self,
        asset: Asset,
        outcome: LedgerOutcome,
        event_type: AuditEventType,
        correlation_id: UUID,
    ) -> MutationResult:
        await self._audit_outcome(asset, outcome, event_type, correlation_id)

        if outcome.asset_emptied:
            persisted = await self._remove(asset, correlation_id)
            return MutationResult(
                asset=asset,
                outcome=outcome,
                asset_deleted=True,
                persisted=persisted,
                correlation_id=correlation_id,
            )

        persisted = await self._persist(asset, correlation_id)
        return MutationResult(
            asset=asset,
            outcome=outcome,
            persisted=persisted,
            correlation_id=correlation_id,
        )

    async def _audit_outcome(
        self,
        asset: Asset,
        outcome: LedgerOutcome,
        event_type: AuditEventType,
        correlation_id: UUID,
    ) -> None:
        if outcome.lot is not None:
            await self._audit.log_lot_change(
                event_type=event_type,
                asset_id=asset.id,
                lot_id=outcome.lot.id,
                amount=outcome.lot.amount,
                cost=outcome.lot.cost,
                correlation_id=correlation_id,
            )
        if outcome.sale is not None:
            await self._audit.log_sale_change(
                event_type=event_type,
                asset_id=asset.id,
                sale_id=outcome.sale.id,
                amount=outcome.sale.amount,
                sale_price=outcome.sale.sale_price,
                profit=outcome.sale.profit,
                correlation_id=correlation_id,
            )

        period_events = [
            (outcome.opened_period_id, AuditEventType.PERIOD_OPENED),
            (outcome.closed_period_id, AuditEventType.PERIOD_CLOSED),
            (outcome.reopened_period_id, AuditEventType.PERIOD_REOPENED),
        ]
        for period_id, period_event in period_events:
            if period_id is not None:
                await self._audit.log_period_change(
                    event_type=period_event,
                    asset_id=asset.id,
                    period_id=period_id,
                    correlation_id=correlation_id,
                )

        if outcome.merge is not None:
            await self._audit.log_periods_merged(outcome.merge, correlation_id=correlation_id)

    # =========================================================================
    # PERSISTENCE
    # =========================================================================

    async def _persist(self, asset: Asset, correlation_id: Optional[UUID] = None) -> bool:
        try:
            await self._context.storage.put_record(
                self._context.user_id, ASSETS_KIND, asset.to_record()
            )
            return True
        except StorageError as e:
            await self._persistence_failed(asset.id, e, correlation_id)
            return False

    async def _remove(self, asset: Asset, correlation_id: UUID) -> bool:
        self._assets.pop(asset.id, None)
        await self._audit.log_asset_deleted(
            asset_id=asset.id,
            name=asset.name,
            correlation_id=correlation_id,
        )
        try:
            await self._context.storage.delete_record(
                self._context.user_id, ASSETS_KIND, asset.id
            )
            return True
        except StorageError as e:
            await self._persistence_failed(asset.id, e, correlation_id)
            return False

    async def _persistence_failed(
        self,
        record_id: str,
        error: Exception,
        correlation_id: Optional[UUID],
    ) -> None:
        logger.error(
            "persistence_failed",
            user_id=self._context.user_id,
            kind=ASSETS_KIND,
            record_id=record_id,
            error=str(error),
        )
        await self._audit.log_persistence_failed(
            kind=ASSETS_KIND,
            record_id=record_id,
            error_message=str(error),
            correlation_id=correlation_id,
        )

    # =========================================================================
    # MARKET PRICES
    # =========================================================================

    def live_price(self, asset: Asset) -> Optional[float]:
        """Positive live price from the last refresh, or None."""
        return MarketPriceResolver.get_price(asset, self._snapshot)

    async def _initial_price(self, name: str, asset_type: AssetType) -> Optional[float]:
        """Live price for an instrument about to be created, if a source has one."""
        draft = Asset(name=name, type=asset_type)
        price = MarketPriceResolver.get_price(draft, self._snapshot)
        if price is not None:
            return price
        snapshot = await asyncio.to_thread(
            self._context.price_resolver.fetch_market_data, [draft]
        )
        return MarketPriceResolver.get_price(draft, snapshot)

    async def refresh_prices(self) -> MarketSnapshot:
        """
        Fetch current prices and store them on the lots of open periods.

        Source failures are audited and leave the stored prices as they
        were. Only assets whose price actually changed are written.
        """
        correlation_id = create_correlation_id()
        snapshot = await asyncio.to_thread(
            self._context.price_resolver.fetch_market_data, self.assets
        )
        self._snapshot = snapshot

        if snapshot.error:
            await self._audit.log_price_fetch_failed(
                source="fx_table",
                symbol=None,
                error_message="FX table unavailable",
                correlation_id=correlation_id,
            )
        for symbol in snapshot.failed_symbols:
            await self._audit.log_price_fetch_failed(
                source="instrument",
                symbol=symbol,
                error_message="No price available",
                correlation_id=correlation_id,
            )

        for asset in self.assets:
            price = self.live_price(asset)
            active = get_active_period(asset)
            if price is None or active is None:
                continue
            changed = False
            for lot in active.lots:
                if lot.price != price:
                    lot.price = price
                    changed = True
            if changed:
                await self._persist(asset, correlation_id)

        await self._audit.log_prices_refreshed(
            priced_count=len(snapshot.specific_prices),
            failed_symbols=list(snapshot.failed_symbols),
            correlation_id=correlation_id,
        )
        return snapshot

    def search_symbols(self, query: str, limit: int = 5) -> list[dict[str, str]]:
        return self._context.price_resolver.search_symbols(query, limit=limit)

    # =========================================================================
    # READ MODELS
    # =========================================================================

    def valuations(self) -> list[AssetValuation]:
        """Current valuation of every asset, live price where available."""
        return [
            compute_aggregated_values(asset, self.live_price(asset))
            for asset in self._assets.values()
        ]

    def summary(self) -> PortfolioSummary:
        return summarize_portfolio(self.valuations())

    def allocation(self) -> list[CategoryAllocation]:
        return allocation_by_category(self.valuations())

    def history(
        self,
        kind: Optional[TransactionKind] = None,
        asset_type: Optional[AssetType] = None,
    ) -> list[Transaction]:
        return transaction_history(self._assets.values(), kind=kind, asset_type=asset_type)


class PriceRefresher:
    """
    Periodic price refresh on an asyncio task.

    stop() cancels the timer loop; a fetch already running in its worker
    thread finishes on its own and its result is discarded.
    """

    def __init__(self, service: PortfolioService, interval_seconds: Optional[float] = None):
        self._service = service
        self._interval = interval_seconds or get_settings().market.refresh_interval_seconds
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """Start refreshing. Must be called from a running event loop."""
        if self.running:
            return
        self._task = asyncio.get_running_loop().create_task(self._run())

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None

    async def _run(self) -> None:
        while True:
            try:
                await self._service.refresh_prices()
            except Exception as e:
                # One bad cycle must not end the timer
                logger.error("price_refresh_failed", error_type=type(e).__name__, error=str(e))
            await asyncio.sleep(self._interval)


def create_app_components(
    user_id: Optional[str] = None,
    use_storage: bool = True,
) -> tuple[PortfolioService, PriceRefresher, Optional[GoogleSheetsClient]]:
    """
    Factory function to create all application components.

    Args:
        user_id: Owner of the records. Defaults to app.default_user_id.
        use_storage: Whether to initialize Google Sheets storage.
                    Set to False for testing without storage.

    Returns:
        (portfolio_service, price_refresher, sheets_client)
    """
    settings = get_settings()
    app_settings = settings.app
    configure_logging(app_settings.log_level)
    user_id = user_id or app_settings.default_user_id

    sheets_client = None
    record_storage: RecordStorageInterface
    audit_storage: AuditStorageInterface

    if use_storage:
        try:
            sheets_client = GoogleSheetsClient()
            record_storage = GoogleSheetsRecordStorage(sheets_client)
            audit_storage = GoogleSheetsAuditStorage(sheets_client)
        except Exception as e:
            # Storage not configured - continue in memory
            logger.warning("storage_not_configured", error=str(e))
            sheets_client = None
            record_storage = InMemoryRecordStorage()
            audit_storage = InMemoryAuditStorage()
    else:
        record_storage = InMemoryRecordStorage()
        audit_storage = InMemoryAuditStorage()

    market_settings = settings.market
    midas = MidasClient(market_settings)
    resolver = MarketPriceResolver(
        fx_source=midas,
        stock_source=midas,
        fund_source=TefasClient(market_settings),
    )

    context = PortfolioContext(
        user_id=user_id,
        storage=record_storage,
        price_resolver=resolver,
        audit_logger=AuditLogger(audit_storage, user_id=user_id),
    )
    service = PortfolioService(context)
    refresher = PriceRefresher(service, market_settings.refresh_interval_seconds)

    return service, refresher, sheets_client
