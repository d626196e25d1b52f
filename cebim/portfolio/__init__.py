"""
Portfolio Accounting Package

The pure, synchronous core: ledger mutations, period segmentation,
aggregation, record migration and read-only reports. Nothing in this
package performs I/O.
"""

from cebim.portfolio.periods import (
    PeriodInvariantError,
    assert_period_invariants,
    close_period,
    get_active_period,
    merge_open_periods,
    open_period,
    reopen_period,
    settle_period,
    should_close_period,
    sync_legacy_mirror,
)
from cebim.portfolio.aggregation import (
    compute_aggregated_values,
    latest_lot_price,
    period_totals,
    weighted_average_cost,
)
from cebim.portfolio.ledger import (
    InsufficientQuantityError,
    LedgerError,
    LedgerOutcome,
    RecordNotFoundError,
    ValidationError,
    add_lot,
    create_asset,
    delete_lot,
    delete_sale,
    edit_lot,
    edit_sale,
    record_sale,
    validate_asset_identity,
)
from cebim.portfolio.migration import (
    MigrationError,
    detect_schema_version,
    migrate_asset_to_periods,
    migrate_flat_asset_to_lots,
    upgrade,
)
from cebim.portfolio.reports import (
    CategoryAllocation,
    PortfolioSummary,
    Transaction,
    TransactionKind,
    TransactionSummary,
    allocation_by_category,
    get_all_transactions,
    summarize_portfolio,
    summarize_transactions,
    transaction_history,
)

__all__ = [
    # Periods
    "PeriodInvariantError",
    "assert_period_invariants",
    "close_period",
    "get_active_period",
    "merge_open_periods",
    "open_period",
    "reopen_period",
    "settle_period",
    "should_close_period",
    "sync_legacy_mirror",
    # Aggregation
    "compute_aggregated_values",
    "latest_lot_price",
    "period_totals",
    "weighted_average_cost",
    # Ledger
    "InsufficientQuantityError",
    "LedgerError",
    "LedgerOutcome",
    "RecordNotFoundError",
    "ValidationError",
    "add_lot",
    "create_asset",
    "delete_lot",
    "delete_sale",
    "edit_lot",
    "edit_sale",
    "record_sale",
    "validate_asset_identity",
    # Migration
    "MigrationError",
    "detect_schema_version",
    "migrate_asset_to_periods",
    "migrate_flat_asset_to_lots",
    "upgrade",
    # Reports
    "CategoryAllocation",
    "PortfolioSummary",
    "Transaction",
    "TransactionKind",
    "TransactionSummary",
    "allocation_by_category",
    "get_all_transactions",
    "summarize_portfolio",
    "summarize_transactions",
    "transaction_history",
]
