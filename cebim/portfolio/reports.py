"""
Portfolio Reports

Read-only views over the ledger:
- Transaction history across ALL periods (closed cycles included)
- Portfolio-wide summary of the current valuations
- Allocation of current value by asset category

Nothing here mutates an asset.
"""

from datetime import datetime
from enum import Enum
from typing import Iterable, Optional

from pydantic import BaseModel, Field

from cebim.models.portfolio import Asset, AssetType, AssetValuation


class TransactionKind(str, Enum):
    BUY = "buy"
    SELL = "sell"


class Transaction(BaseModel):
    """One row of the transaction history: a lot (buy) or a sale (sell)."""
    id: str
    kind: TransactionKind
    asset_id: str
    asset_name: str
    asset_type: AssetType
    period_id: str
    amount: float
    unit_price: float = Field(..., description="Lot cost for buys, sale price for sells")
    total: float
    profit: Optional[float] = Field(default=None, description="Realised profit, sells only")
    date: Optional[datetime] = None


class TransactionSummary(BaseModel):
    total_buy_value: float = 0.0
    total_sell_value: float = 0.0
    realized_profit: float = 0.0
    buy_count: int = 0
    sell_count: int = 0


class PortfolioSummary(BaseModel):
    total_value: float = 0.0
    total_cost: float = 0.0
    total_profit: float = 0.0
    profit_percentage: float = 0.0


class CategoryAllocation(BaseModel):
    type: AssetType
    label: str
    value: float
    share: float = Field(..., description="Percentage of total portfolio value")
    asset_count: int


def get_all_transactions(asset: Asset) -> list[Transaction]:
    """Every lot and sale of an asset, in period order."""
    transactions = []
    for period in asset.periods:
        for lot in period.lots:
            transactions.append(Transaction(
                id=lot.id,
                kind=TransactionKind.BUY,
                asset_id=asset.id,
                asset_name=asset.name,
                asset_type=asset.type,
                period_id=period.id,
                amount=lot.amount,
                unit_price=lot.cost,
                total=lot.amount * lot.cost,
                date=lot.added_at,
            ))
        for sale in period.sales:
            transactions.append(Transaction(
                id=sale.id,
                kind=TransactionKind.SELL,
                asset_id=asset.id,
                asset_name=asset.name,
                asset_type=asset.type,
                period_id=period.id,
                amount=sale.amount,
                unit_price=sale.sale_price,
                total=sale.amount * sale.sale_price,
                profit=sale.profit,
                date=sale.sold_at,
            ))
    return transactions


def _sort_key(tx: Transaction) -> float:
    # Undated legacy records sink to the bottom
    return tx.date.timestamp() if tx.date is not None else float("-inf")


def transaction_history(
    assets: Iterable[Asset],
    kind: Optional[TransactionKind] = None,
    asset_type: Optional[AssetType] = None,
) -> list[Transaction]:
    """
    Transactions of many assets, newest first.

    Args:
        kind: only buys or only sells
        asset_type: only assets of this category
    """
    history = []
    for asset in assets:
        if asset_type is not None and asset.type != AssetType(asset_type):
            continue
        for tx in get_all_transactions(asset):
            if kind is None or tx.kind == TransactionKind(kind):
                history.append(tx)
    history.sort(key=_sort_key, reverse=True)
    return history


def summarize_transactions(transactions: Iterable[Transaction]) -> TransactionSummary:
    summary = TransactionSummary()
    for tx in transactions:
        if tx.kind == TransactionKind.BUY:
            summary.total_buy_value += tx.total
            summary.buy_count += 1
        else:
            summary.total_sell_value += tx.total
            summary.realized_profit += tx.profit or 0.0
            summary.sell_count += 1
    return summary


def summarize_portfolio(valuations: Iterable[AssetValuation]) -> PortfolioSummary:
    """Totals across the active holdings. P/L % is 0 when nothing is invested."""
    summary = PortfolioSummary()
    for valuation in valuations:
        summary.total_value += valuation.total_value
        summary.total_cost += valuation.total_cost
    summary.total_profit = summary.total_value - summary.total_cost
    if summary.total_cost > 0:
        summary.profit_percentage = summary.total_profit / summary.total_cost * 100
    return summary


def allocation_by_category(valuations: Iterable[AssetValuation]) -> list[CategoryAllocation]:
    """Current value per category in display order, skipping empty categories."""
    values: dict[AssetType, float] = {}
    counts: dict[AssetType, int] = {}
    for valuation in valuations:
        if valuation.total_value <= 0:
            continue
        values[valuation.type] = values.get(valuation.type, 0.0) + valuation.total_value
        counts[valuation.type] = counts.get(valuation.type, 0) + 1

    grand_total = sum(values.values())
    allocations = []
    for asset_type in sorted(values, key=lambda t: t.order):
        allocations.append(CategoryAllocation(
            type=asset_type,
            label=asset_type.label,
            value=values[asset_type],
            share=values[asset_type] / grand_total * 100 if grand_total > 0 else 0.0,
            asset_count=counts[asset_type],
        ))
    return allocations
