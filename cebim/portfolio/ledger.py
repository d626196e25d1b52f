"""
Lot/Sale Ledger

Records purchases (lots) and disposals (sales) on an Asset.

IMPORTANT: Every operation validates first and mutates afterwards.
If an error is raised, the asset is exactly as it was before the call.

After each mutation the ledger:
1. Settles the touched period (close when liquidated, reopen when not)
2. Repairs several open periods into one (logged, reported in the outcome)
3. Drops periods left with no records
4. Re-syncs the legacy lots/sales mirror
5. Checks the period invariants
"""

import math
from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel

from cebim.models.portfolio import (
    ASSET_NAME_MAX_LENGTH,
    QUANTITY_EPSILON,
    Asset,
    AssetType,
    Lot,
    Period,
    PeriodMerge,
    Sale,
    utc_now,
)
from cebim.portfolio.aggregation import latest_lot_price, weighted_average_cost
from cebim.portfolio.periods import (
    assert_period_invariants,
    close_period,
    drop_empty_periods,
    find_period_of_lot,
    find_period_of_sale,
    get_active_period,
    merge_open_periods,
    open_period,
    settle_period,
    should_close_period,
    sync_legacy_mirror,
)


class LedgerError(Exception):
    """Base exception for ledger operations."""
    pass


class ValidationError(LedgerError):
    """A quantity, cost or price the user entered is not acceptable."""

    def __init__(self, field: str, message: str):
        self.field = field
        super().__init__(message)


class InsufficientQuantityError(ValidationError):
    """A sale (or an edit) would dispose of more than the period holds."""

    def __init__(self, requested: float, available: float, message: Optional[str] = None):
        self.requested = requested
        self.available = max(available, 0.0)
        super().__init__(
            "amount",
            message or (
                f"Insufficient quantity: requested {requested:g}, "
                f"only {self.available:g} available"
            ),
        )


class RecordNotFoundError(LedgerError):
    """The lot or sale id does not exist on the asset."""
    pass


class LedgerOutcome(BaseModel):
    """What a ledger operation changed, for auditing and persistence."""
    asset_id: str
    lot: Optional[Lot] = None
    sale: Optional[Sale] = None
    opened_period_id: Optional[str] = None
    closed_period_id: Optional[str] = None
    reopened_period_id: Optional[str] = None
    merge: Optional[PeriodMerge] = None
    asset_emptied: bool = False


def _require_positive(value: Any, field: str) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise ValidationError(field, f"{field} must be a number, got {value!r}")
    if math.isnan(number) or math.isinf(number) or number <= 0:
        raise ValidationError(field, f"{field} must be greater than 0, got {value!r}")
    return number


def _require_closed_stays_liquidated(
    period: Period, purchased: float, sold: float, record_id: str
) -> None:
    """A closed period is a finished cycle; edits must leave it fully sold."""
    if not period.is_open and abs(purchased - sold) > QUANTITY_EPSILON:
        raise ValidationError(
            "amount",
            f"Record {record_id} belongs to a closed period: the edit would leave "
            f"{purchased - sold:g} units in it. Keep the period fully sold.",
        )


def _record_settlement(outcome: LedgerOutcome, change: Optional[str], period_id: str) -> None:
    if change == "closed":
        outcome.closed_period_id = period_id
    elif change == "reopened":
        outcome.reopened_period_id = period_id


def _finish(asset: Asset, outcome: LedgerOutcome) -> LedgerOutcome:
    outcome.merge = merge_open_periods(asset)
    drop_empty_periods(asset)
    sync_legacy_mirror(asset)
    assert_period_invariants(asset)
    return outcome


# =============================================================================
# LOTS
# =============================================================================

def validate_asset_identity(name: Any, asset_type: Any) -> tuple[str, AssetType]:
    """
    Check a new asset's name and type before anything is built from them.

    Returns:
        (normalized name, AssetType)

    Raises:
        ValidationError: on a blank or too long name, or an unknown type
    """
    if not isinstance(name, str) or not name.strip():
        raise ValidationError("name", "Asset name is required")
    normalized = name.strip().upper()
    if len(normalized) > ASSET_NAME_MAX_LENGTH:
        raise ValidationError(
            "name",
            f"Asset name must be at most {ASSET_NAME_MAX_LENGTH} characters",
        )
    try:
        kind = AssetType(asset_type)
    except ValueError:
        raise ValidationError("type", f"Unknown asset type: {asset_type!r}")
    return normalized, kind


def create_asset(
    name: str,
    asset_type: AssetType,
    amount: float,
    cost: float,
    price: Optional[float] = None,
    date: Optional[datetime] = None,
    asset_id: Optional[str] = None,
) -> tuple[Asset, LedgerOutcome]:
    """
    Create an asset from its first purchase: one period holding one lot.

    Returns:
        (asset, outcome of the first add_lot)
    """
    # Validate before building anything
    name, kind = validate_asset_identity(name, asset_type)
    _require_positive(amount, "amount")
    _require_positive(cost, "cost")
    if price is not None:
        _require_positive(price, "price")

    fields: dict[str, Any] = {"name": name, "type": kind}
    if asset_id is not None:
        fields["id"] = asset_id
    asset = Asset(**fields)
    outcome = add_lot(asset, amount, cost, price=price, date=date)
    return asset, outcome


def add_lot(
    asset: Asset,
    amount: float,
    cost: float,
    price: Optional[float] = None,
    date: Optional[datetime] = None,
) -> LedgerOutcome:
    """
    Record a purchase.

    Appends to the open period, or opens a new period first when the
    previous one was fully liquidated. `price` defaults to `cost`.

    Raises:
        ValidationError: if amount, cost or a given price is not positive
    """
    amount = _require_positive(amount, "amount")
    cost = _require_positive(cost, "cost")
    price = cost if price is None else _require_positive(price, "price")

    outcome = LedgerOutcome(asset_id=asset.id)
    active = get_active_period(asset)
    if active is None:
        active = open_period(asset)
        outcome.opened_period_id = active.id

    lot = Lot(amount=amount, cost=cost, price=price, added_at=date or utc_now())
    active.lots.append(lot)
    outcome.lot = lot
    return _finish(asset, outcome)


def edit_lot(
    asset: Asset,
    lot_id: str,
    new_amount: float,
    new_cost: float,
    new_date: Optional[datetime] = None,
) -> LedgerOutcome:
    """
    Change a lot's amount, cost and (optionally) date in place.

    Raises:
        ValidationError: on non-positive values
        InsufficientQuantityError: if the period would have sold more than it bought
        ValidationError: if the lot is in a closed period and the new amount
            would leave that period holding units
        RecordNotFoundError: if the lot does not exist
    """
    period = find_period_of_lot(asset, lot_id)
    if period is None:
        raise RecordNotFoundError(f"Lot not found: {lot_id}")
    amount = _require_positive(new_amount, "amount")
    cost = _require_positive(new_cost, "cost")

    lot = next(lot for lot in period.lots if lot.id == lot_id)
    purchased_after = period.purchased_amount - lot.amount + amount
    if period.sold_amount - purchased_after > QUANTITY_EPSILON:
        raise InsufficientQuantityError(
            requested=period.sold_amount,
            available=purchased_after,
            message=(
                f"Cannot reduce lot to {amount:g}: {period.sold_amount:g} "
                f"already sold from this period"
            ),
        )
    _require_closed_stays_liquidated(period, purchased_after, period.sold_amount, lot_id)

    lot.amount = amount
    lot.cost = cost
    if new_date is not None:
        lot.added_at = new_date

    outcome = LedgerOutcome(asset_id=asset.id, lot=lot)
    _record_settlement(outcome, settle_period(asset, period), period.id)
    return _finish(asset, outcome)


def delete_lot(asset: Asset, lot_id: str) -> LedgerOutcome:
    """
    Remove a lot.

    `outcome.asset_emptied` is True when no lot is left in any period;
    the caller should then delete the whole asset. Emptying only the open
    period keeps the asset, since its closed periods still carry the
    realised history shown in the transaction list.

    Raises:
        InsufficientQuantityError: if the period's sales would exceed its remaining lots
        RecordNotFoundError: if the lot does not exist
    """
    period = find_period_of_lot(asset, lot_id)
    if period is None:
        raise RecordNotFoundError(f"Lot not found: {lot_id}")

    lot = next(lot for lot in period.lots if lot.id == lot_id)
    remaining = period.purchased_amount - lot.amount
    if period.sold_amount - remaining > QUANTITY_EPSILON:
        raise InsufficientQuantityError(
            requested=period.sold_amount,
            available=remaining,
            message=(
                f"Cannot delete lot {lot_id}: {period.sold_amount:g} already "
                f"sold from this period"
            ),
        )

    period.lots = [other for other in period.lots if other.id != lot_id]

    outcome = LedgerOutcome(asset_id=asset.id, lot=lot)
    _record_settlement(outcome, settle_period(asset, period), period.id)
    _finish(asset, outcome)
    outcome.asset_emptied = not asset.all_lots()
    return outcome


# =============================================================================
# SALES
# =============================================================================

def record_sale(
    asset: Asset,
    amount: float,
    sale_price: Optional[float] = None,
    date: Optional[datetime] = None,
    live_price: Optional[float] = None,
) -> LedgerOutcome:
    """
    Record a disposal from the open period.

    The weighted average cost BEFORE the sale is frozen on the sale along
    with its profit. When `sale_price` is omitted the current price is
    used: `live_price` if positive, else the last stored lot price.
    The period closes when its net quantity reaches zero.

    Raises:
        ValidationError: on non-positive amount or price
        InsufficientQuantityError: if amount exceeds the open period's holdings
    """
    amount = _require_positive(amount, "amount")

    active = get_active_period(asset)
    available = active.net_amount if active is not None else 0.0
    if amount - available > QUANTITY_EPSILON:
        raise InsufficientQuantityError(requested=amount, available=available)

    if sale_price is None:
        if live_price is not None and live_price > 0:
            sale_price = live_price
        else:
            sale_price = latest_lot_price(active.lots)
    sale_price = _require_positive(sale_price, "sale_price")

    avg_cost = weighted_average_cost(active.lots)
    sale = Sale(
        amount=amount,
        sale_price=sale_price,
        avg_cost=avg_cost,
        profit=Sale.compute_profit(amount, sale_price, avg_cost),
        sold_at=date or utc_now(),
    )
    active.sales.append(sale)

    outcome = LedgerOutcome(asset_id=asset.id, sale=sale)
    if should_close_period(active):
        close_period(asset, active, sale.sold_at)
        outcome.closed_period_id = active.id
    return _finish(asset, outcome)


def delete_sale(asset: Asset, sale_id: str) -> LedgerOutcome:
    """
    Remove a sale.

    A closed period that holds a positive quantity again is reopened.
    If that leaves more than one period open, all open periods are merged
    into a single new one (see merge_open_periods); `outcome.merge`
    describes it.

    Raises:
        RecordNotFoundError: if the sale does not exist
    """
    period = find_period_of_sale(asset, sale_id)
    if period is None:
        raise RecordNotFoundError(f"Sale not found: {sale_id}")

    sale = next(sale for sale in period.sales if sale.id == sale_id)
    period.sales = [other for other in period.sales if other.id != sale_id]

    outcome = LedgerOutcome(asset_id=asset.id, sale=sale)
    _record_settlement(outcome, settle_period(asset, period), period.id)
    return _finish(asset, outcome)


def edit_sale(
    asset: Asset,
    sale_id: str,
    new_amount: float,
    new_sale_price: float,
) -> LedgerOutcome:
    """
    Change a sale's amount and price.

    Profit is recomputed with the sale's frozen average cost; the
    average cost itself is NOT recalculated.

    Raises:
        ValidationError: on non-positive values, or when the period would
            have sold more than it bought (InsufficientQuantityError)
        ValidationError: if the sale is in a closed period and the new amount
            would leave that period holding units
        RecordNotFoundError: if the sale does not exist
    """
    period = find_period_of_sale(asset, sale_id)
    if period is None:
        raise RecordNotFoundError(f"Sale not found: {sale_id}")
    amount = _require_positive(new_amount, "amount")
    price = _require_positive(new_sale_price, "sale_price")

    sale = next(sale for sale in period.sales if sale.id == sale_id)
    other_sales = period.sold_amount - sale.amount
    available = period.purchased_amount - other_sales
    if amount - available > QUANTITY_EPSILON:
        raise InsufficientQuantityError(requested=amount, available=available)
    _require_closed_stays_liquidated(
        period, period.purchased_amount, other_sales + amount, sale_id
    )

    sale.amount = amount
    sale.sale_price = price
    sale.profit = Sale.compute_profit(amount, price, sale.avg_cost)

    outcome = LedgerOutcome(asset_id=asset.id, sale=sale)
    _record_settlement(outcome, settle_period(asset, period, sale.sold_at), period.id)
    return _finish(asset, outcome)
