"""
Period Segmentation

An asset's history is split into holding periods. A period opens with a
purchase and closes the moment its net quantity reaches zero. Buying the
same instrument again opens a NEW period, so the cost basis of a closed
period never leaks into the next one.

INVARIANTS:
1. At most one period per asset is open (closed_at is None)
2. asset.current_period_id points at that open period, or is None
3. Within a period, sold quantity never exceeds purchased quantity
4. asset.lots / asset.sales mirror the open period (empty when none)
"""

from datetime import datetime
from typing import Optional

import structlog

from cebim.models.portfolio import (
    QUANTITY_EPSILON,
    Asset,
    Period,
    PeriodMerge,
    utc_now,
)


logger = structlog.get_logger(__name__)


class PeriodInvariantError(AssertionError):
    """The period list of an asset is in a state the ledger must never produce."""

    def __init__(self, asset_id: str, message: str):
        self.asset_id = asset_id
        super().__init__(f"Asset {asset_id}: {message}")


def get_active_period(asset: Asset) -> Optional[Period]:
    """Return the open period of an asset, or None when every period is closed."""
    for period in asset.periods:
        if period.is_open:
            return period
    return None


def should_close_period(period: Period) -> bool:
    """True when nothing is left to hold: purchases minus sales is zero or less."""
    return period.net_amount <= QUANTITY_EPSILON


def open_period(asset: Asset) -> Period:
    """Append a fresh open period and make it current."""
    period = Period()
    asset.periods.append(period)
    asset.current_period_id = period.id
    logger.debug("period_opened", asset_id=asset.id, period_id=period.id)
    return period


def close_period(asset: Asset, period: Period, at: Optional[datetime] = None) -> None:
    period.closed_at = at or utc_now()
    if asset.current_period_id == period.id:
        asset.current_period_id = None
    logger.debug("period_closed", asset_id=asset.id, period_id=period.id)


def reopen_period(asset: Asset, period: Period) -> None:
    period.closed_at = None
    asset.current_period_id = period.id
    logger.debug("period_reopened", asset_id=asset.id, period_id=period.id)


def settle_period(asset: Asset, period: Period, at: Optional[datetime] = None) -> Optional[str]:
    """
    Bring a period's closed state in line with its net quantity.

    A period without any sale stays open even when empty; it only closes
    through liquidation.

    Returns:
        "closed", "reopened" or None when nothing changed
    """
    if period.is_open and period.sales and should_close_period(period):
        close_period(asset, period, at)
        return "closed"
    if not period.is_open and not should_close_period(period):
        reopen_period(asset, period)
        return "reopened"
    return None


def find_period_of_lot(asset: Asset, lot_id: str) -> Optional[Period]:
    for period in asset.periods:
        if any(lot.id == lot_id for lot in period.lots):
            return period
    return None


def find_period_of_sale(asset: Asset, sale_id: str) -> Optional[Period]:
    for period in asset.periods:
        if any(sale.id == sale_id for sale in period.sales):
            return period
    return None


def drop_empty_periods(asset: Asset) -> list[str]:
    """Remove periods that hold neither lots nor sales."""
    dropped = [p.id for p in asset.periods if not p.lots and not p.sales]
    if dropped:
        asset.periods = [p for p in asset.periods if p.id not in dropped]
        if asset.current_period_id in dropped:
            asset.current_period_id = None
    return dropped


def merge_open_periods(asset: Asset) -> Optional[PeriodMerge]:
    """
    Collapse several open periods into one new period.

    This is a repair step. A clean history never has two open periods;
    it can only appear when a closed period is reopened by deleting one
    of its sales while a later period is still open, or when two writers
    raced on the same record. Edits never reopen a closed period.
    The merged period keeps every lot and sale (in period order) but
    loses the old period ids.

    Returns:
        A PeriodMerge describing the repair, or None if at most one
        period was open.
    """
    open_periods = [p for p in asset.periods if p.is_open]
    if len(open_periods) <= 1:
        return None

    merged = Period(
        lots=[lot for p in open_periods for lot in p.lots],
        sales=[sale for p in open_periods for sale in p.sales],
    )
    merged_ids = [p.id for p in open_periods]
    asset.periods = [p for p in asset.periods if not p.is_open] + [merged]
    asset.current_period_id = merged.id

    logger.warning(
        "periods_merged",
        asset_id=asset.id,
        merged_period_ids=merged_ids,
        new_period_id=merged.id,
    )
    return PeriodMerge(
        asset_id=asset.id,
        merged_period_ids=merged_ids,
        new_period_id=merged.id,
    )


def sync_legacy_mirror(asset: Asset) -> None:
    """Copy the open period's records into the legacy lots/sales fields."""
    active = get_active_period(asset)
    asset.lots = list(active.lots) if active else []
    asset.sales = list(active.sales) if active else []


def assert_period_invariants(asset: Asset) -> None:
    """
    Check the period list after a mutation.

    Raises:
        PeriodInvariantError: if any invariant listed in the module
            docstring does not hold
    """
    open_periods = [p for p in asset.periods if p.is_open]
    if len(open_periods) > 1:
        raise PeriodInvariantError(
            asset.id, f"{len(open_periods)} open periods, expected at most one"
        )

    expected_current = open_periods[0].id if open_periods else None
    if asset.current_period_id != expected_current:
        raise PeriodInvariantError(
            asset.id,
            f"current period {asset.current_period_id!r} does not match "
            f"open period {expected_current!r}",
        )

    for period in asset.periods:
        if period.net_amount < -QUANTITY_EPSILON:
            raise PeriodInvariantError(
                asset.id,
                f"period {period.id} sold {period.sold_amount} "
                f"of {period.purchased_amount} purchased",
            )
