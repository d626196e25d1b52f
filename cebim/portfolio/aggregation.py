"""
Aggregation Engine

Computes holding metrics from the ACTIVE period only. Closed periods are
history: repurchasing after a full exit starts a fresh average cost that
is unaffected by the previous cycle's gains or losses.
"""

from typing import Optional, Sequence

from cebim.models.portfolio import (
    QUANTITY_EPSILON,
    Asset,
    AssetValuation,
    Lot,
    Period,
    PriceSource,
)
from cebim.portfolio.periods import get_active_period


def weighted_average_cost(lots: Sequence[Lot]) -> float:
    """Quantity-weighted mean unit cost of the given lots (0 when there are none)."""
    purchased = sum(lot.amount for lot in lots)
    if purchased <= 0:
        return 0.0
    return sum(lot.amount * lot.cost for lot in lots) / purchased


def latest_lot_price(lots: Sequence[Lot]) -> float:
    """
    Stored price of the most recently added lot.

    Falls back to the first lot when no lot carries a timestamp.
    """
    if not lots:
        return 0.0
    dated = [lot for lot in lots if lot.added_at is not None]
    if not dated:
        return lots[0].price
    # max() keeps the first of equal timestamps, i.e. list order
    return max(dated, key=lambda lot: lot.added_at).price


def period_totals(period: Period) -> tuple[float, float]:
    """
    Returns:
        (net_amount, avg_cost) of one period
    """
    net = period.net_amount
    if abs(net) < QUANTITY_EPSILON:
        net = 0.0
    return net, weighted_average_cost(period.lots)


def compute_aggregated_values(
    asset: Asset,
    live_price: Optional[float] = None,
) -> AssetValuation:
    """
    Compute quantity, average cost, value and P/L for an asset.

    Args:
        asset: Asset to value
        live_price: Price from a market source. Used only when positive;
                   otherwise the last stored lot price is used.

    Returns:
        AssetValuation (all zeros when no period is open)
    """
    realized = sum(sale.profit for sale in asset.all_sales())
    valuation = AssetValuation(
        asset_id=asset.id,
        name=asset.name,
        type=asset.type,
        realized_profit=realized,
    )

    active = get_active_period(asset)
    if active is None or not active.lots:
        return valuation

    total_amount, avg_cost = period_totals(active)

    if live_price is not None and live_price > 0:
        current_price = float(live_price)
        source = PriceSource.LIVE
    else:
        current_price = latest_lot_price(active.lots)
        source = PriceSource.STORED if current_price > 0 else PriceSource.NONE

    total_value = total_amount * current_price
    total_cost = total_amount * avg_cost
    total_profit = total_value - total_cost
    profit_percentage = (total_profit / total_cost) * 100 if total_cost > 0 else 0.0

    valuation.total_amount = total_amount
    valuation.avg_cost = avg_cost
    valuation.current_price = current_price
    valuation.total_value = total_value
    valuation.total_profit = total_profit
    valuation.profit_percentage = profit_percentage
    valuation.price_source = source
    return valuation
