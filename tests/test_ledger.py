"""
Tests for the lot/sale ledger.

Covers the buy/sell/re-buy lifecycle, validation without side effects,
frozen sale cost basis, and the open-period repair.
"""

import math
import random

import pytest

from cebim.models.portfolio import QUANTITY_EPSILON, AssetType
from cebim.portfolio.aggregation import compute_aggregated_values
from cebim.portfolio.ledger import (
    InsufficientQuantityError,
    RecordNotFoundError,
    ValidationError,
    add_lot,
    create_asset,
    delete_lot,
    delete_sale,
    edit_lot,
    edit_sale,
    record_sale,
)
from cebim.portfolio.periods import assert_period_invariants, get_active_period


@pytest.fixture
def aapl(later):
    """AAPL holding 10@100 then 5@120."""
    asset, _ = create_asset("aapl", AssetType.STOCK, 10, 100, date=later(0))
    add_lot(asset, 5, 120, date=later(1))
    return asset


class TestLots:
    """Tests for purchases."""

    def test_create_asset_opens_one_period(self):
        """Test the first purchase creates one period with one lot."""
        asset, outcome = create_asset("thyao", AssetType.STOCK, 100, 250)
        assert asset.name == "THYAO"
        assert len(asset.periods) == 1
        assert asset.current_period_id == asset.periods[0].id
        assert outcome.opened_period_id == asset.periods[0].id
        assert outcome.lot.amount == 100
        assert [lot.id for lot in asset.lots] == [outcome.lot.id]

    @pytest.mark.parametrize("name,asset_type,field", [
        ("", AssetType.STOCK, "name"),
        ("X" * 51, AssetType.STOCK, "name"),
        ("AAPL", "bond", "type"),
    ])
    def test_create_asset_rejects_bad_identity(self, name, asset_type, field):
        """Test name and type problems surface as ValidationError."""
        with pytest.raises(ValidationError) as exc:
            create_asset(name, asset_type, 1, 1)
        assert exc.value.field == field

    def test_price_defaults_to_cost(self):
        """Test a lot without a price is valued at its cost."""
        asset, outcome = create_asset("TTE", AssetType.FUND, 1000, 4.1)
        assert outcome.lot.price == 4.1

    def test_add_lot_appends_to_open_period(self, aapl):
        """Test repeated purchases share one period."""
        assert len(aapl.periods) == 1
        assert len(aapl.periods[0].lots) == 2

    def test_average_cost_over_any_sequence(self):
        """Test avg cost is the quantity-weighted mean of all lots."""
        rng = random.Random(7)
        asset, _ = create_asset("X", AssetType.STOCK, 1, 10)
        lots = [(1.0, 10.0)]
        for _ in range(25):
            amount = round(rng.uniform(0.01, 50), 4)
            cost = round(rng.uniform(1, 500), 2)
            add_lot(asset, amount, cost)
            lots.append((amount, cost))
        expected = sum(a * c for a, c in lots) / sum(a for a, _ in lots)
        assert compute_aggregated_values(asset).avg_cost == pytest.approx(expected)

    @pytest.mark.parametrize("amount", [0, -1, float("nan"), float("inf"), "abc", None])
    def test_invalid_amount_is_rejected_without_change(self, aapl, amount):
        """Test non-positive or non-numeric quantities change nothing."""
        before = aapl.to_record()
        with pytest.raises(ValidationError) as exc:
            add_lot(aapl, amount, 100)
        assert exc.value.field == "amount"
        assert aapl.to_record() == before

    def test_invalid_cost_is_rejected(self, aapl):
        """Test a zero cost is rejected."""
        with pytest.raises(ValidationError) as exc:
            add_lot(aapl, 1, 0)
        assert exc.value.field == "cost"

    def test_edit_lot_in_place(self, aapl, later):
        """Test editing keeps the lot id and changes its figures."""
        lot_id = aapl.periods[0].lots[0].id
        outcome = edit_lot(aapl, lot_id, 20, 90, new_date=later(3))
        assert outcome.lot.id == lot_id
        lot = aapl.periods[0].lots[0]
        assert (lot.amount, lot.cost, lot.added_at) == (20, 90, later(3))
        assert aapl.lots[0].amount == 20

    def test_edit_lot_below_sold_quantity_is_rejected(self, aapl):
        """Test a lot cannot shrink below what was already sold."""
        record_sale(aapl, 12, sale_price=130)
        lot_id = aapl.periods[0].lots[0].id
        before = aapl.to_record()
        with pytest.raises(InsufficientQuantityError):
            edit_lot(aapl, lot_id, 2, 100)
        assert aapl.to_record() == before

    def test_edit_lot_does_not_move_frozen_sale_cost(self, aapl):
        """Test historical P/L is unaffected by later lot edits."""
        sale = record_sale(aapl, 5, sale_price=150).sale
        frozen_cost, frozen_profit = sale.avg_cost, sale.profit
        edit_lot(aapl, aapl.periods[0].lots[0].id, 10, 50)
        assert compute_aggregated_values(aapl).avg_cost != pytest.approx(frozen_cost)
        assert aapl.periods[0].sales[0].avg_cost == pytest.approx(frozen_cost)
        assert aapl.periods[0].sales[0].profit == pytest.approx(frozen_profit)

    def test_delete_lot(self, aapl):
        """Test deleting one of several lots keeps the asset."""
        outcome = delete_lot(aapl, aapl.periods[0].lots[1].id)
        assert not outcome.asset_emptied
        assert compute_aggregated_values(aapl).total_amount == 10

    def test_delete_last_lot_empties_asset(self):
        """Test removing the only lot signals the asset should go."""
        asset, outcome = create_asset("USD", AssetType.CURRENCY, 100, 32)
        result = delete_lot(asset, outcome.lot.id)
        assert result.asset_emptied
        assert asset.periods == []
        assert asset.current_period_id is None

    def test_delete_lot_that_would_oversell_is_rejected(self, aapl):
        """Test a lot backing a sale cannot be removed."""
        record_sale(aapl, 12, sale_price=130)
        with pytest.raises(InsufficientQuantityError):
            delete_lot(aapl, aapl.periods[0].lots[0].id)

    def test_unknown_lot(self, aapl):
        """Test unknown ids raise RecordNotFoundError."""
        with pytest.raises(RecordNotFoundError):
            edit_lot(aapl, "lot_missing", 1, 1)
        with pytest.raises(RecordNotFoundError):
            delete_lot(aapl, "lot_missing")


class TestSales:
    """Tests for disposals."""

    def test_full_cycle_isolates_cost_basis(self, aapl, later):
        """Test buy, sell everything, buy again: the new period starts fresh."""
        valuation = compute_aggregated_values(aapl)
        assert valuation.total_amount == 15
        assert valuation.avg_cost == pytest.approx(106.67, abs=0.01)

        outcome = record_sale(aapl, 15, sale_price=150, date=later(10))
        closed_id = aapl.periods[0].id
        assert outcome.closed_period_id == closed_id
        assert aapl.periods[0].closed_at == later(10)
        assert get_active_period(aapl) is None
        assert outcome.sale.profit == pytest.approx(650, abs=0.01)
        assert compute_aggregated_values(aapl).total_amount == 0

        outcome = add_lot(aapl, 3, 200, date=later(11))
        assert outcome.opened_period_id is not None
        assert outcome.opened_period_id != closed_id
        assert len(aapl.periods) == 2
        valuation = compute_aggregated_values(aapl)
        assert valuation.total_amount == 3
        assert valuation.avg_cost == 200

    def test_oversell_is_rejected_without_change(self, aapl):
        """Test selling 20 of 15 raises and leaves the asset untouched."""
        before = aapl.to_record()
        with pytest.raises(InsufficientQuantityError) as exc:
            record_sale(aapl, 20, sale_price=150)
        assert exc.value.requested == 20
        assert exc.value.available == 15
        assert aapl.to_record() == before

    def test_sale_without_open_period(self, aapl):
        """Test nothing can be sold from a liquidated asset."""
        record_sale(aapl, 15, sale_price=150)
        with pytest.raises(InsufficientQuantityError):
            record_sale(aapl, 1, sale_price=150)

    def test_sale_price_defaults_to_live_price(self, aapl):
        """Test the live price is used when no price is entered."""
        sale = record_sale(aapl, 1, live_price=175).sale
        assert sale.sale_price == 175

    def test_sale_price_falls_back_to_stored_price(self, aapl):
        """Test the last lot price is used without a usable live price."""
        sale = record_sale(aapl, 1, live_price=0).sale
        assert sale.sale_price == 120

    def test_partial_sale_freezes_average_cost(self, aapl):
        """Test the pre-sale average is stored on the sale."""
        sale = record_sale(aapl, 5, sale_price=150).sale
        assert sale.avg_cost == pytest.approx(1600 / 15)
        add_lot(aapl, 10, 300)
        assert aapl.periods[0].sales[0].avg_cost == pytest.approx(1600 / 15)

    def test_float_residue_closes_period(self):
        """Test 0.1 + 0.2 bought then 0.3 sold leaves nothing open."""
        asset, _ = create_asset("GRAM", AssetType.GOLD, 0.1, 2400)
        add_lot(asset, 0.2, 2450)
        outcome = record_sale(asset, 0.3, sale_price=2500)
        assert outcome.closed_period_id is not None
        assert get_active_period(asset) is None

    def test_delete_sale_restores_net_quantity(self, aapl):
        """Test deleting a sale is the inverse of recording it."""
        net_before = compute_aggregated_values(aapl).total_amount
        sale = record_sale(aapl, 6, sale_price=140).sale
        delete_sale(aapl, sale.id)
        assert compute_aggregated_values(aapl).total_amount == pytest.approx(net_before)
        assert aapl.sales == []

    def test_delete_sale_reopens_closed_period(self, aapl):
        """Test undoing a liquidating sale reopens its period."""
        sale = record_sale(aapl, 15, sale_price=150).sale
        outcome = delete_sale(aapl, sale.id)
        assert outcome.reopened_period_id == aapl.periods[0].id
        assert get_active_period(aapl) is aapl.periods[0]
        assert outcome.merge is None

    def test_delete_sale_merges_reopened_period(self, aapl):
        """Test reopening an old period while another is open repairs to one."""
        sale = record_sale(aapl, 15, sale_price=150).sale
        add_lot(aapl, 3, 200)
        old_ids = [p.id for p in aapl.periods]

        outcome = delete_sale(aapl, sale.id)

        assert outcome.merge is not None
        assert outcome.merge.merged_period_ids == old_ids
        assert len(aapl.periods) == 1
        active = get_active_period(aapl)
        assert active.id == outcome.merge.new_period_id
        assert len(active.lots) == 3
        assert compute_aggregated_values(aapl).total_amount == 18
        assert_period_invariants(aapl)

    def test_edit_sale_uses_frozen_cost(self, aapl):
        """Test profit is recomputed with the stored average cost."""
        sale = record_sale(aapl, 5, sale_price=150).sale
        frozen = sale.avg_cost
        outcome = edit_sale(aapl, sale.id, 4, 160)
        assert outcome.sale.avg_cost == frozen
        assert outcome.sale.profit == pytest.approx(4 * 160 - 4 * frozen)

    def test_edit_sale_beyond_holdings_is_rejected(self, aapl):
        """Test a sale cannot grow past the period's purchases."""
        first = record_sale(aapl, 5, sale_price=150).sale
        record_sale(aapl, 5, sale_price=150)
        with pytest.raises(ValidationError):
            edit_sale(aapl, first.id, 11, 150)

    def test_edit_sale_can_close_open_period(self, aapl):
        """Test growing a sale to the full holding closes the period."""
        sale = record_sale(aapl, 5, sale_price=150).sale
        assert edit_sale(aapl, sale.id, 15, 150).closed_period_id == aapl.periods[0].id
        assert get_active_period(aapl) is None

    def test_edit_sale_cannot_reopen_closed_period(self, aapl):
        """Test shrinking a liquidating sale is rejected and changes nothing."""
        sale = record_sale(aapl, 15, sale_price=150).sale
        before = aapl.to_record()
        with pytest.raises(ValidationError) as exc:
            edit_sale(aapl, sale.id, 14, 150)
        assert exc.value.field == "amount"
        assert aapl.to_record() == before
        assert get_active_period(aapl) is None

    def test_unknown_sale(self, aapl):
        """Test unknown sale ids raise RecordNotFoundError."""
        with pytest.raises(RecordNotFoundError):
            delete_sale(aapl, "sale_missing")
        with pytest.raises(RecordNotFoundError):
            edit_sale(aapl, "sale_missing", 1, 1)


class TestClosedPeriodIsolation:
    """Edits to a finished cycle never leak into the current one."""

    @pytest.fixture
    def rebought(self, aapl):
        """AAPL fully sold at 150, then 3 bought again at 200."""
        sale = record_sale(aapl, 15, sale_price=150).sale
        add_lot(aapl, 3, 200)
        return aapl, sale

    def test_lot_edit_in_closed_period_is_rejected(self, rebought):
        """Test growing an old lot keeps the new average cost at 200."""
        asset, _ = rebought
        old_lot = asset.periods[0].lots[0]
        before = asset.to_record()

        with pytest.raises(ValidationError):
            edit_lot(asset, old_lot.id, 12, 100)

        assert asset.to_record() == before
        assert compute_aggregated_values(asset).avg_cost == pytest.approx(200)
        assert len(asset.periods) == 2

    def test_sale_edit_in_closed_period_is_rejected(self, rebought):
        """Test shrinking an old sale keeps the new average cost at 200."""
        asset, sale = rebought
        before = asset.to_record()

        with pytest.raises(ValidationError):
            edit_sale(asset, sale.id, 14, 150)

        assert asset.to_record() == before
        assert compute_aggregated_values(asset).avg_cost == pytest.approx(200)
        assert not asset.periods[0].is_open

    def test_quantity_neutral_edits_are_allowed(self, rebought):
        """Test cost and price corrections keep the old period closed."""
        asset, sale = rebought
        frozen_cost = sale.avg_cost
        old_lot_id = asset.periods[0].lots[0].id

        lot_outcome = edit_lot(asset, old_lot_id, 10, 90)
        sale_outcome = edit_sale(asset, sale.id, 15, 160)

        assert lot_outcome.merge is None
        assert sale_outcome.merge is None
        assert lot_outcome.reopened_period_id is None
        assert not asset.periods[0].is_open
        assert asset.periods[0].lots[0].cost == 90
        assert asset.periods[0].sales[0].profit == pytest.approx(15 * 160 - 15 * frozen_cost)
        valuation = compute_aggregated_values(asset)
        assert valuation.avg_cost == pytest.approx(200)
        assert valuation.total_amount == 3

    def test_deleting_current_cycle_keeps_history(self, rebought):
        """Test removing the only open lot keeps the asset and its closed period."""
        asset, _ = rebought
        outcome = delete_lot(asset, asset.periods[1].lots[0].id)
        assert not outcome.asset_emptied
        assert len(asset.periods) == 1
        assert get_active_period(asset) is None
        assert len(asset.all_sales()) == 1


class TestRandomizedInterleavings:
    """Property checks over random operation sequences."""

    @pytest.mark.parametrize("seed", range(8))
    def test_period_never_oversold(self, seed):
        """Test random buys, sells, edits and deletes keep every invariant."""
        rng = random.Random(seed)
        asset, _ = create_asset("RND", AssetType.STOCK, 5, 10)

        for _ in range(150):
            op = rng.choice(["buy", "sell", "sell", "delete_sale", "edit_sale", "edit_lot"])
            sales = asset.all_sales()
            lots = asset.all_lots()
            try:
                if op == "buy":
                    add_lot(asset, round(rng.uniform(0.1, 10), 3), round(rng.uniform(1, 100), 2))
                elif op == "sell":
                    record_sale(asset, round(rng.uniform(0.1, 12), 3), sale_price=rng.uniform(1, 100))
                elif op == "delete_sale" and sales:
                    delete_sale(asset, rng.choice(sales).id)
                elif op == "edit_sale" and sales:
                    edit_sale(asset, rng.choice(sales).id, round(rng.uniform(0.1, 12), 3), 50)
                elif op == "edit_lot" and lots:
                    edit_lot(asset, rng.choice(lots).id, round(rng.uniform(0.1, 10), 3), 20)
            except ValidationError:
                pass

            assert len([p for p in asset.periods if p.is_open]) <= 1
            for period in asset.periods:
                assert period.sold_amount <= period.purchased_amount + QUANTITY_EPSILON
                assert not math.isnan(period.net_amount)
            assert_period_invariants(asset)
