"""
Tests for Cebim data models.

Test strategy:
1. Unit tests for models, ledger, periods and aggregation (pure code)
2. Integration tests for service flows (in-memory storage, fake sources)
3. No real HTTP or Google API calls in tests
"""

import pytest
from datetime import datetime, timezone

from cebim.models.portfolio import (
    Asset,
    AssetType,
    Lot,
    Period,
    Sale,
)
from cebim.models.market import MarketSnapshot
from cebim.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)


class TestPortfolioModels:
    """Tests for lot/sale/period/asset Pydantic models."""

    def test_asset_name_is_normalized(self):
        """Test that asset names are stripped and uppercased."""
        asset = Asset(name="  thyao ", type=AssetType.STOCK)
        assert asset.name == "THYAO"

    def test_asset_id_is_coerced_to_string(self):
        """Test that legacy numeric ids become strings."""
        asset = Asset(id=1700000000000, name="USD", type="currency")
        assert asset.id == "1700000000000"
        assert asset.type == AssetType.CURRENCY

    def test_lot_rejects_non_positive_amount(self):
        """Test that a lot must hold a positive quantity."""
        with pytest.raises(ValueError):
            Lot(amount=0, cost=10)

    def test_lot_ids_are_prefixed(self):
        """Test generated record ids carry their kind."""
        assert Lot(amount=1, cost=1).id.startswith("lot_")
        assert Period().id.startswith("period_")

    def test_lot_reads_camel_case_and_epoch_ms(self):
        """Test that stored records with camelCase keys and ms timestamps parse."""
        lot = Lot.model_validate({"amount": 2, "cost": 5, "addedAt": 1700000000000})
        assert lot.added_at.year == 2023
        assert lot.added_at.tzinfo is not None

    def test_naive_datetimes_become_utc(self):
        """Test that naive timestamps are treated as UTC."""
        lot = Lot(amount=1, cost=1, added_at=datetime(2024, 1, 1, 12, 0))
        assert lot.added_at.tzinfo == timezone.utc

    def test_record_uses_camel_case_aliases(self):
        """Test the persisted shape keeps the original keys."""
        asset = Asset(
            name="AAPL",
            type=AssetType.STOCK,
            periods=[Period(lots=[Lot(amount=1, cost=100)])],
        )
        record = asset.to_record()
        assert record["schemaVersion"] == 3
        assert "currentPeriodId" in record
        assert "addedAt" in record["periods"][0]["lots"][0]
        assert record["periods"][0]["closedAt"] is None

    def test_period_amounts(self):
        """Test purchased, sold and net quantities of a period."""
        period = Period(
            lots=[Lot(amount=10, cost=100), Lot(amount=5, cost=120)],
            sales=[Sale(amount=4, sale_price=150, avg_cost=100, profit=200)],
        )
        assert period.purchased_amount == 15
        assert period.sold_amount == 4
        assert period.net_amount == 11
        assert period.is_open

    def test_sale_profit_formula(self):
        """Test profit = amount * salePrice - amount * avgCost."""
        assert Sale.compute_profit(15, 150, 100) == pytest.approx(750)
        assert Sale.compute_profit(2, 80, 100) == pytest.approx(-40)

    def test_asset_type_categories(self):
        """Test category labels and display order."""
        assert AssetType.GOLD.label == "Altın"
        assert AssetType.GOLD.order == 1
        assert AssetType.CURRENCY.order == 4
        ordered = sorted(AssetType, key=lambda t: t.order)
        assert ordered == [AssetType.GOLD, AssetType.STOCK, AssetType.FUND, AssetType.CURRENCY]


class TestMarketModels:
    """Tests for market snapshot model."""

    def test_empty_snapshot_flags_error(self):
        """Test the empty snapshot used when fetching failed outright."""
        snapshot = MarketSnapshot.empty()
        assert snapshot.error is True
        assert snapshot.usd is None
        assert snapshot.specific_prices == {}


class TestAuditModels:
    """Tests for audit event models."""

    def test_audit_event_creation(self):
        """Test AuditEvent creation."""
        event = AuditEvent(
            event_type=AuditEventType.LOT_ADDED,
            description="Lot added",
        )
        assert event.event_type == AuditEventType.LOT_ADDED
        assert event.severity == AuditSeverity.INFO
        assert event.event_id is not None

    def test_audit_event_to_sheets_row(self):
        """Test conversion to the 12-column sheets row."""
        event = AuditEvent(
            event_type=AuditEventType.SALE_RECORDED,
            user_id="user-1",
            entity_id="sale_1",
            description="Sale recorded",
            details={"amount": 5},
        )
        row = event.to_sheets_row()
        assert len(row) == 12
        assert row[2] == "sale_recorded"
        assert row[4] == "user-1"
        assert row[6] == "sale_1"

    def test_audit_builder_periods_merged(self):
        """Test the period repair event is a warning."""
        event = AuditEventBuilder.periods_merged(
            user_id="user-1",
            asset_id="a1",
            merged_period_ids=["p1", "p2"],
            new_period_id="p3",
        )
        assert event.event_type == AuditEventType.PERIODS_MERGED
        assert event.severity == AuditSeverity.WARNING
        assert event.details["merged_period_ids"] == ["p1", "p2"]

    def test_audit_builder_mutation_rejected(self):
        """Test rejected mutations carry the reason."""
        event = AuditEventBuilder.mutation_rejected(
            user_id="user-1",
            asset_id="a1",
            operation="record_sale",
            reason="Insufficient quantity",
        )
        assert event.error_message == "Insufficient quantity"
        assert event.is_user_action is True
