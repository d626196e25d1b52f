"""
Portfolio Data Models for Cebim

These models define the persisted shape of every tracked instrument:
an Asset owns a list of holding Periods, each Period owns the purchase
Lots and the Sales made while it was open.

DESIGN DECISION: Python attributes are snake_case, but records exchanged
with the store keep the original camelCase keys (addedAt, salePrice,
closedAt, ...). Aliases keep old records readable without a rewrite.

Quantities and prices are floats because that is what the stored JSON
records contain. Comparisons of quantities go through QUANTITY_EPSILON.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional
from uuid import uuid4

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
)


# Current record shape written by this package.
SCHEMA_VERSION = 3

# Float residue below this is treated as zero quantity.
QUANTITY_EPSILON = 1e-9

# Longest asset name the store accepts.
ASSET_NAME_MAX_LENGTH = 50


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def new_id(prefix: str) -> str:
    """Generate a record id such as ``lot_3f2a9c0d1b7e``."""
    return f"{prefix}_{uuid4().hex[:12]}"


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


# =============================================================================
# ENUMS
# =============================================================================

class AssetType(str, Enum):
    """
    Instrument families the portfolio can hold.

    Each family is priced by a different market source.
    """
    GOLD = "gold"
    STOCK = "stock"
    FUND = "fund"
    CURRENCY = "currency"

    @property
    def label(self) -> str:
        return CATEGORY_CONFIG[self]["label"]

    @property
    def order(self) -> int:
        return CATEGORY_CONFIG[self]["order"]


CATEGORY_CONFIG: dict[AssetType, dict[str, Any]] = {
    AssetType.GOLD: {"label": "Altın", "order": 1},
    AssetType.STOCK: {"label": "Hisse Senedi", "order": 2},
    AssetType.FUND: {"label": "Yatırım Fonu", "order": 3},
    AssetType.CURRENCY: {"label": "Döviz", "order": 4},
}


class PriceSource(str, Enum):
    """Where the current price of a valuation came from."""
    LIVE = "live"
    STORED = "stored"
    NONE = "none"


# =============================================================================
# LEDGER RECORDS
# =============================================================================

class _Record(BaseModel):
    """Common config for persisted records."""
    model_config = ConfigDict(
        populate_by_name=True,
        validate_assignment=True,
        extra="ignore",
    )


class Lot(_Record):
    """
    One purchase event.

    `cost` is the unit cost basis at purchase time and never changes
    unless the user edits the lot. `price` is the last-known market price
    and is refreshed by price updates.
    """
    id: str = Field(default_factory=lambda: new_id("lot"))
    amount: float = Field(..., gt=0, description="Quantity purchased")
    cost: float = Field(..., ge=0, description="Unit cost basis")
    price: float = Field(default=0.0, ge=0, description="Last-known unit price")
    added_at: Optional[datetime] = Field(default_factory=utc_now, alias="addedAt")

    @field_validator("id", mode="before")
    @classmethod
    def coerce_id(cls, v: Any) -> str:
        return str(v)

    @field_validator("added_at")
    @classmethod
    def ensure_utc(cls, v: Optional[datetime]) -> Optional[datetime]:
        return _as_utc(v)


class Sale(_Record):
    """
    One disposal event.

    CRITICAL: `avg_cost` is captured when the sale is recorded and is
    never recalculated. Later lot edits must not move historical P/L.
    """
    id: str = Field(default_factory=lambda: new_id("sale"))
    amount: float = Field(..., gt=0, description="Quantity sold")
    sale_price: float = Field(..., ge=0, alias="salePrice")
    avg_cost: float = Field(..., ge=0, alias="avgCost")
    profit: float
    sold_at: Optional[datetime] = Field(default_factory=utc_now, alias="soldAt")

    @field_validator("id", mode="before")
    @classmethod
    def coerce_id(cls, v: Any) -> str:
        return str(v)

    @field_validator("sold_at")
    @classmethod
    def ensure_utc(cls, v: Optional[datetime]) -> Optional[datetime]:
        return _as_utc(v)

    @staticmethod
    def compute_profit(amount: float, sale_price: float, avg_cost: float) -> float:
        return amount * sale_price - amount * avg_cost


class Period(_Record):
    """
    A maximal contiguous span of ownership.

    Open while `closed_at` is None. Once closed, its lots and sales are
    history and never feed the cost basis of a later period.
    """
    id: str = Field(default_factory=lambda: new_id("period"))
    lots: list[Lot] = Field(default_factory=list)
    sales: list[Sale] = Field(default_factory=list)
    closed_at: Optional[datetime] = Field(default=None, alias="closedAt")

    @field_validator("closed_at")
    @classmethod
    def ensure_utc(cls, v: Optional[datetime]) -> Optional[datetime]:
        return _as_utc(v)

    @property
    def is_open(self) -> bool:
        return self.closed_at is None

    @property
    def purchased_amount(self) -> float:
        return sum(lot.amount for lot in self.lots)

    @property
    def sold_amount(self) -> float:
        return sum(sale.amount for sale in self.sales)

    @property
    def net_amount(self) -> float:
        return self.purchased_amount - self.sold_amount


class Asset(_Record):
    """
    One tracked instrument.

    `lots` and `sales` are the legacy mirror of the active period for
    consumers that predate periods. They are rewritten after every ledger
    mutation; the periods list is the source of truth.
    """
    id: str = Field(default_factory=lambda: str(uuid4()))
    name: str = Field(..., min_length=1, max_length=ASSET_NAME_MAX_LENGTH)
    type: AssetType
    schema_version: int = Field(default=SCHEMA_VERSION, alias="schemaVersion")
    current_period_id: Optional[str] = Field(default=None, alias="currentPeriodId")
    periods: list[Period] = Field(default_factory=list)

    # Legacy mirror of the active period
    lots: list[Lot] = Field(default_factory=list)
    sales: list[Sale] = Field(default_factory=list)

    @field_validator("id", mode="before")
    @classmethod
    def coerce_id(cls, v: Any) -> str:
        return str(v)

    @field_validator("name")
    @classmethod
    def normalize_name(cls, v: str) -> str:
        return v.strip().upper()

    def to_record(self) -> dict[str, Any]:
        """Serialize to the JSON record shape used by the store."""
        return self.model_dump(mode="json", by_alias=True)

    def all_lots(self) -> list[Lot]:
        return [lot for period in self.periods for lot in period.lots]

    def all_sales(self) -> list[Sale]:
        return [sale for period in self.periods for sale in period.sales]


# =============================================================================
# DERIVED FIGURES
# =============================================================================

class AssetValuation(BaseModel):
    """
    Holding metrics of one asset, computed from its active period.

    All figures are zero when the asset has no open period.
    """
    asset_id: str
    name: str
    type: AssetType
    total_amount: float = 0.0
    avg_cost: float = 0.0
    current_price: float = 0.0
    total_value: float = 0.0
    total_profit: float = 0.0
    profit_percentage: float = 0.0
    price_source: PriceSource = PriceSource.NONE

    # Profit already realised by sales, across every period
    realized_profit: float = 0.0

    @property
    def total_cost(self) -> float:
        return self.total_amount * self.avg_cost


class PeriodMerge(BaseModel):
    """Record of an open-period repair performed on an asset."""
    asset_id: str
    merged_period_ids: list[str]
    new_period_id: str
    merged_at: datetime = Field(default_factory=utc_now)
