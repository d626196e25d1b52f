"""Market data snapshot models."""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field

from cebim.models.portfolio import utc_now


class MarketSnapshot(BaseModel):
    """
    Prices gathered in one refresh cycle.

    FX and gold come from a single table; stocks and funds are fetched
    one request per held instrument. A symbol that failed is listed in
    `failed_symbols` and simply absent from `specific_prices`.
    """

    usd: Optional[float] = None
    eur: Optional[float] = None
    gold: Optional[float] = None
    specific_prices: dict[str, float] = Field(default_factory=dict)
    failed_symbols: list[str] = Field(default_factory=list)
    last_updated: datetime = Field(default_factory=utc_now)
    error: bool = False

    @classmethod
    def empty(cls) -> "MarketSnapshot":
        return cls(error=True)
