"""
Market Data Services Package

Scrapers for sites without a public price API, and the resolver that maps
held assets to live prices.
"""

from cebim.services.market.interface import (
    FxTableSource,
    InstrumentPriceSource,
    PriceFetchError,
)
from cebim.services.market.midas import MidasClient
from cebim.services.market.tefas import TefasClient
from cebim.services.market.resolver import MarketPriceResolver

__all__ = [
    # Interfaces
    "FxTableSource",
    "InstrumentPriceSource",
    # Exceptions
    "PriceFetchError",
    # Implementations
    "MarketPriceResolver",
    "MidasClient",
    "TefasClient",
]
