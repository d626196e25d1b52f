"""
Abstract Market Price Sources

DESIGN DECISION: The resolver only knows these two interfaces.
Concrete sources scrape sites that have no public API and break without
notice, so they must be swappable (and replaceable by fakes in tests).
"""

from abc import ABC, abstractmethod
from typing import Optional


class PriceFetchError(Exception):
    """A price could not be fetched or parsed. Never fatal for a batch."""

    def __init__(self, source: str, message: str, symbol: Optional[str] = None):
        self.source = source
        self.symbol = symbol
        super().__init__(message)


class FxTableSource(ABC):
    """Source of the FX/gold table (USD, EUR, GOLD in home currency)."""

    name: str = "fx"

    @abstractmethod
    def fetch_fx_table(self) -> dict[str, Optional[float]]:
        """
        Fetch current FX rates.

        Returns:
            Dict with at least the keys USD, EUR and GOLD. A key whose
            row is missing maps to None.

        Raises:
            PriceFetchError: if the table cannot be fetched or parsed
        """
        pass


class InstrumentPriceSource(ABC):
    """Source of per-instrument prices (one request per symbol)."""

    name: str = "instrument"

    @abstractmethod
    def fetch_instrument_price(self, symbol: str) -> Optional[float]:
        """
        Fetch the current unit price of one instrument.

        Returns:
            The price, or None if the source does not list the symbol

        Raises:
            PriceFetchError: if the request or parsing fails
        """
        pass
