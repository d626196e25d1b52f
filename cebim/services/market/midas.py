"""
Midas Market Data Client

The vendor's website exposes two JSON tables used by its own widgets:
- return=doviz : FX rows (USDTRY, EURTRY) and gram gold (GAUTRY)
- return=table : every listed equity with its last trade price

Both are plain GET endpoints without authentication. The body is
sometimes a JSON string that itself contains JSON, so it is decoded
twice when needed.

The equity table is large and changes at most once a minute; it is
fetched once and reused for `stock_cache_seconds`. The cache lives on the
client instance, not at module level.
"""

import json
import time
from typing import Any, Optional

import requests
import structlog

from cebim.config import MarketDataSettings, get_settings
from cebim.services.market.interface import (
    FxTableSource,
    InstrumentPriceSource,
    PriceFetchError,
)


logger = structlog.get_logger(__name__)

# Table code -> key used throughout the application
FX_CODES = {
    "USDTRY": "USD",
    "EURTRY": "EUR",
    "GAUTRY": "GOLD",
}


def decode_table(text: str) -> list[dict[str, Any]]:
    """
    Decode a vendor table body into a list of rows.

    Raises:
        ValueError: if the body is not a JSON array (after unwrapping)
    """
    data = json.loads(text)
    if isinstance(data, str):
        data = json.loads(data)
    if not isinstance(data, list):
        raise ValueError(f"Expected a JSON array, got {type(data).__name__}")
    return data


def _last_price(row: dict[str, Any]) -> Optional[float]:
    value = row.get("Last")
    # bool is an int subclass; the vendor never sends one for a price
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return float(value)
    return None


class MidasClient(FxTableSource, InstrumentPriceSource):
    """
    Client for the vendor's FX and equity tables.

    Serves as both the FX table source and the stock price source.
    """

    name = "midas"

    def __init__(
        self,
        settings: Optional[MarketDataSettings] = None,
        session: Optional[requests.Session] = None,
    ):
        self._settings = settings or get_settings().market
        self._session = session or requests.Session()
        self._session.headers.setdefault("User-Agent", self._settings.user_agent)
        self._stock_rows: list[dict[str, Any]] = []
        self._stock_fetched_at: float = 0.0

    def _get_table(self, url: str) -> list[dict[str, Any]]:
        try:
            resp = self._session.get(url, timeout=self._settings.request_timeout_seconds)
            resp.raise_for_status()
            return decode_table(resp.text)
        except requests.RequestException as e:
            raise PriceFetchError(self.name, f"Request to {url} failed: {e}")
        except ValueError as e:
            raise PriceFetchError(self.name, f"Invalid JSON from {url}: {e}")

    # -------------------------------------------------------------------------
    # FX
    # -------------------------------------------------------------------------

    def fetch_fx_table(self) -> dict[str, Optional[float]]:
        """Fetch USD, EUR and gram gold rates in TRY."""
        rows = self._get_table(self._settings.midas_fx_url)
        rates: dict[str, Optional[float]] = {key: None for key in FX_CODES.values()}
        for row in rows:
            key = FX_CODES.get(row.get("Code"))
            if key is not None:
                rates[key] = _last_price(row)
        logger.debug("fx_table_fetched", entries=len(rows), rates=rates)
        return rates

    # -------------------------------------------------------------------------
    # Equities
    # -------------------------------------------------------------------------

    def fetch_stock_table(self, force: bool = False) -> list[dict[str, Any]]:
        """Return the equity table, refetching when the cached copy is stale."""
        now = time.monotonic()
        fresh = now - self._stock_fetched_at < self._settings.stock_cache_seconds
        if self._stock_rows and fresh and not force:
            return self._stock_rows

        rows = self._get_table(self._settings.midas_stocks_url)
        self._stock_rows = rows
        self._stock_fetched_at = now
        logger.debug("stock_table_fetched", entries=len(rows))
        return rows

    def fetch_instrument_price(self, symbol: str) -> Optional[float]:
        """Look a ticker up in the (cached) equity table."""
        code = symbol.strip().upper()
        for row in self.fetch_stock_table():
            if row.get("Code") == code:
                return _last_price(row)
        return None

    def search_symbols(self, query: str, limit: int = 5) -> list[dict[str, str]]:
        """
        Autocomplete tickers by prefix.

        The table has no company names, so the code doubles as the name.
        """
        prefix = query.strip().upper()
        if not prefix:
            return []
        matches = []
        for row in self.fetch_stock_table():
            code = row.get("Code")
            if isinstance(code, str) and code.startswith(prefix):
                matches.append({"code": code, "name": code})
                if len(matches) >= limit:
                    break
        return matches
