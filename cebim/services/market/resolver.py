"""
Market Price Resolver

Produces a current unit price for each held asset, polymorphic over the
asset type:

- currency : substring match on the asset name against the FX table
             (USD / DOLAR -> USD, EUR / EURO -> EUR)
- gold     : the table's fixed GOLD key
- stock    : equity source, looked up by uppercased name
- fund     : fund source, looked up by uppercased name

FAILURE POLICY: a failing instrument yields "unknown" for that instrument
only. Callers fall back to the last stored lot price whenever the live
price is missing or not positive.
"""

from typing import Iterable, Optional

import structlog

from cebim.models.market import MarketSnapshot
from cebim.models.portfolio import Asset, AssetType
from cebim.services.market.interface import (
    FxTableSource,
    InstrumentPriceSource,
)


logger = structlog.get_logger(__name__)


class MarketPriceResolver:
    """
    Gathers a MarketSnapshot for a set of assets and maps assets to prices.

    Per-instrument requests are issued sequentially, one per distinct
    held stock or fund.
    """

    def __init__(
        self,
        fx_source: FxTableSource,
        stock_source: Optional[InstrumentPriceSource] = None,
        fund_source: Optional[InstrumentPriceSource] = None,
    ):
        self._fx_source = fx_source
        self._instrument_sources: dict[AssetType, InstrumentPriceSource] = {}
        if stock_source is not None:
            self._instrument_sources[AssetType.STOCK] = stock_source
        if fund_source is not None:
            self._instrument_sources[AssetType.FUND] = fund_source

    def _fetch_one(self, source: InstrumentPriceSource, symbol: str) -> Optional[float]:
        try:
            price = source.fetch_instrument_price(symbol)
        except Exception as e:
            logger.warning(
                "price_fetch_failed",
                source=source.name,
                symbol=symbol,
                error_type=type(e).__name__,
                error=str(e),
            )
            return None
        if price is None or price <= 0:
            return None
        return float(price)

    def fetch_market_data(self, assets: Iterable[Asset] = ()) -> MarketSnapshot:
        """
        Fetch the FX table and a price for every held stock and fund.

        Never raises for source failures: an FX failure leaves usd/eur/gold
        empty and sets `error`; an instrument failure is listed in
        `failed_symbols`.
        """
        snapshot = MarketSnapshot()

        try:
            rates = self._fx_source.fetch_fx_table()
            snapshot.usd = rates.get("USD")
            snapshot.eur = rates.get("EUR")
            snapshot.gold = rates.get("GOLD")
        except Exception as e:
            logger.warning("fx_fetch_failed", source=self._fx_source.name, error=str(e))
            snapshot.error = True

        seen: set[str] = set()
        for asset in assets:
            source = self._instrument_sources.get(asset.type)
            symbol = asset.name.upper()
            if source is None or not symbol or symbol in seen:
                continue
            seen.add(symbol)

            price = self._fetch_one(source, symbol)
            if price is None:
                snapshot.failed_symbols.append(symbol)
            else:
                snapshot.specific_prices[symbol] = price

        logger.info(
            "market_data_fetched",
            priced=len(snapshot.specific_prices),
            failed=snapshot.failed_symbols,
            fx_error=snapshot.error,
        )
        return snapshot

    def search_symbols(self, query: str, limit: int = 5) -> list[dict[str, str]]:
        """Ticker autocomplete through the equity source, when it supports it."""
        search = getattr(self._instrument_sources.get(AssetType.STOCK), "search_symbols", None)
        if search is None:
            return []
        try:
            return search(query, limit=limit)
        except Exception as e:
            logger.warning("symbol_search_failed", query=query, error=str(e))
            return []

    @staticmethod
    def get_price(asset: Asset, snapshot: Optional[MarketSnapshot]) -> Optional[float]:
        """
        Live price of an asset from a snapshot.

        Returns:
            A positive price, or None when the snapshot has nothing usable
        """
        if snapshot is None:
            return None

        name = asset.name.upper()
        price: Optional[float] = None

        if asset.type == AssetType.CURRENCY:
            if "USD" in name or "DOLAR" in name:
                price = snapshot.usd
            elif "EUR" in name or "EURO" in name:
                price = snapshot.eur
        elif asset.type == AssetType.GOLD:
            price = snapshot.gold
        elif asset.type in (AssetType.STOCK, AssetType.FUND):
            price = snapshot.specific_prices.get(name)

        if price is None or price <= 0:
            return None
        return price
