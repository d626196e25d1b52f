"""
Shared test fixtures.

No test talks to the network: HTTP sources get a FakeSession, the
resolver gets in-process fake sources, and storage is in memory or a
fake gspread worksheet.
"""

from datetime import datetime, timedelta, timezone
from typing import Optional, Union

import pytest
import requests

from cebim.audit import AuditLogger
from cebim.config import MarketDataSettings
from cebim.orchestrator import PortfolioContext, PortfolioService
from cebim.services.market import (
    FxTableSource,
    InstrumentPriceSource,
    MarketPriceResolver,
    PriceFetchError,
)
from cebim.services.storage import InMemoryAuditStorage, InMemoryRecordStorage


# =============================================================================
# HTTP fakes
# =============================================================================

class FakeResponse:
    def __init__(self, text: str = "", status_code: int = 200):
        self.text = text
        self.status_code = status_code

    def raise_for_status(self) -> None:
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} Error")


class FakeSession:
    """Stands in for requests.Session; maps URL -> response or exception."""

    def __init__(self, responses: Optional[dict[str, Union[FakeResponse, Exception]]] = None):
        self.responses = responses or {}
        self.headers: dict[str, str] = {}
        self.calls: list[str] = []

    def get(self, url: str, timeout: Optional[float] = None) -> FakeResponse:
        self.calls.append(url)
        response = self.responses.get(url)
        if response is None:
            return FakeResponse("Not Found", status_code=404)
        if isinstance(response, Exception):
            raise response
        return response


# =============================================================================
# Market source fakes
# =============================================================================

class FakeFxSource(FxTableSource):
    name = "fake_fx"

    def __init__(self, rates: Optional[dict] = None, fail: bool = False):
        self.rates = rates if rates is not None else {"USD": 32.5, "EUR": 35.0, "GOLD": 2450.0}
        self.fail = fail
        self.calls = 0

    def fetch_fx_table(self):
        self.calls += 1
        if self.fail:
            raise PriceFetchError(self.name, "FX table down")
        return dict(self.rates)


class FakeInstrumentSource(InstrumentPriceSource):
    name = "fake_instrument"

    def __init__(self, prices: Optional[dict[str, float]] = None, failing: Optional[set[str]] = None):
        self.prices = prices or {}
        self.failing = failing or set()
        self.calls: list[str] = []

    def fetch_instrument_price(self, symbol: str):
        self.calls.append(symbol)
        if symbol in self.failing:
            raise PriceFetchError(self.name, f"{symbol} unavailable", symbol=symbol)
        return self.prices.get(symbol)

    def search_symbols(self, query: str, limit: int = 5):
        return [
            {"code": code, "name": code}
            for code in sorted(self.prices) if code.startswith(query.upper())
        ][:limit]


# =============================================================================
# Fixtures
# =============================================================================

@pytest.fixture
def market_settings() -> MarketDataSettings:
    return MarketDataSettings()


@pytest.fixture
def base_time() -> datetime:
    return datetime(2024, 1, 15, 10, 0, tzinfo=timezone.utc)


@pytest.fixture
def later(base_time):
    """later(n) -> base_time + n days"""
    return lambda days: base_time + timedelta(days=days)


@pytest.fixture
def fx_source() -> FakeFxSource:
    return FakeFxSource()


@pytest.fixture
def stock_source() -> FakeInstrumentSource:
    return FakeInstrumentSource(prices={"AAPL": 180.0, "THYAO": 290.5})


@pytest.fixture
def fund_source() -> FakeInstrumentSource:
    return FakeInstrumentSource(prices={"TTE": 4.25})


@pytest.fixture
def resolver(fx_source, stock_source, fund_source) -> MarketPriceResolver:
    return MarketPriceResolver(fx_source, stock_source=stock_source, fund_source=fund_source)


@pytest.fixture
def record_storage() -> InMemoryRecordStorage:
    return InMemoryRecordStorage()


@pytest.fixture
def audit_storage() -> InMemoryAuditStorage:
    return InMemoryAuditStorage()


@pytest.fixture
def service(record_storage, audit_storage, resolver) -> PortfolioService:
    context = PortfolioContext(
        user_id="user-1",
        storage=record_storage,
        price_resolver=resolver,
        audit_logger=AuditLogger(audit_storage, user_id="user-1"),
    )
    return PortfolioService(context)
