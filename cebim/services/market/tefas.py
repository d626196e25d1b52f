"""
TEFAS Fund Price Client

The government fund platform publishes no price API. Each fund's analysis
page embeds a Highcharts price chart whose series data is the daily price
history; the last value is the latest published price.

Extraction steps (each may fail independently, all raise PriceFetchError):
1. Find the <script> block that mentions the chart marker
2. Find `series:` in it, then the first `"data":` after it
3. Take the bracketed array and parse its last number
"""

import re
from typing import Optional

import requests
import structlog

from cebim.config import MarketDataSettings, get_settings
from cebim.services.market.interface import InstrumentPriceSource, PriceFetchError


logger = structlog.get_logger(__name__)

SCRIPT_PATTERN = re.compile(r"<script[^>]*>([\s\S]*?)</script>", re.IGNORECASE)
DATA_PATTERN = re.compile(r'"?data"?\s*:\s*\[([^\]]*)\]')


def extract_last_price(html: str, marker: str) -> float:
    """
    Pull the latest price out of a fund analysis page.

    Raises:
        ValueError: describing the step that failed
    """
    chart_script = None
    for match in SCRIPT_PATTERN.finditer(html):
        if marker in match.group(1):
            chart_script = match.group(1)
            break
    if chart_script is None:
        raise ValueError("chart data not found")

    series_index = chart_script.find("series:")
    if series_index == -1:
        raise ValueError("series not found")

    data_match = DATA_PATTERN.search(chart_script, series_index)
    if data_match is None:
        raise ValueError("data array not found")

    values = [v.strip() for v in data_match.group(1).split(",") if v.strip()]
    if not values:
        raise ValueError("no price data found")
    try:
        return float(values[-1])
    except ValueError:
        raise ValueError(f"last data point is not a number: {values[-1]!r}")


class TefasClient(InstrumentPriceSource):
    """Per-fund price scraper. One HTTP request per fund code."""

    name = "tefas"

    def __init__(
        self,
        settings: Optional[MarketDataSettings] = None,
        session: Optional[requests.Session] = None,
    ):
        self._settings = settings or get_settings().market
        self._session = session or requests.Session()
        self._session.headers.setdefault("User-Agent", self._settings.user_agent)

    def fetch_instrument_price(self, symbol: str) -> Optional[float]:
        code = symbol.strip().upper()
        if not code:
            raise PriceFetchError(self.name, "Fund code is required", symbol=symbol)

        url = self._settings.tefas_fund_url.format(code=code)
        try:
            resp = self._session.get(url, timeout=self._settings.request_timeout_seconds)
            resp.raise_for_status()
        except requests.RequestException as e:
            raise PriceFetchError(self.name, f"Request for {code} failed: {e}", symbol=code)

        try:
            price = extract_last_price(resp.text, self._settings.tefas_chart_marker)
        except ValueError as e:
            raise PriceFetchError(self.name, f"{code}: {e}", symbol=code)

        logger.debug("fund_price_fetched", code=code, price=price)
        return price
