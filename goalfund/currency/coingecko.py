"""HTTP exchange rate source backed by the CoinGecko simple price API."""

import socket
from typing import Any, Optional
from urllib.error import HTTPError, URLError
from urllib.parse import urlencode
from urllib.request import Request, urlopen

import orjson
import structlog

from ..config.defaults import RateParams
from ..errors import ConversionUnavailableError
from .base import CurrencyConverter, normalize_currency

logger = structlog.get_logger(__name__)


class CoinGeckoRateSource(CurrencyConverter):
    """
    Fetches rates from ``/simple/price``.

    Lookup order: the direct pair, the inverse pair, then a cross rate via
    the configured cross currency (USDT by default).
    """

    def __init__(self, params: Optional[RateParams] = None):
        self.params = params or RateParams()
        self.logger = logger

    def fetch_rate(self, from_currency: str, to_currency: str) -> float:
        source = normalize_currency(from_currency).lower()
        target = normalize_currency(to_currency).lower()
        if source == target:
            return 1.0

        direct = self._lookup(self._get_prices([source], [target]), source, target)
        if direct:
            return direct

        inverse = self._lookup(self._get_prices([target], [source]), target, source)
        if inverse:
            return 1.0 / inverse

        cross = self.params.cross_currency.lower()
        prices = self._get_prices([cross], [source, target])
        per_source = self._lookup(prices, cross, source)
        per_target = self._lookup(prices, cross, target)
        if per_source and per_target:
            return per_target / per_source

        raise ConversionUnavailableError(
            f"CoinGecko has no rate for {source}->{target}",
            from_currency=source.upper(),
            to_currency=target.upper()
        )

    def _get_prices(self, symbols: list[str], vs_currencies: list[str]) -> dict[str, Any]:
        query = urlencode({
            "symbols": ",".join(symbols),
            "vs_currencies": ",".join(vs_currencies),
        })
        url = f"{self.params.api_base_url.rstrip('/')}/simple/price?{query}"

        headers = {
            "accept": "application/json",
            "User-Agent": "goalfund/0.1",
        }
        if self.params.api_key:
            headers["x-cg-demo-api-key"] = self.params.api_key

        req = Request(url, headers=headers, method="GET")

        try:
            with urlopen(req, timeout=self.params.fetch_timeout_seconds) as response:
                body = response.read()
        except HTTPError as e:
            raise ConversionUnavailableError(
                f"HTTP {e.code} from rate API",
                context={"url": url, "status": e.code}
            ) from e
        except (URLError, socket.timeout) as e:
            raise ConversionUnavailableError(
                f"Rate API unreachable: {e}",
                context={"url": url}
            ) from e

        try:
            data = orjson.loads(body)
        except orjson.JSONDecodeError as e:
            raise ConversionUnavailableError(
                "Malformed rate API response",
                context={"url": url}
            ) from e

        self.logger.debug("Fetched prices", symbols=symbols, vs_currencies=vs_currencies)
        return data if isinstance(data, dict) else {}

    @staticmethod
    def _lookup(prices: dict[str, Any], symbol: str, vs_currency: str) -> Optional[float]:
        value = prices.get(symbol, {})
        if not isinstance(value, dict):
            return None
        rate = value.get(vs_currency)
        if isinstance(rate, (int, float)) and rate > 0:
            return float(rate)
        return None
