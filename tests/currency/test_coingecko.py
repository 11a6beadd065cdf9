"""Tests for the CoinGecko rate source."""

from unittest.mock import MagicMock, patch
from urllib.error import HTTPError, URLError

import orjson
import pytest

from goalfund.config.defaults import RateParams
from goalfund.currency import CoinGeckoRateSource
from goalfund.errors import ConversionUnavailableError


def response(payload) -> MagicMock:
    """A urlopen() result usable as a context manager."""
    resp = MagicMock()
    resp.__enter__.return_value.read.return_value = orjson.dumps(payload)
    return resp


class TestCoinGeckoRateSource:
    """Test rate lookup order and failure handling."""

    def setup_method(self):
        self.source = CoinGeckoRateSource(RateParams(api_key="demo-key"))

    def test_direct_rate(self):
        with patch("goalfund.currency.coingecko.urlopen") as mock_urlopen:
            mock_urlopen.return_value = response({"btc": {"usd": 50000.0}})

            assert self.source.fetch_rate("BTC", "USD") == 50000.0

        request = mock_urlopen.call_args[0][0]
        assert "symbols=btc" in request.full_url
        assert "vs_currencies=usd" in request.full_url
        assert request.get_header("X-cg-demo-api-key") == "demo-key"

    def test_inverse_rate(self):
        with patch("goalfund.currency.coingecko.urlopen") as mock_urlopen:
            mock_urlopen.side_effect = [
                response({}),
                response({"btc": {"usd": 50000.0}}),
            ]

            assert self.source.fetch_rate("USD", "BTC") == pytest.approx(1 / 50000.0)

    def test_cross_rate_via_usdt(self):
        with patch("goalfund.currency.coingecko.urlopen") as mock_urlopen:
            mock_urlopen.side_effect = [
                response({}),
                response({}),
                response({"usdt": {"eur": 0.8, "gbp": 0.7}}),
            ]

            assert self.source.fetch_rate("EUR", "GBP") == pytest.approx(0.7 / 0.8)

    def test_no_rate_anywhere(self):
        with patch("goalfund.currency.coingecko.urlopen") as mock_urlopen:
            mock_urlopen.side_effect = [response({}), response({}), response({"usdt": {"eur": 0.8}})]

            with pytest.raises(ConversionUnavailableError) as exc_info:
                self.source.fetch_rate("EUR", "XYZ")

        assert exc_info.value.to_currency == "XYZ"

    def test_http_error(self):
        with patch("goalfund.currency.coingecko.urlopen") as mock_urlopen:
            mock_urlopen.side_effect = HTTPError("url", 429, "Too Many Requests", {}, None)

            with pytest.raises(ConversionUnavailableError) as exc_info:
                self.source.fetch_rate("BTC", "USD")

        assert exc_info.value.context["status"] == 429

    def test_network_error(self):
        with patch("goalfund.currency.coingecko.urlopen") as mock_urlopen:
            mock_urlopen.side_effect = URLError("no route to host")

            with pytest.raises(ConversionUnavailableError):
                self.source.fetch_rate("BTC", "USD")

    def test_malformed_body(self):
        bad = MagicMock()
        bad.__enter__.return_value.read.return_value = b"<html>"
        with patch("goalfund.currency.coingecko.urlopen", return_value=bad):
            with pytest.raises(ConversionUnavailableError):
                self.source.fetch_rate("BTC", "USD")

    def test_same_currency_makes_no_request(self):
        with patch("goalfund.currency.coingecko.urlopen") as mock_urlopen:
            assert self.source.fetch_rate("usd", "USD") == 1.0

        mock_urlopen.assert_not_called()
