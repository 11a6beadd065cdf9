"""Tests for the static and caching currency converters."""

import threading
from unittest.mock import Mock

import pytest

from goalfund.currency import CachedRateConverter, StaticRateConverter
from goalfund.errors import ConversionUnavailableError


class FakeTime:
    """Manually advanced monotonic clock."""

    def __init__(self):
        self.value = 1000.0

    def __call__(self) -> float:
        return self.value


class TestStaticRateConverter:
    """Test the fixed rate table."""

    def test_direct_and_inverse_rates(self):
        converter = StaticRateConverter({("btc", "usd"): 50000.0})

        assert converter.fetch_rate("BTC", "USD") == 50000.0
        assert converter.fetch_rate("USD", "BTC") == pytest.approx(1 / 50000.0)
        assert converter.convert(0.5, "BTC", "USD") == pytest.approx(25000.0)

    def test_same_currency(self):
        converter = StaticRateConverter()

        assert converter.fetch_rate("usd", " USD ") == 1.0
        assert converter.convert(42.0, "EUR", "eur") == 42.0

    def test_unknown_pair(self):
        converter = StaticRateConverter({("BTC", "USD"): 50000.0})

        with pytest.raises(ConversionUnavailableError) as exc_info:
            converter.fetch_rate("JPY", "USD")

        assert exc_info.value.from_currency == "JPY"
        assert exc_info.value.to_currency == "USD"

    def test_rejects_non_positive_rate(self):
        with pytest.raises(ValueError):
            StaticRateConverter({("BTC", "USD"): 0.0})

    def test_remove_rate(self):
        converter = StaticRateConverter({("BTC", "USD"): 50000.0})
        converter.remove_rate("btc", "usd")

        with pytest.raises(ConversionUnavailableError):
            converter.fetch_rate("BTC", "USD")


class TestCachedRateConverter:
    """Test TTL caching and fallback behaviour."""

    def setup_method(self):
        self.source = Mock()
        self.source.fetch_rate.return_value = 50000.0
        self.time = FakeTime()
        self.converter = CachedRateConverter(
            self.source, ttl_seconds=60, timeout_seconds=1.0, time_source=self.time
        )

    def teardown_method(self):
        self.converter.shutdown()

    def test_fresh_rate_served_from_cache(self):
        assert self.converter.fetch_rate("BTC", "USD") == 50000.0
        self.time.value += 30
        assert self.converter.fetch_rate("btc", "usd") == 50000.0

        self.source.fetch_rate.assert_called_once_with("BTC", "USD")

    def test_stale_rate_refetched(self):
        self.converter.fetch_rate("BTC", "USD")
        self.source.fetch_rate.return_value = 51000.0
        self.time.value += 61

        assert self.converter.fetch_rate("BTC", "USD") == 51000.0
        assert self.source.fetch_rate.call_count == 2

    def test_failure_falls_back_to_last_known(self):
        self.converter.fetch_rate("BTC", "USD")
        self.source.fetch_rate.side_effect = ConversionUnavailableError("API down")
        self.time.value += 120

        assert self.converter.fetch_rate("BTC", "USD") == 50000.0

    def test_invalid_rate_treated_as_failure(self):
        self.converter.fetch_rate("BTC", "USD")
        self.source.fetch_rate.return_value = float("nan")
        self.time.value += 120

        assert self.converter.fetch_rate("BTC", "USD") == 50000.0
        assert self.converter.get_cached("BTC", "USD").rate == 50000.0

    def test_failure_without_cached_value_raises(self):
        self.source.fetch_rate.side_effect = RuntimeError("connection reset")

        with pytest.raises(ConversionUnavailableError) as exc_info:
            self.converter.fetch_rate("BTC", "USD")

        assert exc_info.value.from_currency == "BTC"
        assert "connection reset" in str(exc_info.value)

    def test_same_currency_skips_source(self):
        assert self.converter.fetch_rate("USD", "usd") == 1.0
        self.source.fetch_rate.assert_not_called()

    def test_async_fetch(self):
        future = self.converter.fetch_rate_async("BTC", "USD")

        assert future.result(timeout=5) == 50000.0

    def test_clear_cache(self):
        self.converter.fetch_rate("BTC", "USD")
        self.converter.clear_cache()

        assert self.converter.get_cached("BTC", "USD") is None


class TestCachedRateTimeout:
    """Test bounded fetch time."""

    def test_slow_source_times_out(self):
        release = threading.Event()
        source = Mock()
        source.fetch_rate.side_effect = lambda *_: release.wait(5) and 50000.0
        converter = CachedRateConverter(source, timeout_seconds=0.05)

        try:
            with pytest.raises(ConversionUnavailableError) as exc_info:
                converter.fetch_rate("BTC", "USD")
            assert "timed out" in str(exc_info.value)
        finally:
            release.set()
            converter.shutdown()
