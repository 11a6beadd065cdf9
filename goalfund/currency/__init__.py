"""
Currency conversion module.

``CurrencyConverter`` is the single interface; ``CachedRateConverter`` adds a
TTL cache with timeout and last-known-value fallback in front of any source
such as ``CoinGeckoRateSource`` or ``StaticRateConverter``.
"""
from .base import CurrencyConverter, StaticRateConverter, normalize_currency
from .cached import CachedRateConverter
from .coingecko import CoinGeckoRateSource

__all__ = [
    "CachedRateConverter",
    "CoinGeckoRateSource",
    "CurrencyConverter",
    "StaticRateConverter",
    "normalize_currency",
]
