"""
Caching converter with bounded fetch time and last-known-value fallback.

Rates are cached per (from, to) pair. A fresh cache entry is returned
directly; otherwise the wrapped source is queried on a worker thread with a
timeout. When the query fails or times out the last known rate is returned,
and only when no rate was ever known does the call raise
ConversionUnavailableError.
"""

import math
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FuturesTimeoutError
from dataclasses import dataclass
from typing import Callable, Optional

import structlog

from ..errors import ConversionUnavailableError
from .base import CurrencyConverter, normalize_currency

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class CachedRate:
    """A rate and the monotonic time it was fetched."""
    rate: float
    fetched_at: float


class CachedRateConverter(CurrencyConverter):
    """TTL cache in front of another converter."""

    def __init__(
        self,
        source: CurrencyConverter,
        ttl_seconds: float = 300.0,
        timeout_seconds: float = 10.0,
        time_source: Callable[[], float] = time.monotonic,
        max_workers: int = 4
    ):
        self.source = source
        self.ttl_seconds = ttl_seconds
        self.timeout_seconds = timeout_seconds
        self.logger = logger
        self._time = time_source
        self._cache: dict[tuple[str, str], CachedRate] = {}
        self._lock = threading.Lock()
        self._fetch_executor = ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="rate-fetch"
        )
        self._async_executor = ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="rate-request"
        )

    def fetch_rate(self, from_currency: str, to_currency: str) -> float:
        source, target = normalize_currency(from_currency), normalize_currency(to_currency)
        if source == target:
            return 1.0

        key = (source, target)
        cached = self.get_cached(source, target)
        if cached is not None and self._time() - cached.fetched_at < self.ttl_seconds:
            return cached.rate

        rate, failure = self._fetch_and_cache(key)
        if failure is None:
            return rate

        if cached is not None:
            self.logger.warning(
                "Rate fetch failed, using last known rate",
                from_currency=source,
                to_currency=target,
                rate=cached.rate,
                age_seconds=round(self._time() - cached.fetched_at, 1),
                error=failure
            )
            return cached.rate

        self.logger.error(
            "Rate unavailable",
            from_currency=source,
            to_currency=target,
            error=failure
        )
        raise ConversionUnavailableError(
            f"Exchange rate {source}->{target} unavailable: {failure}",
            from_currency=source,
            to_currency=target,
            context={"error": failure}
        )

    def fetch_rate_async(self, from_currency: str, to_currency: str) -> "Future[float]":
        """Resolve a rate without blocking the caller."""
        return self._async_executor.submit(self.fetch_rate, from_currency, to_currency)

    def get_cached(self, from_currency: str, to_currency: str) -> Optional[CachedRate]:
        with self._lock:
            return self._cache.get(
                (normalize_currency(from_currency), normalize_currency(to_currency))
            )

    def clear_cache(self) -> None:
        with self._lock:
            self._cache.clear()

    def shutdown(self) -> None:
        self._async_executor.shutdown(wait=False)
        self._fetch_executor.shutdown(wait=False)

    def _fetch_and_cache(self, key: tuple[str, str]) -> tuple[float, Optional[str]]:
        """Query the source; return (rate, None) or (0.0, failure description)."""
        future = self._fetch_executor.submit(self.source.fetch_rate, *key)
        try:
            rate = future.result(timeout=self.timeout_seconds)
        except FuturesTimeoutError:
            future.cancel()
            return 0.0, f"timed out after {self.timeout_seconds}s"
        except Exception as e:
            return 0.0, str(e) or type(e).__name__

        if not isinstance(rate, (int, float)) or not math.isfinite(rate) or rate <= 0:
            return 0.0, f"invalid rate {rate!r}"

        with self._lock:
            self._cache[key] = CachedRate(rate=float(rate), fetched_at=self._time())

        self.logger.debug("Rate refreshed", from_currency=key[0], to_currency=key[1], rate=rate)
        return float(rate), None
