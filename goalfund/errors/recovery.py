"""
Recovery strategy classifications for error handling.

Errors in this module allow continued operation with reduced functionality:
callers catch them and degrade (for example by showing amounts in their
native currency) instead of failing the whole operation.
"""

from typing import Optional, Dict, Any


class GracefulDegradationError(Exception):
    """Mixin for errors that allow continued operation with reduced functionality."""

    def __init__(self, message: str, degraded_functionality: Optional[str] = None,
                 fallback_strategy: Optional[str] = None,
                 context: Optional[Dict[str, Any]] = None, **kwargs):
        super().__init__(message)
        self.degraded_functionality = degraded_functionality
        self.fallback_strategy = fallback_strategy
        self.context = context or {}
        self.allows_degradation = True
        self.recoverable = True


class ConversionUnavailableError(GracefulDegradationError):
    """No exchange rate could be obtained for a currency pair."""

    def __init__(self, message: str, from_currency: Optional[str] = None,
                 to_currency: Optional[str] = None, **kwargs):
        kwargs.setdefault("degraded_functionality", "currency_conversion")
        kwargs.setdefault("fallback_strategy", "native_currency")
        super().__init__(message, **kwargs)
        self.from_currency = from_currency
        self.to_currency = to_currency
