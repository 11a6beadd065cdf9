"""Base interface for currency conversion."""

from abc import ABC, abstractmethod

from ..errors import ConversionUnavailableError


def normalize_currency(code: str) -> str:
    return code.strip().upper()


class CurrencyConverter(ABC):
    """Source of exchange rates between currency codes."""

    @abstractmethod
    def fetch_rate(self, from_currency: str, to_currency: str) -> float:
        """
        Rate that converts one unit of from_currency into to_currency.

        Raises:
            ConversionUnavailableError: If no rate can be obtained
        """
        pass

    def convert(self, amount: float, from_currency: str, to_currency: str) -> float:
        """Convert an amount between currencies."""
        if normalize_currency(from_currency) == normalize_currency(to_currency):
            return amount
        return amount * self.fetch_rate(from_currency, to_currency)


class StaticRateConverter(CurrencyConverter):
    """
    Converter backed by a fixed rate table.

    Inverse rates are derived when only the opposite pair is known. Useful
    offline and in tests.
    """

    def __init__(self, rates: dict[tuple[str, str], float] = None):
        self._rates: dict[tuple[str, str], float] = {}
        for (from_currency, to_currency), rate in (rates or {}).items():
            self.set_rate(from_currency, to_currency, rate)

    def set_rate(self, from_currency: str, to_currency: str, rate: float) -> None:
        if rate <= 0:
            raise ValueError(f"Exchange rate must be positive, got {rate}")
        self._rates[(normalize_currency(from_currency), normalize_currency(to_currency))] = rate

    def remove_rate(self, from_currency: str, to_currency: str) -> None:
        self._rates.pop((normalize_currency(from_currency), normalize_currency(to_currency)), None)

    def fetch_rate(self, from_currency: str, to_currency: str) -> float:
        source, target = normalize_currency(from_currency), normalize_currency(to_currency)
        if source == target:
            return 1.0

        if (source, target) in self._rates:
            return self._rates[(source, target)]
        if (target, source) in self._rates:
            return 1.0 / self._rates[(target, source)]

        raise ConversionUnavailableError(
            f"No rate for {source}->{target}",
            from_currency=source,
            to_currency=target
        )
