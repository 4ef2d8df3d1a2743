"""
Currency conversion over a cached USD-based rate table.

Conversion branches (kept separate on purpose, they round differently):
- from == USD: amount * rate[to]
- to == USD:   amount / rate[from]
- otherwise:   (amount / rate[from]) * rate[to]

Rate fetch failures never fail a conversion: the static fallback table is
used instead.
"""

import logging
import threading
from collections.abc import Callable, Iterable
from datetime import datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal

from .rates_client import BASE_CURRENCY, FALLBACK_RATES, RateFetchError, RateProvider, RateTable

logger = logging.getLogger(__name__)

DEFAULT_CACHE_TTL_SECONDS = 3600

CURRENCY_SYMBOLS: dict[str, str] = {
    "USD": "$",
    "EUR": "€",
    "GBP": "£",
    "JPY": "¥",
    "CAD": "C$",
    "AUD": "A$",
    "CHF": "CHF",
    "CNY": "¥",
    "UAH": "₴",
}

# Currencies rendered without a fractional part
ZERO_DECIMAL_CURRENCIES = frozenset({"JPY"})


class UnsupportedCurrencyError(ValueError):
    """No rate is known for a currency code."""

    def __init__(self, currency: str):
        self.currency = currency
        super().__init__(f"No exchange rate for currency '{currency}'")


class RateCache:
    """
    Holds one rate table until it expires.

    Expiry is the table's own `expires_at` when the provider declared one,
    otherwise `ttl_seconds` after it was stored.
    """

    def __init__(
        self,
        ttl_seconds: int = DEFAULT_CACHE_TTL_SECONDS,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.ttl_seconds = ttl_seconds
        self.clock = clock
        self._table: RateTable | None = None
        self._expires_at: datetime | None = None

    def get(self) -> RateTable | None:
        """Cached table, or None if empty or expired."""
        if self._table is None or self._expires_at is None:
            return None
        if self.clock() >= self._expires_at:
            return None
        return self._table

    def put(self, table: RateTable) -> None:
        self._table = table
        self._expires_at = table.expires_at or (
            self.clock() + timedelta(seconds=self.ttl_seconds)
        )

    def invalidate(self) -> None:
        self._table = None
        self._expires_at = None

    @property
    def expires_at(self) -> datetime | None:
        return self._expires_at


class CurrencyConverter:
    """
    Converts amounts between currencies.

    Concurrent cache misses are coalesced: only one caller fetches while the
    others wait for its table.
    """

    def __init__(
        self,
        provider: RateProvider,
        cache: RateCache | None = None,
        fallback_rates: dict[str, Decimal] | None = None,
    ):
        self.provider = provider
        self.cache = cache or RateCache()
        self.fallback_rates = dict(fallback_rates if fallback_rates is not None else FALLBACK_RATES)
        self._fetch_lock = threading.Lock()
        self.last_source = ""

    def get_rates(self) -> dict[str, Decimal]:
        """
        Current rate table (units per 1 USD).

        Returns the fallback table when the provider fails. Fallback rates are
        not cached, so the next call retries the provider. A live table that
        lacks a currency is filled in from the fallback table.
        """
        table = self.cache.get()
        if table is not None:
            return self._with_fallback(table)

        with self._fetch_lock:
            # Another caller may have filled the cache while we waited
            table = self.cache.get()
            if table is not None:
                return self._with_fallback(table)

            try:
                table = self.provider.fetch_rates()
            except RateFetchError as e:
                logger.warning(f"Rate fetch failed, using fallback rates: {e}")
                self.last_source = "fallback"
                return dict(self.fallback_rates)

            self.cache.put(table)
            self.last_source = table.source
            return self._with_fallback(table)

    def _with_fallback(self, table: RateTable) -> dict[str, Decimal]:
        missing = self.fallback_rates.keys() - table.rates.keys()
        if missing:
            logger.debug(f"Using fallback rates for {', '.join(sorted(missing))}")
        return {**self.fallback_rates, **table.rates}

    @staticmethod
    def _rate(rates: dict[str, Decimal], currency: str) -> Decimal:
        rate = rates.get(currency)
        if rate is None or rate == 0:
            raise UnsupportedCurrencyError(currency)
        return rate

    def _convert_with(
        self, rates: dict[str, Decimal], amount: Decimal, from_currency: str, to_currency: str
    ) -> Decimal:
        if from_currency == to_currency:
            return amount
        if from_currency == BASE_CURRENCY:
            return amount * self._rate(rates, to_currency)
        if to_currency == BASE_CURRENCY:
            return amount / self._rate(rates, from_currency)
        return (amount / self._rate(rates, from_currency)) * self._rate(rates, to_currency)

    def convert(self, amount: Decimal, from_currency: str, to_currency: str = BASE_CURRENCY) -> Decimal:
        """
        Convert an amount.

        Identity when both codes are equal (no rate lookup at all).

        Raises:
            UnsupportedCurrencyError: If a code has no rate
        """
        amount = Decimal(amount)
        if from_currency == to_currency:
            return amount
        return self._convert_with(self.get_rates(), amount, from_currency, to_currency)

    def convert_many(
        self, items: Iterable[tuple[Decimal, str]], to_currency: str = BASE_CURRENCY
    ) -> Decimal:
        """Sum (amount, currency) pairs in `to_currency` using one rate table."""
        items = list(items)
        total = Decimal("0")
        rates: dict[str, Decimal] | None = None
        for amount, currency in items:
            if currency == to_currency:
                total += Decimal(amount)
                continue
            if rates is None:
                rates = self.get_rates()
            total += self._convert_with(rates, Decimal(amount), currency, to_currency)
        return total

    def get_exchange_rate(self, from_currency: str, to_currency: str = BASE_CURRENCY) -> Decimal:
        """Units of `to_currency` per 1 `from_currency`."""
        if from_currency == to_currency:
            return Decimal("1")
        rates = self.get_rates()
        return (Decimal("1") / self._rate(rates, from_currency)) * self._rate(rates, to_currency)

    def clear_cache(self) -> None:
        self.cache.invalidate()


def format_currency(amount: Decimal | int | float, currency: str) -> str:
    """
    Render an amount with its currency symbol.

    Examples:
        >>> format_currency(Decimal("12.5"), "EUR")
        '€12.50'
        >>> format_currency(Decimal("1234.6"), "JPY")
        '¥1,235'
    """
    symbol = CURRENCY_SYMBOLS.get(currency, currency)
    value = Decimal(str(amount)) if isinstance(amount, float) else Decimal(amount)

    if currency in ZERO_DECIMAL_CURRENCIES:
        rounded = value.quantize(Decimal("1"), rounding=ROUND_HALF_UP)
        return f"{symbol}{rounded:,.0f}"

    rounded = value.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)
    return f"{symbol}{rounded:.2f}"
