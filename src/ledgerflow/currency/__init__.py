"""
Currency rates and conversion.

Provides:
- RateProvider implementations (Frankfurter, exchangerate-api, static)
- CurrencyConverter with an injected RateCache and fallback rates
- format_currency
"""

from .converter import (
    CURRENCY_SYMBOLS,
    CurrencyConverter,
    RateCache,
    UnsupportedCurrencyError,
    format_currency,
)
from .rates_client import (
    FALLBACK_RATES,
    ExchangeRateApiProvider,
    FrankfurterRateProvider,
    RateFetchError,
    RateProvider,
    RateTable,
    StaticRateProvider,
    create_rate_provider,
)

__all__ = [
    "CurrencyConverter",
    "RateCache",
    "UnsupportedCurrencyError",
    "format_currency",
    "CURRENCY_SYMBOLS",
    "RateProvider",
    "RateTable",
    "RateFetchError",
    "FrankfurterRateProvider",
    "ExchangeRateApiProvider",
    "StaticRateProvider",
    "create_rate_provider",
    "FALLBACK_RATES",
]
