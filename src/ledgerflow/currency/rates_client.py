"""
Exchange rate providers.

Every provider returns a RateTable: units of currency per 1 USD.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal, InvalidOperation

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

logger = logging.getLogger(__name__)

BASE_CURRENCY = "USD"

# Approximate rates per 1 USD, used when no provider answers
FALLBACK_RATES: dict[str, Decimal] = {
    "USD": Decimal("1"),
    "EUR": Decimal("0.92"),
    "GBP": Decimal("0.79"),
    "JPY": Decimal("149.50"),
    "CAD": Decimal("1.36"),
    "AUD": Decimal("1.53"),
    "CHF": Decimal("0.88"),
    "CNY": Decimal("7.24"),
    "UAH": Decimal("41.92"),
}


class RateFetchError(Exception):
    """Provider or network failure while fetching rates."""

    def __init__(self, provider: str, message: str, status_code: int | None = None):
        self.provider = provider
        self.message = message
        self.status_code = status_code
        super().__init__(f"{provider}: {message}")


@dataclass
class RateTable:
    """Rates keyed by currency code, expressed per 1 USD."""

    rates: dict[str, Decimal]
    expires_at: datetime | None = None  # None = use the cache TTL
    source: str = ""
    fetched_at: datetime | None = None


class RateProvider(ABC):
    """Source of exchange rate tables."""

    @property
    @abstractmethod
    def name(self) -> str:
        pass

    @abstractmethod
    def fetch_rates(self) -> RateTable:
        """
        Fetch the current rate table.

        Raises:
            RateFetchError: On network or provider failure
        """
        pass


class StaticRateProvider(RateProvider):
    """Serves a fixed table (offline use and tests)."""

    def __init__(self, rates: dict[str, Decimal] | None = None):
        self.rates = dict(rates if rates is not None else FALLBACK_RATES)

    @property
    def name(self) -> str:
        return "static"

    def fetch_rates(self) -> RateTable:
        return RateTable(rates=dict(self.rates), source=self.name, fetched_at=datetime.now())


class HTTPRateProvider(RateProvider):
    """
    Base for HTTP rate providers.

    Features:
    - Shared session with automatic retry and backoff
    - Decimal-exact JSON parsing
    - Uniform RateFetchError on any failure
    """

    DEFAULT_TIMEOUT = 10

    def __init__(
        self,
        timeout: int = DEFAULT_TIMEOUT,
        max_retries: int = 3,
        backoff_factor: float = 0.5,
    ):
        self.timeout = timeout

        self.session = requests.Session()
        self.session.headers.update({"Accept": "application/json"})

        retry_strategy = Retry(
            total=max_retries,
            backoff_factor=backoff_factor,
            status_forcelist=[429, 500, 502, 503, 504],
            allowed_methods=["GET"],
            raise_on_status=False,
        )
        adapter = HTTPAdapter(max_retries=retry_strategy)
        self.session.mount("http://", adapter)
        self.session.mount("https://", adapter)

    def _get_json(self, url: str, params: dict | None = None) -> dict:
        """GET a JSON document, raising RateFetchError on failure."""
        logger.debug(f"Rate request: GET {url}")
        try:
            response = self.session.get(url, params=params, timeout=self.timeout)
        except requests.exceptions.RequestException as e:
            logger.error(f"Rate request to {self.name} failed: {e}")
            raise RateFetchError(self.name, f"request failed: {e}") from e

        if not response.ok:
            logger.error(f"Rate provider {self.name} returned {response.status_code}")
            raise RateFetchError(
                self.name, f"HTTP {response.status_code} {response.reason}", response.status_code
            )

        try:
            data = response.json(parse_float=Decimal, parse_int=Decimal)
        except ValueError as e:
            raise RateFetchError(self.name, f"invalid JSON: {e}") from e
        if not isinstance(data, dict):
            raise RateFetchError(self.name, "unexpected response shape")
        return data

    @staticmethod
    def _clean_rates(provider: str, raw: object) -> dict[str, Decimal]:
        if not isinstance(raw, dict) or not raw:
            raise RateFetchError(provider, "response has no rates")
        try:
            rates = {str(code).upper(): Decimal(value) for code, value in raw.items()}
        except (InvalidOperation, TypeError, ValueError) as e:
            raise RateFetchError(provider, f"malformed rate value: {e}") from e
        rates.setdefault(BASE_CURRENCY, Decimal("1"))
        return rates


class FrankfurterRateProvider(HTTPRateProvider):
    """Frankfurter (ECB) rates; free, no API key."""

    DEFAULT_URL = "https://api.frankfurter.app/latest"

    def __init__(self, url: str = DEFAULT_URL, **kwargs):
        super().__init__(**kwargs)
        self.url = url

    @property
    def name(self) -> str:
        return "frankfurter"

    def fetch_rates(self) -> RateTable:
        data = self._get_json(self.url, params={"from": BASE_CURRENCY})
        rates = self._clean_rates(self.name, data.get("rates"))
        logger.info(f"Fetched {len(rates)} rates from {self.name}")
        return RateTable(rates=rates, source=self.name, fetched_at=datetime.now())


class ExchangeRateApiProvider(HTTPRateProvider):
    """exchangerate-api.com v6 (API key required)."""

    DEFAULT_BASE_URL = "https://v6.exchangerate-api.com/v6"

    def __init__(self, api_key: str, base_url: str = DEFAULT_BASE_URL, **kwargs):
        super().__init__(**kwargs)
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")

    @property
    def name(self) -> str:
        return "exchangerate-api"

    def fetch_rates(self) -> RateTable:
        if not self.api_key:
            raise RateFetchError(self.name, "API key is not configured")

        data = self._get_json(f"{self.base_url}/{self.api_key}/latest/{BASE_CURRENCY}")
        if data.get("result") != "success":
            raise RateFetchError(self.name, f"API returned result '{data.get('result')}'")

        rates = self._clean_rates(self.name, data.get("conversion_rates"))

        expires_at = None
        next_update = data.get("time_next_update_unix")
        if next_update is not None:
            expires_at = datetime.fromtimestamp(int(next_update))

        logger.info(f"Fetched {len(rates)} rates from {self.name}")
        return RateTable(
            rates=rates, expires_at=expires_at, source=self.name, fetched_at=datetime.now()
        )


def create_rate_provider(
    provider: str, api_key: str | None = None, timeout: int = HTTPRateProvider.DEFAULT_TIMEOUT
) -> RateProvider:
    """Build a provider by config name."""
    if provider == "frankfurter":
        return FrankfurterRateProvider(timeout=timeout)
    if provider == "exchangerate-api":
        return ExchangeRateApiProvider(api_key=api_key or "", timeout=timeout)
    if provider == "static":
        return StaticRateProvider()
    raise ValueError(f"Unknown rate provider: {provider}")
