"""
Configuration management.

All configuration keys and defaults are defined here; other modules receive
values from the Config object.

Precedence: environment variable > YAML file > default.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path

import yaml

RATE_PROVIDERS = ("frankfurter", "exchangerate-api", "static")


class ConfigValidationError(Exception):
    """Raised when configuration validation fails."""

    pass


@dataclass
class CurrencyConfig:
    """Exchange rate settings."""

    provider: str = "frankfurter"
    api_key: str | None = None  # exchangerate-api only
    base_currency: str = "USD"  # Settlement currency for reports
    cache_ttl_seconds: int = 3600  # Used when the provider declares no expiry
    timeout: int = 10


@dataclass
class ImportConfig:
    """Import behaviour."""

    auto_categorize: bool = True
    in_batch_dedup: bool = True  # Repeated hashes inside one file count as duplicates
    default_account: str = "main"
    # QIF account name -> {"account_id": ..., "currency": ...}
    qif_accounts: dict[str, dict[str, str]] = field(default_factory=dict)
    # Extra CSV column mappings registered at start-up
    csv_mappings: list[dict] = field(default_factory=list)


@dataclass
class MatchingConfig:
    """Category matcher thresholds."""

    name_threshold: float = 0.6
    history_threshold: float = 0.7


@dataclass
class Config:
    """Application configuration."""

    currency: CurrencyConfig = field(default_factory=CurrencyConfig)
    imports: ImportConfig = field(default_factory=ImportConfig)
    matching: MatchingConfig = field(default_factory=MatchingConfig)
    state_db_path: Path = field(default_factory=lambda: Path("data/ledger.db"))
    user_id: str = "default"

    def validate(self) -> list[str]:
        """Validate configuration completeness and consistency.

        Returns:
            List of validation errors (empty if valid)
        """
        errors: list[str] = []

        if self.currency.provider not in RATE_PROVIDERS:
            errors.append(
                f"currency.provider must be one of {', '.join(RATE_PROVIDERS)}, "
                f"got '{self.currency.provider}'"
            )
        if self.currency.provider == "exchangerate-api" and not self.currency.api_key:
            errors.append("currency.api_key is required for the exchangerate-api provider")
        if len(self.currency.base_currency) != 3 or not self.currency.base_currency.isalpha():
            errors.append("currency.base_currency must be a 3-letter code")
        if self.currency.cache_ttl_seconds <= 0:
            errors.append("currency.cache_ttl_seconds must be positive")

        for name in ("name_threshold", "history_threshold"):
            value = getattr(self.matching, name)
            if not 0 <= value <= 1:
                errors.append(f"matching.{name} must be between 0 and 1")

        for qif_name, target in self.imports.qif_accounts.items():
            if not target.get("account_id") or not target.get("currency"):
                errors.append(f"imports.qif_accounts.{qif_name} needs account_id and currency")

        if not self.user_id:
            errors.append("user_id is required")

        return errors

    def qif_account_map(self) -> dict[str, tuple[str, str]]:
        """QIF account mapping in the shape ImportService.import_qif expects."""
        return {
            name: (target["account_id"], target["currency"])
            for name, target in self.imports.qif_accounts.items()
        }


def _env_int(name: str, default: int) -> int:
    value = os.environ.get(name, "")
    if not value:
        return int(default)
    try:
        return int(value)
    except ValueError as e:
        raise ConfigValidationError(f"{name} must be an integer, got '{value}'") from e


def load_config(config_path: Path) -> Config:
    """
    Load configuration from a YAML file.

    A missing file yields the defaults. Environment variables override
    config values:
    - LEDGERFLOW_DB_PATH
    - LEDGERFLOW_BASE_CURRENCY
    - LEDGERFLOW_RATE_PROVIDER
    - CURRENCY_API_KEY
    - LEDGERFLOW_RATE_CACHE_TTL (seconds)
    - LEDGERFLOW_USER
    """
    config_path = Path(config_path)
    if config_path.exists():
        with open(config_path) as f:
            data = yaml.safe_load(f) or {}
    else:
        data = {}

    currency_data = data.get("currency", {})
    currency = CurrencyConfig(
        provider=os.environ.get(
            "LEDGERFLOW_RATE_PROVIDER", currency_data.get("provider", "frankfurter")
        ),
        api_key=os.environ.get("CURRENCY_API_KEY", currency_data.get("api_key")),
        base_currency=os.environ.get(
            "LEDGERFLOW_BASE_CURRENCY", currency_data.get("base_currency", "USD")
        ).upper(),
        cache_ttl_seconds=_env_int(
            "LEDGERFLOW_RATE_CACHE_TTL", currency_data.get("cache_ttl_seconds", 3600)
        ),
        timeout=int(currency_data.get("timeout", 10)),
    )

    import_data = data.get("imports", {})
    imports = ImportConfig(
        auto_categorize=import_data.get("auto_categorize", True),
        in_batch_dedup=import_data.get("in_batch_dedup", True),
        default_account=import_data.get("default_account", "main"),
        qif_accounts=import_data.get("qif_accounts", {}) or {},
        csv_mappings=import_data.get("csv_mappings", []) or [],
    )

    matching_data = data.get("matching", {})
    matching = MatchingConfig(
        name_threshold=float(matching_data.get("name_threshold", 0.6)),
        history_threshold=float(matching_data.get("history_threshold", 0.7)),
    )

    state_db = os.environ.get("LEDGERFLOW_DB_PATH", data.get("state_db_path", "data/ledger.db"))

    return Config(
        currency=currency,
        imports=imports,
        matching=matching,
        state_db_path=Path(state_db),
        user_id=os.environ.get("LEDGERFLOW_USER", data.get("user_id", "default")),
    )


def create_default_config(config_path: Path) -> None:
    """Create a default configuration file."""
    default_config = """# LedgerFlow configuration
#
# Environment variables override these values:
#   LEDGERFLOW_DB_PATH, LEDGERFLOW_BASE_CURRENCY, LEDGERFLOW_RATE_PROVIDER,
#   CURRENCY_API_KEY, LEDGERFLOW_RATE_CACHE_TTL, LEDGERFLOW_USER

user_id: "default"

currency:
  provider: "frankfurter"        # frankfurter | exchangerate-api | static
  api_key: null                  # Required for exchangerate-api
  base_currency: "USD"           # Settlement currency for reports
  cache_ttl_seconds: 3600        # Rate cache lifetime when the provider gives none
  timeout: 10

imports:
  auto_categorize: true
  in_batch_dedup: true           # Same hash twice in one file = duplicate
  default_account: "main"
  qif_accounts: {}               # "Checking": {account_id: "checking", currency: "EUR"}
  csv_mappings: []               # Extra bank CSV layouts

matching:
  name_threshold: 0.6
  history_threshold: 0.7

# Ledger database path
state_db_path: "data/ledger.db"
"""

    config_path.parent.mkdir(parents=True, exist_ok=True)
    with open(config_path, "w") as f:
        f.write(default_config)
