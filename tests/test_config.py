"""Tests for configuration loading and validation."""

from pathlib import Path

import pytest

from ledgerflow.config import (
    Config,
    ConfigValidationError,
    create_default_config,
    load_config,
)

ENV_VARS = [
    "LEDGERFLOW_DB_PATH",
    "LEDGERFLOW_BASE_CURRENCY",
    "LEDGERFLOW_RATE_PROVIDER",
    "CURRENCY_API_KEY",
    "LEDGERFLOW_RATE_CACHE_TTL",
    "LEDGERFLOW_USER",
]


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)


class TestLoadConfig:
    """Tests for YAML loading and environment overrides."""

    def test_missing_file_gives_defaults(self, tmp_path):
        config = load_config(tmp_path / "absent.yaml")

        assert config.currency.provider == "frankfurter"
        assert config.currency.base_currency == "USD"
        assert config.currency.cache_ttl_seconds == 3600
        assert config.imports.in_batch_dedup is True
        assert config.state_db_path == Path("data/ledger.db")
        assert config.user_id == "default"
        assert config.validate() == []

    def test_yaml_values(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text(
            """
user_id: alice
state_db_path: /tmp/alice.db
currency:
  provider: static
  base_currency: eur
  cache_ttl_seconds: 60
imports:
  in_batch_dedup: false
  qif_accounts:
    Checking: {account_id: checking, currency: EUR}
matching:
  name_threshold: 0.75
"""
        )
        config = load_config(path)

        assert config.user_id == "alice"
        assert config.state_db_path == Path("/tmp/alice.db")
        assert config.currency.provider == "static"
        assert config.currency.base_currency == "EUR"
        assert config.currency.cache_ttl_seconds == 60
        assert config.imports.in_batch_dedup is False
        assert config.matching.name_threshold == 0.75
        assert config.matching.history_threshold == 0.7
        assert config.qif_account_map() == {"Checking": ("checking", "EUR")}

    def test_empty_file(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("")
        assert load_config(path).user_id == "default"

    def test_env_overrides(self, tmp_path, monkeypatch):
        path = tmp_path / "config.yaml"
        path.write_text("currency:\n  provider: frankfurter\n  base_currency: USD\n")
        monkeypatch.setenv("LEDGERFLOW_RATE_PROVIDER", "exchangerate-api")
        monkeypatch.setenv("CURRENCY_API_KEY", "secret")
        monkeypatch.setenv("LEDGERFLOW_BASE_CURRENCY", "uah")
        monkeypatch.setenv("LEDGERFLOW_RATE_CACHE_TTL", "120")
        monkeypatch.setenv("LEDGERFLOW_DB_PATH", str(tmp_path / "env.db"))
        monkeypatch.setenv("LEDGERFLOW_USER", "bob")

        config = load_config(path)

        assert config.currency.provider == "exchangerate-api"
        assert config.currency.api_key == "secret"
        assert config.currency.base_currency == "UAH"
        assert config.currency.cache_ttl_seconds == 120
        assert config.state_db_path == tmp_path / "env.db"
        assert config.user_id == "bob"
        assert config.validate() == []

    def test_non_integer_ttl(self, tmp_path, monkeypatch):
        monkeypatch.setenv("LEDGERFLOW_RATE_CACHE_TTL", "soon")

        with pytest.raises(ConfigValidationError, match="LEDGERFLOW_RATE_CACHE_TTL"):
            load_config(tmp_path / "absent.yaml")


class TestValidate:
    """Tests for Config.validate()."""

    def test_unknown_provider(self):
        config = Config()
        config.currency.provider = "carrier-pigeon"

        errors = config.validate()
        assert len(errors) == 1
        assert "currency.provider" in errors[0]

    def test_api_key_required(self):
        config = Config()
        config.currency.provider = "exchangerate-api"

        assert any("api_key" in e for e in config.validate())

    def test_bad_base_currency(self):
        config = Config()
        config.currency.base_currency = "EURO"
        assert any("base_currency" in e for e in config.validate())

    def test_bad_ttl(self):
        config = Config()
        config.currency.cache_ttl_seconds = 0
        assert any("cache_ttl_seconds" in e for e in config.validate())

    def test_threshold_range(self):
        config = Config()
        config.matching.name_threshold = 1.5
        config.matching.history_threshold = -0.1

        errors = config.validate()
        assert any("name_threshold" in e for e in errors)
        assert any("history_threshold" in e for e in errors)

    def test_incomplete_qif_mapping(self):
        config = Config()
        config.imports.qif_accounts = {"Savings": {"account_id": "savings"}}
        assert any("Savings" in e for e in config.validate())

    def test_empty_user(self):
        config = Config(user_id="")
        assert "user_id is required" in config.validate()


class TestCreateDefaultConfig:
    def test_round_trip(self, tmp_path):
        path = tmp_path / "nested" / "config.yaml"
        create_default_config(path)

        assert path.exists()
        config = load_config(path)
        assert config.validate() == []
        assert config.currency.provider == "frankfurter"
        assert config.imports.qif_accounts == {}
