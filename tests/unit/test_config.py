"""Unit tests for settings loading from the environment and *_FILE paths."""

from __future__ import annotations

from decimal import Decimal

import pytest

from brokerage.config import EnvFileSource, load_settings
from brokerage.exceptions import ConfigError


def test_defaults() -> None:
    settings = load_settings(environ={})
    assert settings.state_store_uri == "sqlite:///brokerage.db"
    assert settings.base_currency == "TRY"
    assert settings.tradeable_assets == frozenset()
    assert settings.min_order_size == Decimal("0.01")
    assert settings.lock_retry_attempts == 3
    assert settings.prometheus_port is None


def test_environment_overrides() -> None:
    settings = load_settings(
        environ={
            "BASE_CURRENCY": "usd",
            "TRADEABLE_ASSETS": "aapl, googl,,",
            "MIN_ORDER_PRICE": "0.5",
            "LOCK_RETRY_ATTEMPTS": "5",
            "LOG_LEVEL": "debug",
            "PROMETHEUS_PORT": "9200",
        }
    )
    assert settings.base_currency == "USD"
    assert settings.tradeable_assets == frozenset({"AAPL", "GOOGL"})
    assert settings.min_order_price == Decimal("0.5")
    assert settings.lock_retry_attempts == 5
    assert settings.log_level == "DEBUG"
    assert settings.prometheus_port == 9200


def test_file_takes_precedence(tmp_path) -> None:
    secret = tmp_path / "uri.txt"
    secret.write_text("postgresql+psycopg://u:p@db/brokerage\n", encoding="utf-8")
    settings = load_settings(
        environ={"STATE_STORE_URI": "sqlite:///ignored.db", "STATE_STORE_URI_FILE": str(secret)}
    )
    assert settings.state_store_uri == "postgresql+psycopg://u:p@db/brokerage"


def test_relative_file_resolved_against_base_path(tmp_path) -> None:
    (tmp_path / "currency").write_text("eur", encoding="utf-8")
    source = EnvFileSource({"BASE_CURRENCY_FILE": "currency"}, base_path=tmp_path)
    assert source.get("BASE_CURRENCY") == "eur"


def test_missing_file_is_a_config_error(tmp_path) -> None:
    with pytest.raises(ConfigError):
        load_settings(environ={"STATE_STORE_URI_FILE": str(tmp_path / "absent")})


@pytest.mark.parametrize(
    "key, value",
    [
        ("MIN_ORDER_SIZE", "abc"),
        ("MIN_ORDER_SIZE", "0"),
        ("LOCK_RETRY_ATTEMPTS", "0"),
        ("LOCK_TIMEOUT_SECONDS", "soon"),
    ],
)
def test_invalid_values_raise(key, value) -> None:
    with pytest.raises(ConfigError):
        load_settings(environ={key: value})
