"""Catalog Service の環境変数読み込み"""

import pytest

from catalog_service.config import load_settings, parse_bool


def test_defaults_without_environment() -> None:
    settings = load_settings({})

    assert settings.aggregator_timeout == 2.0
    assert settings.aggregator_max_inflight == 8
    assert settings.aggregator_default_stock is False
    assert settings.aggregator_stock_strategy == "per-item"
    assert settings.cache_enabled is True
    assert settings.redis_url is None


def test_reads_and_converts_environment() -> None:
    settings = load_settings(
        {
            "SERVER_PORT": "9000",
            "CATALOG_SOURCE_URL": "http://catalog:8000/",
            "STOCK_SOURCE_URL": "http://stock:8000",
            "AGGREGATOR_TIMEOUT_MS": "750",
            "AGGREGATOR_MAX_INFLIGHT": "3",
            "AGGREGATOR_DEFAULT_STOCK": "yes",
            "AGGREGATOR_STOCK_STRATEGY": "batched",
            "CACHE_TTL_MS": "0",
            "REDIS_URL": "redis://redis:6379",
            "LOG_LEVEL": "debug",
        }
    )

    assert settings.server_port == 9000
    assert settings.catalog_source_url == "http://catalog:8000"
    assert settings.aggregator_timeout == 0.75
    assert settings.aggregator_max_inflight == 3
    assert settings.aggregator_default_stock is True
    assert settings.aggregator_stock_strategy == "batched"
    assert settings.cache_enabled is False
    assert settings.redis_url == "redis://redis:6379"
    assert settings.log_level == "DEBUG"


@pytest.mark.parametrize(
    "environ",
    [
        {"AGGREGATOR_DEFAULT_STOCK": "maybe"},
        {"AGGREGATOR_STOCK_STRATEGY": "parallel"},
        {"AGGREGATOR_MAX_INFLIGHT": "0"},
        {"AGGREGATOR_TIMEOUT_MS": "abc"},
    ],
)
def test_invalid_values_fail_at_startup(environ) -> None:
    with pytest.raises(ValueError):
        load_settings(environ)


@pytest.mark.parametrize(
    ("raw", "expected"),
    [("1", True), ("TRUE", True), (" on ", True), ("0", False), ("No", False)],
)
def test_parse_bool(raw, expected) -> None:
    assert parse_bool(raw) is expected
