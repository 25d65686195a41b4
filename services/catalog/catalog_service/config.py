"""
Catalog Service — 設定

環境変数から設定を読み込む。*_MS 系の値は秒に変換して保持する。
"""

import os
from collections.abc import Mapping
from typing import Literal

from pydantic import BaseModel, Field

_TRUE = {"1", "true", "yes", "on"}
_FALSE = {"0", "false", "no", "off"}


def parse_bool(value: str) -> bool:
    lowered = value.strip().lower()
    if lowered in _TRUE:
        return True
    if lowered in _FALSE:
        return False
    raise ValueError(f"Invalid boolean value: {value!r}")


class Settings(BaseModel):
    server_port: int = 8082
    catalog_source_url: str = "http://localhost:9001"
    stock_source_url: str = "http://localhost:9002"
    aggregator_timeout: float = Field(default=2.0, gt=0)
    aggregator_max_inflight: int = Field(default=8, ge=1)
    aggregator_default_stock: bool = False
    aggregator_stock_strategy: Literal["per-item", "batched"] = "per-item"
    cache_ttl: float = Field(default=1.0, ge=0)
    cache_capacity: int = Field(default=1024, ge=1)
    redis_url: str | None = None
    log_level: str = "INFO"

    @property
    def cache_enabled(self) -> bool:
        return self.cache_ttl > 0


def load_settings(environ: Mapping[str, str] = os.environ) -> Settings:
    """環境変数から Settings を構築する。不正な値は起動時に ValueError になる。"""
    values: dict = {}
    if "SERVER_PORT" in environ:
        values["server_port"] = int(environ["SERVER_PORT"])
    if "CATALOG_SOURCE_URL" in environ:
        values["catalog_source_url"] = environ["CATALOG_SOURCE_URL"].rstrip("/")
    if "STOCK_SOURCE_URL" in environ:
        values["stock_source_url"] = environ["STOCK_SOURCE_URL"].rstrip("/")
    if "AGGREGATOR_TIMEOUT_MS" in environ:
        values["aggregator_timeout"] = int(environ["AGGREGATOR_TIMEOUT_MS"]) / 1000
    if "AGGREGATOR_MAX_INFLIGHT" in environ:
        values["aggregator_max_inflight"] = int(environ["AGGREGATOR_MAX_INFLIGHT"])
    if "AGGREGATOR_DEFAULT_STOCK" in environ:
        values["aggregator_default_stock"] = parse_bool(
            environ["AGGREGATOR_DEFAULT_STOCK"]
        )
    if "AGGREGATOR_STOCK_STRATEGY" in environ:
        values["aggregator_stock_strategy"] = environ["AGGREGATOR_STOCK_STRATEGY"]
    if "CACHE_TTL_MS" in environ:
        values["cache_ttl"] = int(environ["CACHE_TTL_MS"]) / 1000
    if "CACHE_CAPACITY" in environ:
        values["cache_capacity"] = int(environ["CACHE_CAPACITY"])
    if environ.get("REDIS_URL"):
        values["redis_url"] = environ["REDIS_URL"]
    if "LOG_LEVEL" in environ:
        values["log_level"] = environ["LOG_LEVEL"].upper()
    # pydantic.ValidationError は ValueError のサブクラス
    return Settings(**values)
