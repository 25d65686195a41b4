"""
Catalog Service — FastAPI エントリーポイント

読み取り集約ゲートウェイ。Catalog-source と Stock-source のデータを
1 回のレスポンスにまとめて返す (BFF と同じ「集約して隠蔽する」役割)。

  ┌──────────┐     ┌─────────────────┐     ┌────────────────┐
  │  Client  │────▶│ Catalog Service │────▶│ Catalog-source │
  │          │     │ (aggregator)    │────▶│ Stock-source   │
  └──────────┘     └────────┬────────┘     └────────────────┘
                            │ (任意)
                       ┌────▼────┐
                       │  Redis  │ 共有キャッシュ (L2)
                       └─────────┘

依存オブジェクトは lifespan で組み立てて app.state に載せる。
テストでは create_app(aggregator=...) で差し替える。
"""

import logging
from contextlib import asynccontextmanager

import httpx
import redis.asyncio as aioredis
from fastapi import FastAPI, Request

from .aggregator import FanoutAggregator
from .cache import AggregationCache, RedisCacheTier
from .config import Settings, load_settings
from .errors import register_exception_handlers
from .models import CatalogItem
from .upstream import CatalogSourceClient, StockSourceClient

logger = logging.getLogger(__name__)


def build_aggregator(
    settings: Settings,
    http: httpx.AsyncClient,
    redis: aioredis.Redis | None = None,
) -> FanoutAggregator:
    cache = None
    if settings.cache_enabled:
        tier = RedisCacheTier(redis) if redis is not None else None
        cache = AggregationCache(
            ttl=settings.cache_ttl,
            capacity=settings.cache_capacity,
            tier=tier,
        )
    return FanoutAggregator(
        CatalogSourceClient(settings.catalog_source_url, http),
        StockSourceClient(settings.stock_source_url, http),
        timeout=settings.aggregator_timeout,
        max_inflight=settings.aggregator_max_inflight,
        default_stock=settings.aggregator_default_stock,
        strategy=settings.aggregator_stock_strategy,
        cache=cache,
    )


def create_app(
    settings: Settings | None = None,
    aggregator: FanoutAggregator | None = None,
) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if aggregator is not None:
            app.state.aggregator = aggregator
            yield
            return

        conf = settings or load_settings()
        # 1 リクエストで N 件の在庫照会が出るので接続プールは共有する
        limits = httpx.Limits(max_connections=conf.aggregator_max_inflight * 4)
        http = httpx.AsyncClient(limits=limits)
        redis = (
            aioredis.from_url(conf.redis_url, decode_responses=True)
            if conf.redis_url
            else None
        )
        app.state.aggregator = build_aggregator(conf, http, redis)
        logger.info(
            "Catalog aggregator ready (strategy=%s, cache=%s, redis=%s)",
            conf.aggregator_stock_strategy,
            conf.cache_enabled,
            redis is not None,
        )
        try:
            yield
        finally:
            await http.aclose()
            if redis is not None:
                await redis.aclose()

    app = FastAPI(title="Catalog Service", lifespan=lifespan)
    register_exception_handlers(app)

    @app.get("/api/catalog", response_model=list[CatalogItem])
    async def get_catalog(request: Request):
        """商品一覧と在庫を結合して返す。在庫が取れない商品は既定値で返す。"""
        return await request.app.state.aggregator.get_catalog()

    @app.get("/api/catalog/diagnostics")
    async def get_diagnostics(request: Request):
        """劣化件数・キャッシュ状況 (運用向け。カタログ本体には載せない)"""
        return request.app.state.aggregator.summary()

    @app.get("/health")
    async def health():
        return {"status": "ok", "service": "catalog-service"}

    return app


app = create_app()


def run() -> None:
    import uvicorn

    settings = load_settings()
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    uvicorn.run(create_app(settings), host="0.0.0.0", port=settings.server_port)
